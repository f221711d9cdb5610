import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .models import TranscoderConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")

# Environment variable -> (dotted config path, type)
ENV_OVERRIDES = {
    "PORT": ("server.port", int),
    "API_KEY": ("server.api_key", str),
    "WORKER_COUNT": ("workers.worker_count", int),
    "QUEUE_CAPACITY": ("workers.queue_capacity", int),
    "TEMP_DIR": ("storage.temp_dir", str),
    "GOOGLE_CREDENTIALS_FILE": ("drive.credentials_file", str),
    "GOOGLE_DRIVE_FOLDER_ID": ("drive.folder_id", str),
    "WEBHOOK_URL": ("webhook.url", str),
    "WEBHOOK_RETRY_COUNT": ("webhook.retry_count", int),
}


def get_config_value(config: Union[TranscoderConfig, Dict], path: str, default=None):
    """
    Safely get a config value from either Pydantic model or dict.

    Args:
        config: TranscoderConfig model or dict
        path: Dot-separated path like "workers.worker_count"
        default: Default value if not found

    Returns:
        The config value or default
    """
    if isinstance(config, TranscoderConfig):
        config = config.model_dump()

    keys = path.split(".")
    value = config
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def set_config_value(config: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path in a nested dict, creating sections as needed."""
    keys = path.split(".")
    target = config
    for key in keys[:-1]:
        target = target.setdefault(key, {})
    target[keys[-1]] = value


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: Dict, override: Dict) -> Dict:
    """Recursive merge of two dictionaries."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    """Nested override dict from the deployment environment variables.

    Empty values are ignored; integers that do not parse are logged and
    ignored so the lower layer's value stays in effect.
    """
    overrides: Dict[str, Any] = {}
    for name, (path, cast) in ENV_OVERRIDES.items():
        raw = env.get(name)
        if not raw:
            continue
        try:
            value = cast(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: expected %s", name, raw, cast.__name__)
            continue
        set_config_value(overrides, path, value)
    return overrides


def resolve_config(
    cli_args: Optional[Dict[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> TranscoderConfig:
    """
    Resolve config: Defaults < default.yaml < local.yaml (or config_path) < env < CLI
    Returns validated Pydantic TranscoderConfig model.

    Raises:
        pydantic.ValidationError: If the merged values are invalid
    """
    cli_args = cli_args or {}
    env = os.environ if env is None else env

    # 1. Load default YAML
    config_data = load_yaml(DEFAULT_CONFIG_PATH)

    # 2. Merge local overrides (or an explicit file)
    local_data = load_yaml(config_path or LOCAL_CONFIG_PATH)
    config_data = merge_dicts(config_data, local_data)

    # 3. Environment
    config_data = merge_dicts(config_data, env_overrides(env))

    # 4. Validate, then apply CLI overrides
    config = TranscoderConfig.from_dict(config_data)
    return config.merge_cli_overrides(cli_args)
