"""Storage collaborators. The Drive uploader is imported on demand (optional extra)."""

from .local import LocalStorage

__all__ = ["LocalStorage"]
