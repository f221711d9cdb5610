import json
from unittest.mock import MagicMock, patch

import pytest

from media_transcoder.cli import main
from media_transcoder.jobs import Job, SQLiteJobStore


def test_cli_help_displays():
    """Test --help works without errors."""
    with pytest.raises(SystemExit) as exc_info:
        main(["--help"])
    assert exc_info.value.code == 0


def test_cli_serve_help():
    """Test serve subcommand help."""
    with pytest.raises(SystemExit) as exc_info:
        main(["serve", "--help"])
    assert exc_info.value.code == 0


def test_cli_no_command_shows_help(capsys):
    """Test running with no command shows help."""
    main([])
    captured = capsys.readouterr()
    assert "usage:" in captured.out.lower()


def test_cli_check_command_ffmpeg_found(capsys):
    """Test check command when ffmpeg is found."""
    with patch("media_transcoder.ffmpeg_runner.FfmpegTranscoder.is_available", return_value=True):
        with patch(
            "media_transcoder.ffmpeg_runner.FfmpegTranscoder.get_ffmpeg_exe",
            return_value="/usr/bin/ffmpeg",
        ):
            main(["check"])
    captured = capsys.readouterr()
    assert "ffmpeg found" in captured.out.lower()


def test_cli_check_command_ffmpeg_not_found(capsys):
    """Test check command when ffmpeg is not found."""
    with patch("media_transcoder.ffmpeg_runner.FfmpegTranscoder.is_available", return_value=False):
        with pytest.raises(SystemExit) as exc_info:
            main(["check"])
    assert exc_info.value.code == 1
    captured = capsys.readouterr()
    assert "not found" in captured.out.lower()


@pytest.fixture
def seeded_dir(tmp_path):
    """Temp dir holding a job database with two jobs."""
    store = SQLiteJobStore(str(tmp_path / "transcoder.db"))
    done = Job(id="job-done", input_path="/in/a", output_path="/out/a.mp4", original_name="a.mov")
    done.start_processing()
    done.complete()
    store.create(done)
    store.create(Job(id="job-new", input_path="/in/b", output_path="/out/b.mp4", original_name="b.mov"))
    store.close()
    return tmp_path


def test_cli_jobs_list(seeded_dir, capsys):
    main(["--temp-dir", str(seeded_dir), "jobs", "list"])
    out = capsys.readouterr().out
    assert "JOBS (2 of 2)" in out
    assert "job-done" in out
    assert "job-new" in out


def test_cli_jobs_list_by_status(seeded_dir, capsys):
    main(["--temp-dir", str(seeded_dir), "jobs", "list", "--status", "pending"])
    out = capsys.readouterr().out
    assert "job-new" in out
    assert "job-done" not in out


def test_cli_jobs_show(seeded_dir, capsys):
    main(["--temp-dir", str(seeded_dir), "jobs", "show", "job-done"])
    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "completed"
    assert data["progress"] == 100


def test_cli_jobs_show_missing(seeded_dir):
    with pytest.raises(SystemExit) as exc_info:
        main(["--temp-dir", str(seeded_dir), "jobs", "show", "nope"])
    assert exc_info.value.code == 1


def test_cli_serve_runs_uvicorn(tmp_path):
    fake_service = MagicMock()
    with patch("media_transcoder.service.TranscoderService", return_value=fake_service) as service_cls:
        with patch("uvicorn.run") as run:
            main(["--temp-dir", str(tmp_path), "serve", "--port", "9999", "--workers", "3"])

    config = service_cls.call_args.args[0]
    assert config.workers.worker_count == 3
    assert run.call_args.kwargs["port"] == 9999
