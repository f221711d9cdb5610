"""FFmpeg transcoder with process isolation, timeouts, cancellation and progress.

Converts any input FFmpeg can read into H.264/AAC MP4 (faststart).

Key Features:
- Process isolation with subprocess.Popen
- Dual timeout enforcement (global + no-progress)
- Percentage progress parsed from FFmpeg's ``-progress`` output on stderr
- Cooperative cancellation through a threading.Event (pool shutdown)
- Process tree cleanup via psutil
- Error classification and artifact preservation on failure
"""

import logging
import os
import re
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Deque, List, Optional

import psutil

from .jobs.backends import ProgressCallback, Transcoder
from .jobs.errors import TranscodeCancelled, TranscodeError

logger = logging.getLogger(__name__)

DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
OUT_TIME_US_RE = re.compile(r"out_time_(?:us|ms)=(\d+)")
OUT_TIME_RE = re.compile(r"out_time=(\d+):(\d+):(\d+(?:\.\d+)?)")

STDERR_TAIL_LINES = 40
MONITOR_JOIN_TIMEOUT_S = 2.0


class FfmpegErrorType(Enum):
    """FFmpeg error classification for diagnostics."""
    PERMANENT = "permanent"     # File not found, invalid format, codec error
    TRANSIENT = "transient"     # Network timeout, disk I/O stall
    TIMEOUT = "timeout"         # Process timeout (global or no-progress)


@dataclass
class FfmpegProgress:
    """Real-time FFmpeg progress metrics."""
    current_time_s: float = 0.0      # Current position in seconds
    total_duration_s: float = 0.0    # Input duration (0 until FFmpeg reports it)
    percent: int = 0                 # Last reported percentage
    last_update: float = 0.0         # Monotonic timestamp of last update
    reporting: bool = True           # Cleared once run() stops owning the callback
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


def _hms_to_seconds(h: str, m: str, s: str) -> float:
    return int(h) * 3600 + int(m) * 60 + float(s)


class FfmpegTranscoder(Transcoder):
    """Production FFmpeg orchestration for the transcode stage.

    Example:
        >>> transcoder = FfmpegTranscoder(global_timeout_s=3600)
        >>> transcoder.run("in.mov", "out.mp4", progress_callback=print)
    """

    def __init__(
        self,
        video_codec: str = "libx264",
        preset: str = "medium",
        crf: int = 23,
        audio_codec: str = "aac",
        audio_bitrate: str = "128k",
        global_timeout_s: float = 7200,
        no_progress_timeout_s: float = 300,
        kill_grace_period_s: float = 5,
        save_artifacts_on_failure: bool = True,
        ffmpeg_loglevel: str = "info",
        ffmpeg_path: Optional[str] = None,
        temp_dir: Optional[str] = None,
        poll_interval_s: float = 0.5,
    ):
        """Initialize FFmpeg transcoder.

        Args:
            video_codec: Video codec (default: libx264)
            preset: Encoding preset (default: medium)
            crf: Constant Rate Factor (0-51, lower = better quality)
            audio_codec: Audio codec (default: aac)
            audio_bitrate: Audio bitrate (default: 128k)
            global_timeout_s: Maximum duration of one transcode
            no_progress_timeout_s: Kill FFmpeg if progress stalls this long
            kill_grace_period_s: Grace period between SIGTERM and SIGKILL
            save_artifacts_on_failure: Save logs and commands on failure
            ffmpeg_loglevel: FFmpeg log level (must keep the Duration line: info)
            ffmpeg_path: FFmpeg executable (None = imageio-ffmpeg's binary)
            temp_dir: Directory for failure artifacts (None = $TMPDIR or /tmp)
            poll_interval_s: How often the cancel/timeout checks run
        """
        self.video_codec = video_codec
        self.preset = preset
        self.crf = crf
        self.audio_codec = audio_codec
        self.audio_bitrate = audio_bitrate
        self.global_timeout_s = global_timeout_s
        self.no_progress_timeout_s = no_progress_timeout_s
        self.kill_grace_period_s = kill_grace_period_s
        self.save_artifacts_on_failure = save_artifacts_on_failure
        self.ffmpeg_loglevel = ffmpeg_loglevel
        self.ffmpeg_path = ffmpeg_path
        self.temp_dir = temp_dir
        self.poll_interval_s = poll_interval_s

    def build_command(self, input_path: str, output_path: str) -> List[str]:
        return [
            self.get_ffmpeg_exe(),
            "-y",  # Overwrite output
            "-i", input_path,
            "-c:v", self.video_codec,
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-c:a", self.audio_codec,
            "-b:a", self.audio_bitrate,
            "-movflags", "+faststart",
            "-progress", "pipe:2",  # Progress to stderr
            "-nostats",
            "-loglevel", self.ffmpeg_loglevel,
            output_path,
        ]

    def run(
        self,
        input_path: str,
        output_path: str,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Transcode ``input_path`` into ``output_path``.

        Raises:
            TranscodeError: FFmpeg failed, timed out, or could not start
            TranscodeCancelled: ``cancel_event`` was set while running
        """
        try:
            cmd = self.build_command(input_path, output_path)
        except RuntimeError as e:  # imageio-ffmpeg found no binary
            raise TranscodeError(str(e), FfmpegErrorType.PERMANENT.value) from e
        progress = FfmpegProgress()
        stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                bufsize=1,  # Line buffered for real-time progress
            )
        except OSError as e:
            raise TranscodeError(f"failed to start ffmpeg: {e}", FfmpegErrorType.PERMANENT.value) from e

        monitor = threading.Thread(
            target=self._monitor_progress,
            args=(process.stderr, progress, stderr_tail, progress_callback),
            name=f"ffmpeg-monitor-{process.pid}",
            daemon=True,
        )
        monitor.start()

        start = time.monotonic()
        progress.last_update = start
        try:
            returncode = self._wait(process, progress, cancel_event, start)
        except BaseException:
            self._kill_process_tree(process)
            raise
        finally:
            monitor.join(timeout=MONITOR_JOIN_TIMEOUT_S)
            if monitor.is_alive():
                logger.warning("FFmpeg stderr monitor still running, detaching its progress reports")
            with progress.lock:
                progress.reporting = False

        if returncode != 0:
            stderr_text = "".join(stderr_tail)
            error_type = self._classify_error(stderr_text)
            if self.save_artifacts_on_failure:
                self._save_failure_artifacts(cmd, stderr_text)
            last_line = stderr_tail[-1].strip() if stderr_tail else "no output"
            raise TranscodeError(
                f"ffmpeg exited with status {returncode}: {last_line}", error_type.value
            )

        if progress_callback is not None:
            progress_callback(100)

    def _wait(
        self,
        process: subprocess.Popen,
        progress: FfmpegProgress,
        cancel_event: Optional[threading.Event],
        start: float,
    ) -> int:
        """Wait for FFmpeg while enforcing cancellation and both timeouts."""
        while True:
            try:
                return process.wait(timeout=self.poll_interval_s)
            except subprocess.TimeoutExpired:
                pass

            now = time.monotonic()
            if cancel_event is not None and cancel_event.is_set():
                self._kill_process_tree(process)
                raise TranscodeCancelled("transcode interrupted by shutdown")

            if now - start > self.global_timeout_s:
                self._kill_process_tree(process)
                raise TranscodeError(
                    f"ffmpeg timed out after {self.global_timeout_s}s",
                    FfmpegErrorType.TIMEOUT.value,
                )

            if now - progress.last_update > self.no_progress_timeout_s:
                self._kill_process_tree(process)
                raise TranscodeError(
                    f"ffmpeg made no progress for {self.no_progress_timeout_s}s",
                    FfmpegErrorType.TIMEOUT.value,
                )

    def _monitor_progress(
        self,
        stderr_stream,
        progress: FfmpegProgress,
        stderr_tail: Deque[str],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        """Parse FFmpeg stderr and report percentages.

        FFmpeg writes the input duration once in its banner and then blocks of
        progress keys:
            Duration: 00:01:30.00, start: 0.000000, bitrate: 1234 kb/s
            out_time_us=5123456
            out_time=00:00:05.123456
            progress=continue
        """
        try:
            for line in stderr_stream:
                stderr_tail.append(line)

                if not progress.total_duration_s:
                    match = DURATION_RE.search(line)
                    if match:
                        progress.total_duration_s = _hms_to_seconds(*match.groups())
                        continue

                current = None
                match = OUT_TIME_US_RE.search(line)
                if match:
                    current = int(match.group(1)) / 1_000_000
                else:
                    match = OUT_TIME_RE.search(line)
                    if match:
                        current = _hms_to_seconds(*match.groups())

                if current is None:
                    continue

                progress.current_time_s = current
                progress.last_update = time.monotonic()

                if progress.total_duration_s <= 0:
                    continue
                percent = min(100, int(current / progress.total_duration_s * 100))
                if percent > progress.percent:
                    progress.percent = percent
                    if progress_callback is None:
                        continue
                    with progress.lock:
                        if not progress.reporting:
                            return
                        try:
                            progress_callback(percent)
                        except Exception:
                            # Don't crash monitor thread on callback errors
                            logger.exception("Progress callback error")
        except ValueError:
            # Stream closed underneath us after a kill
            pass

    def _kill_process_tree(self, process: subprocess.Popen) -> None:
        """Terminate FFmpeg and its children: SIGTERM, grace period, SIGKILL."""
        if process.poll() is not None:
            return

        try:
            parent = psutil.Process(process.pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(procs, timeout=self.kill_grace_period_s)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        try:
            process.wait(timeout=self.kill_grace_period_s)
        except subprocess.TimeoutExpired:
            logger.error("FFmpeg process %d did not exit after SIGKILL", process.pid)

    def _classify_error(self, stderr: str) -> FfmpegErrorType:
        """Classify an FFmpeg failure from its stderr."""
        stderr_lower = stderr.lower()

        permanent_patterns = [
            "no such file or directory",
            "invalid data found",
            "invalid argument",
            "permission denied",
            "unsupported codec",
            "invalid codec",
            "unknown encoder",
            "moov atom not found",
            "end of file",
            "corrupt",
        ]

        for pattern in permanent_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.PERMANENT

        # Everything else (I/O stalls, disk full, unknown) is treated as transient
        return FfmpegErrorType.TRANSIENT

    def _save_failure_artifacts(self, cmd: List[str], stderr: str) -> List[Path]:
        """Save the command and the stderr tail for debugging.

        Returns:
            List of saved artifact paths
        """
        artifacts = []
        temp_dir = self._get_temp_dir()
        timestamp = int(time.time())

        log_path = temp_dir / f"ffmpeg_error_{timestamp}_{os.getpid()}.log"
        try:
            with open(log_path, "w") as f:
                f.write("=" * 80 + "\n")
                f.write("FFmpeg Error Log\n")
                f.write(f"Timestamp: {time.ctime()}\n")
                f.write(f"PID: {os.getpid()}\n")
                f.write("=" * 80 + "\n\n")

                f.write("COMMAND:\n")
                f.write(" ".join(cmd) + "\n\n")

                f.write("STDERR (tail):\n")
                f.write(stderr or "(empty)\n")

            artifacts.append(log_path)
            logger.info("FFmpeg failure log saved to %s", log_path)
        except OSError as e:
            logger.warning("Failed to save ffmpeg error log: %s", e)

        return artifacts

    def _get_temp_dir(self) -> Path:
        if self.temp_dir:
            temp_dir = Path(self.temp_dir)
        elif "TMPDIR" in os.environ:
            temp_dir = Path(os.environ["TMPDIR"])
        else:
            temp_dir = Path("/tmp")

        temp_dir.mkdir(parents=True, exist_ok=True)
        return temp_dir

    def get_ffmpeg_exe(self) -> str:
        """FFmpeg executable: configured path, else imageio-ffmpeg's bundled binary."""
        if self.ffmpeg_path:
            return self.ffmpeg_path
        import imageio_ffmpeg
        return imageio_ffmpeg.get_ffmpeg_exe()

    def is_available(self) -> bool:
        """True if the FFmpeg executable can be found and run."""
        try:
            result = subprocess.run(
                [self.get_ffmpeg_exe(), "-version"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10,
            )
        except (OSError, RuntimeError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0
