import subprocess
import logging
import time
import threading
import queue
from collections import deque
from pathlib import Path
from typing import List, Optional
from videoconverter.config.models import TranscodeConfig
from videoconverter.domain.errors import TranscodeError
from videoconverter.domain.models import Quality

OUTPUT_TAIL_LINES = 20


class FFmpegAdapter:
    """Wrapper around ffmpeg producing quality derivatives and previews."""

    def __init__(self, config: TranscodeConfig, shutdown_event: Optional[threading.Event] = None):
        self.config = config
        self.shutdown_event = shutdown_event
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def output_path(temp_dir: Path, source_path: Path, quality: Quality) -> Path:
        return Path(temp_dir) / f"v-{quality.tag}-{Path(source_path).name}"

    def _build_convert_command(self, source_path: Path, output_path: Path, quality: Quality) -> List[str]:
        """Constructs the ffmpeg arguments for a scaled H.264 re-encode."""
        return [
            self.config.ffmpeg_path,
            "-y",  # Overwrite output files
            "-i", str(source_path),
            "-profile:v", self.config.profile,
            "-movflags", "+faststart",
            "-vcodec", "libx264",
            "-crf", str(self.config.crf),
            "-preset", self.config.preset,
            "-acodec", "aac",
            "-threads", str(self.config.threads),
            # Width follows the aspect ratio, rounded to an even number for libx264
            "-filter:v", f"scale=trunc(oh*a/2)*2:{quality.value}",
            str(output_path),
        ]

    def _build_preview_command(self, source_path: Path, output_path: Path) -> List[str]:
        """Constructs the ffmpeg arguments for a stream-copied leading clip."""
        return [
            self.config.ffmpeg_path,
            "-y",
            "-ss", "00:00:00",
            "-to", self.config.preview_duration,
            "-i", str(source_path),
            "-c", "copy",
            str(output_path),
        ]

    def convert(self, temp_dir: Path, source_path: Path, quality: Quality) -> Path:
        """Re-encodes source_path to the target height and returns the new file."""
        if quality.is_preview:
            return self.make_preview(temp_dir, source_path)
        output_path = self.output_path(temp_dir, source_path, quality)
        cmd = self._build_convert_command(source_path, output_path, quality)
        self._execute(cmd, output_path, label=f"{Path(source_path).name} -> {quality.tag}")
        return output_path

    def make_preview(self, temp_dir: Path, source_path: Path) -> Path:
        """Cuts the first preview_duration of source_path without re-encoding."""
        output_path = self.output_path(temp_dir, source_path, Quality.PREVIEW)
        cmd = self._build_preview_command(source_path, output_path)
        self._execute(cmd, output_path, label=f"{Path(source_path).name} -> preview")
        return output_path

    def _terminate(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _execute(self, cmd: List[str], output_path: Path, label: str):
        start_time = time.monotonic()
        self.logger.info(f"FFMPEG_START: {label}")
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                bufsize=1
            )
        except OSError as e:
            raise TranscodeError(f"Cannot start ffmpeg for {label}: {e}") from e

        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()
        tail: "deque[str]" = deque(maxlen=OUTPUT_TAIL_LINES)

        def _reader():
            if not process.stdout:
                output_queue.put(None)
                return
            for line in process.stdout:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        while True:
            # Check for shutdown signal from the CLI
            if self.shutdown_event is not None and self.shutdown_event.is_set():
                self.logger.info(f"FFMPEG_INTERRUPTED: {label} (shutdown signal)")
                self._terminate(process)
                self._remove_partial(output_path)
                raise TranscodeError(f"ffmpeg interrupted for {label}", returncode=process.returncode)

            try:
                line = output_queue.get(timeout=0.1)
            except queue.Empty:
                if process.poll() is not None:
                    break
                continue

            if line is None:
                break
            tail.append(line.rstrip())

        process.wait()
        elapsed = time.monotonic() - start_time

        if process.returncode != 0:
            self._remove_partial(output_path)
            self.logger.info(f"FFMPEG_END: {label} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            raise TranscodeError(
                f"ffmpeg exited with code {process.returncode} for {label}",
                returncode=process.returncode,
                output="\n".join(tail),
            )

        if not output_path.exists():
            raise TranscodeError(f"ffmpeg finished but {output_path} was not created", returncode=0)

        self.logger.info(f"FFMPEG_END: {label} status=completed elapsed={elapsed:.2f}s")

    def _remove_partial(self, output_path: Path):
        if output_path.exists():
            try:
                output_path.unlink()
            except OSError as e:
                self.logger.warning(f"Cannot remove partial output {output_path}: {e}")
