"""ffprobe / ffmpeg wrappers used by the preview pipeline.

ffprobe Invocation (duration):
  ffprobe -v error -show_entries format=duration -of default=noprint_wrappers=1:nokey=1 <file>

ffmpeg Invocation (single PNG frame to stdout):
  ffmpeg -v error -ss <t> -i <file> -frames:v 1 -f image2pipe -vcodec png -

Both calls block; callers run them off the request path.
"""
from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from catalog import Internal

logger = logging.getLogger(__name__)


class MediaProbe(ABC):
    @abstractmethod
    def probe(self, path: Path) -> float:
        """Return the media duration in seconds."""

    @abstractmethod
    def extract_frame(self, path: Path, timestamp: float) -> bytes:
        """Return the frame at `timestamp` seconds encoded as PNG."""


class FFmpegProbe(MediaProbe):
    def __init__(self, ffmpeg_dir: Path | str = "/usr/bin"):
        ffmpeg_dir = Path(ffmpeg_dir)
        self.ffmpeg_bin = ffmpeg_dir / "ffmpeg"
        self.ffprobe_bin = ffmpeg_dir / "ffprobe"

    def check(self) -> None:
        """Run both binaries with -version; fails Internal if either is unusable."""
        for name, binary in (("ffmpeg", self.ffmpeg_bin), ("ffprobe", self.ffprobe_bin)):
            proc = self._run([str(binary), "-version"], text=True)
            if proc.returncode != 0:
                raise Internal(f"Failed to execute {name} binary '{binary}': {proc.stderr.strip()}")
            first_line = proc.stdout.splitlines()[0] if proc.stdout else ""
            logger.info("%s Version Info: %s", name, first_line)

    @staticmethod
    def _run(cmd: list[str], text: bool = False) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, capture_output=True, text=text)
        except OSError as e:
            raise Internal(f"Failed to execute '{cmd[0]}': {e}") from e

    def probe(self, path: Path) -> float:
        cmd = [
            str(self.ffprobe_bin),
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        proc = self._run(cmd, text=True)
        if proc.returncode != 0:
            raise Internal(proc.stderr.strip() or f"ffprobe failed: {path}")
        out = proc.stdout.strip()
        try:
            return float(out)
        except ValueError as e:
            raise Internal(f"Invalid ffprobe duration for {path}: {out!r}") from e

    def extract_frame(self, path: Path, timestamp: float) -> bytes:
        cmd = [
            str(self.ffmpeg_bin), "-v", "error",
            "-ss", f"{timestamp:.3f}",
            "-i", str(path),
            "-frames:v", "1",
            "-f", "image2pipe",
            "-vcodec", "png",
            "-",
        ]
        proc = self._run(cmd)
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise Internal(stderr or f"ffmpeg frame extract failed: {path}")
        if not proc.stdout:
            raise Internal(f"ffmpeg produced no frame for {path} at {timestamp:.3f}s")
        return proc.stdout
