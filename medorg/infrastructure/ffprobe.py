import subprocess
import json
import logging
from pathlib import Path
from typing import Any, Dict, List
from medorg.domain.errors import MediaProbeError
from medorg.domain.models import MediaInfo, StreamInfo, ToolResult

class FFprobeAdapter:
    """Wrapper around ffprobe to extract duration and stream information."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @classmethod
    def _parse_duration_tag(cls, value: Any) -> float:
        """Parses ``DURATION`` tags, either plain seconds or ``[HH:]MM:SS.fff``."""
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        parts = text.split(":")
        if len(parts) not in (2, 3):
            return 0.0
        try:
            numbers = [float(p) for p in parts]
        except ValueError:
            return 0.0
        seconds = 0.0
        for number in numbers:
            seconds = seconds * 60 + number
        return seconds

    @classmethod
    def _parse_time_base_duration(cls, duration_ts: Any, time_base: Any) -> float:
        if duration_ts is None or time_base is None or "/" not in str(time_base):
            return 0.0
        num_text, den_text = str(time_base).split("/", 1)
        den = cls._to_float(den_text)
        if den == 0:
            return 0.0
        ticks = cls._to_float(duration_ts)
        return ticks * cls._to_float(num_text) / den if ticks > 0 else 0.0

    @staticmethod
    def _parse_fps(rate: Any) -> float:
        text = str(rate or "0/0")
        try:
            if "/" in text:
                num, den = map(float, text.split("/", 1))
                return num / den if den else 0.0
            return float(text)
        except ValueError:
            return 0.0

    def build_command(self, file_path: Path) -> List[str]:
        return [
            self.binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path),
        ]

    def parse_output(self, stdout: str) -> MediaInfo:
        """Turns ffprobe JSON into MediaInfo. Raises ValueError on unusable output."""
        data = json.loads(stdout)
        if not isinstance(data, dict):
            raise ValueError("ffprobe output is not a JSON object")

        raw_streams = data.get("streams") or []
        streams = [
            StreamInfo(
                index=int(s.get("index", i)),
                codec_type=str(s.get("codec_type") or "unknown"),
                codec_name=str(s.get("codec_name") or "unknown"),
            )
            for i, s in enumerate(raw_streams)
        ]
        video_stream = next((s for s in raw_streams if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ValueError("No video stream found")

        # Duration fallback order: format.duration, format tags, stream.duration, stream tags, duration_ts/time_base
        fmt = data.get("format") or {}
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            tags = fmt.get("tags") or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))
        if duration <= 0:
            tags = video_stream.get("tags") or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = self._parse_time_base_duration(video_stream.get("duration_ts"), video_stream.get("time_base"))
        if duration <= 0:
            raise ValueError("Duration missing or not positive")

        return MediaInfo(
            duration=duration,
            width=int(video_stream.get("width") or 0),
            height=int(video_stream.get("height") or 0),
            fps=self._parse_fps(video_stream.get("avg_frame_rate") or video_stream.get("r_frame_rate")),
            streams=streams,
        )

    def probe(self, file_path: Path) -> ToolResult[MediaInfo]:
        """Executes ffprobe once. Never raises for tool or parse failures."""
        cmd = self.build_command(file_path)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
        except OSError as e:
            self.logger.error(f"PROBE_LAUNCH_FAILED: {file_path.name}: {e}")
            return ToolResult[MediaInfo](returncode=None, error=f"cannot run {self.binary}: {e}")

        if result.returncode != 0:
            error = f"{self.binary} exited with code {result.returncode}"
            stderr = (result.stderr or "").strip()
            if stderr:
                error = f"{error}: {stderr}"
            return ToolResult[MediaInfo](returncode=result.returncode, error=error)

        try:
            info = self.parse_output(result.stdout)
        except (ValueError, TypeError, json.JSONDecodeError) as e:
            return ToolResult[MediaInfo](returncode=result.returncode, error=f"unparseable output: {e}")

        return ToolResult[MediaInfo](returncode=result.returncode, value=info)

    def get_media_info(self, file_path: Path) -> MediaInfo:
        """Like probe() but raises MediaProbeError on any failure."""
        outcome = self.probe(file_path)
        if not outcome.ok:
            raise MediaProbeError(file_path, outcome.error or "unknown error", outcome.returncode)
        return outcome.value
