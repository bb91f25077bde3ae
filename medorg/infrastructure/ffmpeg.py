import subprocess
import re
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional
from medorg.config.models import ContactSheetConfig, EncoderConfig
from medorg.domain.models import EncodeJob, MediaInfo, SceneEvent, ThumbnailResult, ThumbnailTask, ToolResult

# Seconds before the target used for the fast input seek
SEEK_MARGIN = 2.0
# Scene timestamps closer than this are the same cut
SCENE_MERGE_EPSILON = 0.1

_NUMBER = r"([0-9]+(?:\.[0-9]+)?)"
_SCD_TIME_RE = re.compile(r"lavfi\.scd\.time\s*[:=]\s*" + _NUMBER)
_SCD_SCORE_RE = re.compile(r"lavfi\.scd\.score\s*[:=]\s*" + _NUMBER)
_SHORT_TIME_RE = re.compile(r"(?<![\w.])t:\s*" + _NUMBER)
_SHORT_SCORE_RE = re.compile(r"(?<![\w.])score:\s*" + _NUMBER)


def scene_analysis_fps(duration: float) -> float:
    """Frames per second fed to scdet; long videos are sampled more sparsely."""
    if duration > 7200.0:
        return 0.5
    if duration > 3600.0:
        return 1.0
    return 2.0


def parse_scene_output(text: str, duration: float) -> List[SceneEvent]:
    """Extracts scene changes from ffmpeg's scdet diagnostics.

    Lines without a well-formed timestamp, or with one outside (0, duration),
    are ignored. Cuts within SCENE_MERGE_EPSILON collapse into one, keeping
    the higher score.
    """
    events: List[SceneEvent] = []
    for line in text.splitlines():
        time_match = _SCD_TIME_RE.search(line) or _SHORT_TIME_RE.search(line)
        if not time_match:
            continue
        try:
            timestamp = float(time_match.group(1))
        except ValueError:
            continue
        if not (0.0 < timestamp < duration):
            continue
        score_match = _SCD_SCORE_RE.search(line) or _SHORT_SCORE_RE.search(line)
        score = float(score_match.group(1)) if score_match else 1.0
        events.append(SceneEvent(timestamp=timestamp, score=score))

    events.sort(key=lambda e: e.timestamp)
    merged: List[SceneEvent] = []
    for event in events:
        if merged and event.timestamp - merged[-1].timestamp < SCENE_MERGE_EPSILON:
            if event.score > merged[-1].score:
                merged[-1] = SceneEvent(timestamp=merged[-1].timestamp, score=event.score)
            continue
        merged.append(event)
    return merged


class EncodeProcess:
    """A running encode with a background reader draining its stderr."""

    def __init__(self, process: subprocess.Popen, tail_lines: int = 20):
        self.process = process
        self._tail: Deque[str] = deque(maxlen=tail_lines)
        self._reader = threading.Thread(target=self._drain, daemon=True)
        self._reader.start()

    def _drain(self):
        if not self.process.stderr:
            return
        for line in self.process.stderr:
            self._tail.append(line.rstrip())

    @property
    def pid(self) -> int:
        return self.process.pid

    def poll(self) -> Optional[int]:
        return self.process.poll()

    def terminate(self, grace: float = 3.0) -> None:
        """SIGTERM, then SIGKILL if ffmpeg does not exit within ``grace`` seconds."""
        self.process.terminate()
        try:
            self.process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()

    def error_tail(self) -> str:
        self._reader.join(timeout=1.0)
        return "\n".join(self._tail)


class FFmpegAdapter:
    """Builds and runs the three ffmpeg modes: encode, scene detection, still extraction."""

    def __init__(
        self,
        encoder: Optional[EncoderConfig] = None,
        contact_sheet: Optional[ContactSheetConfig] = None,
        binary: str = "ffmpeg",
    ):
        self.encoder = encoder or EncoderConfig()
        self.contact_sheet = contact_sheet or ContactSheetConfig()
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    # ---- encode -----------------------------------------------------------

    def output_path_for(self, source: Path) -> Path:
        return source.with_name(f"{source.stem}{self.encoder.output_suffix}.{self.encoder.container}")

    def is_encode_output(self, path: Path) -> bool:
        return path.stem.endswith(self.encoder.output_suffix)

    def build_encode_command(self, job: EncodeJob) -> List[str]:
        """HEVC main10 video + FLAC audio; metadata, chapters and non-AV streams dropped."""
        cfg = self.encoder
        return [
            self.binary,
            "-hide_banner",
            "-nostdin",
            "-loglevel", "error",
            "-y",
            "-fflags", "+genpts+discardcorrupt+igndts",
            "-i", str(job.source_path),
            "-map", "0:v:0",
            "-map", "0:a:0?",
            "-sn", "-dn",
            "-map_metadata", "-1",
            "-map_chapters", "-1",
            "-avoid_negative_ts", "make_zero",
            "-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2,setsar=1,format=yuv420p10le",
            "-c:v", "libx265",
            "-profile:v", "main10",
            "-preset", cfg.preset,
            "-crf", str(cfg.crf),
            "-g", "60",
            "-keyint_min", "60",
            "-x265-params", "log-level=error:open-gop=0",
            "-c:a", "flac",
            "-ar", "48000",
            "-ac", "2",
            # Temp name has no usable extension, so the muxer is explicit
            "-f", "matroska",
            str(job.temp_path),
        ]

    def start_encode(self, job: EncodeJob) -> EncodeProcess:
        """Launches ffmpeg for ``job``. OSError propagates if the binary is missing."""
        cmd = self.build_encode_command(job)
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            # Own session: a terminal Ctrl+C reaches medorg only, which then stops ffmpeg itself
            start_new_session=True,
        )
        return EncodeProcess(process)

    # ---- scene detection --------------------------------------------------

    def build_scene_command(self, video_path: Path, duration: float) -> List[str]:
        cfg = self.contact_sheet
        vf = f"scale={cfg.tile_width}:-1,fps={scene_analysis_fps(duration)},scdet=s=1:t={cfg.scene_threshold}"
        return [
            self.binary,
            "-hide_banner",
            "-nostdin",
            "-i", str(video_path),
            "-an", "-sn", "-dn",
            "-threads", "1",
            "-vf", vf,
            "-f", "null",
            "-",
        ]

    def detect_scenes(self, video_path: Path, info: MediaInfo) -> ToolResult[List[SceneEvent]]:
        cmd = self.build_scene_command(video_path, info.duration)
        self.logger.debug(f"SCENE_CMD: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
        except OSError as e:
            return ToolResult[List[SceneEvent]](returncode=None, error=f"cannot run {self.binary}: {e}")
        if result.returncode != 0:
            tail = (result.stderr or "").strip().splitlines()[-3:]
            return ToolResult[List[SceneEvent]](
                returncode=result.returncode,
                error=f"scene detection exited with code {result.returncode}: {' | '.join(tail)}",
            )
        scenes = parse_scene_output(result.stderr or "", info.duration)
        return ToolResult[List[SceneEvent]](returncode=0, value=scenes)

    # ---- thumbnails -------------------------------------------------------

    def build_thumbnail_command(self, task: ThumbnailTask) -> List[str]:
        cfg = self.contact_sheet
        w, h = cfg.tile_width, cfg.tile_height
        t0 = max(0.0, task.timestamp - SEEK_MARGIN)
        delta = task.timestamp - t0

        cmd = [self.binary, "-hide_banner", "-nostdin", "-loglevel", "error"]
        # Fast keyframe seek before the input, accurate seek after it
        if t0 > 0:
            cmd.extend(["-ss", f"{t0:.3f}"])
        cmd.extend(["-i", str(task.video_path)])
        if delta > 0:
            cmd.extend(["-ss", f"{delta:.3f}"])
        cmd.extend([
            "-frames:v", "1",
            "-an", "-sn", "-dn",
            "-threads", "1",
            "-vf", f"scale={w}:{h}:force_original_aspect_ratio=decrease,pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:black",
            "-q:v", str(cfg.jpeg_quality),
            "-y",
            str(task.output_path),
        ])
        return cmd

    def extract_thumbnail(self, task: ThumbnailTask) -> ThumbnailResult:
        cmd = self.build_thumbnail_command(task)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
        except OSError as e:
            return ThumbnailResult(task=task, success=False, error_message=f"cannot run {self.binary}: {e}")

        if result.returncode != 0:
            task.output_path.unlink(missing_ok=True)
            return ThumbnailResult(
                task=task,
                success=False,
                error_message=f"exit {result.returncode}: {(result.stderr or '').strip()}",
            )
        if not task.output_path.exists() or task.output_path.stat().st_size == 0:
            task.output_path.unlink(missing_ok=True)
            return ThumbnailResult(task=task, success=False, error_message="no frame written")
        return ThumbnailResult(task=task, success=True)
