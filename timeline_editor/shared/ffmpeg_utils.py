"""
FFmpeg Utilities Module

Locates the FFmpeg/FFprobe binaries and reads media metadata for the
timeline editor.

All operations are executed via subprocess to ensure cross-platform
compatibility and avoid binary dependencies beyond FFmpeg itself.
"""

import asyncio
import json
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Tuple

import imageio_ffmpeg

from timeline_editor import config
from timeline_editor.models.project import SourceRef


@dataclass
class VideoMetadata:
    """Container for video file metadata."""
    duration: float          # Duration in seconds
    width: int              # Frame width in pixels
    height: int             # Frame height in pixels
    fps: float              # Frames per second
    codec: str              # Video codec name
    has_audio: bool         # Whether an audio stream is present
    rotation: int           # Rotation in degrees (0, 90, 180, 270)

    @property
    def display_size(self) -> Tuple[int, int]:
        """Frame size after FFmpeg applies the rotation."""
        if self.rotation in (90, 270):
            return self.height, self.width
        return self.width, self.height


def _creation_flags() -> int:
    return subprocess.CREATE_NO_WINDOW if os.name == "nt" else 0


def get_ffmpeg_path() -> str:
    """
    Finds the FFmpeg binary path.
    Checks the configured path first, then system PATH, then the
    binary bundled with imageio-ffmpeg.
    """
    configured = config.get_setting("ffmpeg")
    if configured and os.path.exists(configured):
        return configured

    system_ffmpeg = shutil.which("ffmpeg")
    if system_ffmpeg:
        return system_ffmpeg

    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError:
        raise FileNotFoundError(
            "FFmpeg not found. Please install FFmpeg or set TIMELINE_EDITOR_FFMPEG."
        )


def get_ffprobe_path() -> str:
    """
    Finds the FFprobe binary path.
    Checks the configured path first, then system PATH.
    """
    configured = config.get_setting("ffprobe")
    if configured and os.path.exists(configured):
        return configured

    system_ffprobe = shutil.which("ffprobe")
    if system_ffprobe:
        return system_ffprobe

    raise FileNotFoundError(
        "FFprobe not found. Please install FFmpeg/FFprobe or set TIMELINE_EDITOR_FFPROBE."
    )


def parse_probe_output(data: dict, file_path: str = "") -> VideoMetadata:
    """
    Builds VideoMetadata from FFprobe's JSON output.

    Raises:
        RuntimeError: If there is no video stream
    """
    streams = data.get("streams", [])
    video_stream = None
    for stream in streams:
        if stream.get("codec_type") == "video":
            video_stream = stream
            break

    if not video_stream:
        raise RuntimeError(f"No video stream found in: {file_path}")

    # Parse frame rate (can be "30/1" or "29.97")
    fps_str = video_stream.get("r_frame_rate", "30/1")
    if "/" in fps_str:
        num, den = map(float, fps_str.split("/"))
        fps = num / den if den != 0 else 30.0
    else:
        fps = float(fps_str)

    # Get rotation from side_data or tags
    rotation = 0
    for side_data in video_stream.get("side_data_list", []):
        if "rotation" in side_data:
            rotation = int(side_data["rotation"])
    if "rotate" in video_stream.get("tags", {}):
        rotation = int(video_stream["tags"]["rotate"])

    # Get duration from format or stream
    duration = float(data.get("format", {}).get("duration", 0))
    if duration == 0 and "duration" in video_stream:
        duration = float(video_stream["duration"])

    return VideoMetadata(
        duration=duration,
        width=int(video_stream.get("width", 0)),
        height=int(video_stream.get("height", 0)),
        fps=fps,
        codec=video_stream.get("codec_name", "unknown"),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
        rotation=abs(rotation) % 360
    )


def get_video_metadata(file_path: str) -> VideoMetadata:
    """
    Extracts video metadata using FFprobe.

    Args:
        file_path: Path to the video file

    Returns:
        VideoMetadata object with video properties

    Raises:
        FileNotFoundError: If file doesn't exist
        RuntimeError: If FFprobe fails to parse the file
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Video file not found: {file_path}")

    cmd = [
        get_ffprobe_path(),
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        file_path
    ]

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            creationflags=_creation_flags()
        )
        data = json.loads(result.stdout)
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"FFprobe failed: {e.stderr}")
    except json.JSONDecodeError:
        raise RuntimeError("Failed to parse FFprobe output")

    return parse_probe_output(data, file_path)


def probe_source(file_path: str) -> SourceRef:
    """
    Probe a media file into a SourceRef ready for insertion.

    Raises:
        FileNotFoundError: If file doesn't exist
        RuntimeError: If FFprobe fails to parse the file
    """
    metadata = get_video_metadata(file_path)
    return SourceRef(
        path=os.path.abspath(file_path),
        duration=metadata.duration,
        width=metadata.width or None,
        height=metadata.height or None
    )


async def probe_video_dimensions(source: SourceRef) -> Tuple[int, int]:
    """Displayed (width, height) of a source, probed without blocking the loop."""
    metadata = await asyncio.to_thread(get_video_metadata, source.path)
    return metadata.display_size
