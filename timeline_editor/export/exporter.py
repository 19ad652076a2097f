"""
Export Module

Orchestrates the export process from timeline snapshot to final video.

    ExportRequest ──compile──> RenderGraph ──FFmpegExecutionAdapter──> events

The adapter runs FFmpeg as a subprocess and reports what happens as a
stream of events: zero or more ProgressEvent, then exactly one
SuccessEvent or FailureEvent. Nothing here retries; a caller that
wants another attempt compiles and executes again.

ExportWorker/Exporter wrap the same flow in a QThread so a UI stays
responsive while FFmpeg runs.
"""

import asyncio
import logging
import os
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from PySide6.QtCore import QObject, QThread, Signal

from timeline_editor.errors import CompilationError, ExecutionError, ValidationError
from timeline_editor.export.ffmpeg_graph import (
    ExportOptions,
    ExportSettings,
    ProbeFunc,
    RenderGraph,
    SourceCheck,
    build_ffmpeg_command,
    compile_render_graph,
    default_source_exists,
)
from timeline_editor.models.project import Clip, Timeline
from timeline_editor.models.validation import clamp
from timeline_editor.shared.ffmpeg_utils import get_ffmpeg_path

logger = logging.getLogger("TimelineEditor.Export")

DEFAULT_OUTPUT_PATH = "exported-video.mp4"

# How much of FFmpeg's stderr a failure message carries
DIAGNOSTIC_EXCERPT_CHARS = 500


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True)
class ProgressEvent:
    percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "progress", "percent": self.percent}


@dataclass(frozen=True)
class SuccessEvent:
    output_path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "success", "outputPath": self.output_path}


@dataclass(frozen=True)
class FailureEvent:
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "failure", "message": self.message}


ExportEvent = Union[ProgressEvent, SuccessEvent, FailureEvent]


def raise_for_failure(events: Iterable[ExportEvent]) -> str:
    """
    Drain an event stream.

    Returns:
        The output path of the successful export

    Raises:
        ExecutionError: If the stream ends in a failure
    """
    for event in events:
        if isinstance(event, SuccessEvent):
            return event.output_path
        if isinstance(event, FailureEvent):
            raise ExecutionError(event.message)
    raise ExecutionError("Export ended without a result")


# ============================================================================
# Requests
# ============================================================================

def normalize_output_path(output_path: Optional[str]) -> str:
    """Fall back to the default name and make sure the file ends in .mp4."""
    path = output_path or DEFAULT_OUTPUT_PATH
    if not path.lower().endswith(".mp4"):
        path += ".mp4"
    return path


@dataclass
class ExportRequest:
    """Everything needed to export: the snapshot's clips plus options."""
    clips: List[Clip]
    output_path: str = DEFAULT_OUTPUT_PATH
    options: ExportOptions = field(default_factory=ExportOptions)

    @classmethod
    def from_timeline(
        cls,
        timeline: Timeline,
        output_path: Optional[str] = None,
        options: Optional[ExportOptions] = None
    ) -> "ExportRequest":
        return cls(
            clips=timeline.get_all_clips(),
            output_path=normalize_output_path(output_path),
            options=options or ExportOptions()
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportRequest":
        return cls(
            clips=[Clip.from_dict(clip_data) for clip_data in data.get("clips", [])],
            output_path=normalize_output_path(data.get("outputPath")),
            options=ExportOptions.from_dict(data)
        )


# ============================================================================
# Progress
# ============================================================================

def parse_progress_line(line: str) -> Optional[float]:
    """
    Read the encoded position from one `-progress` line.

    FFmpeg reports out_time_ms in microseconds (the name is historical).

    Returns:
        Seconds encoded so far, or None for unrelated lines
    """
    key, _, value = line.strip().partition("=")
    if key not in ("out_time_ms", "out_time_us"):
        return None
    try:
        return int(value) / 1_000_000
    except ValueError:
        return None


class ProgressTracker:
    """Turns encoded seconds into clamped, never-decreasing percentages."""

    def __init__(self, total_duration: float):
        self.total_duration = total_duration
        self.percent = 0.0

    def update(self, seconds: float) -> Optional[float]:
        """
        Record a new position.

        Returns:
            The new percentage, or None if it did not increase
        """
        if self.total_duration <= 0:
            return None
        percent = clamp(seconds * 100.0 / self.total_duration, 0.0, 100.0)
        if percent <= self.percent:
            return None
        self.percent = percent
        return percent


# ============================================================================
# Execution adapter
# ============================================================================

class FFmpegExecutionAdapter:
    """
    Executes render graphs with an FFmpeg subprocess.

    Usage:
        adapter = FFmpegExecutionAdapter()
        for event in adapter.execute(graph, "/path/to/output.mp4"):
            ...
    """

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        settings: Optional[ExportSettings] = None,
        popen: Callable[..., Any] = subprocess.Popen
    ):
        self._ffmpeg_path = ffmpeg_path
        self._settings = settings
        self._popen = popen
        self._process = None
        self._cancelled = False

    def build_command(self, graph: RenderGraph, output_path: str) -> List[str]:
        """FFmpeg arguments for a graph, with machine-readable progress on stdout."""
        settings = self._settings or ExportSettings(output_path=output_path)
        settings = replace(settings, output_path=output_path)
        ffmpeg = self._ffmpeg_path or get_ffmpeg_path()

        cmd = build_ffmpeg_command(graph, settings, ffmpeg)
        cmd[1:1] = ["-progress", "pipe:1", "-nostats", "-loglevel", "error"]
        return cmd

    def execute(self, graph: RenderGraph, output_path: Optional[str] = None) -> Iterator[ExportEvent]:
        """
        Run FFmpeg for a graph.

        Yields:
            ProgressEvent while encoding, then one SuccessEvent or FailureEvent
        """
        output_path = normalize_output_path(output_path)
        self._cancelled = False

        try:
            cmd = self.build_command(graph, output_path)
        except (FileNotFoundError, CompilationError) as e:
            logger.error(f"Could not build FFmpeg command: {e}")
            yield FailureEvent(str(e))
            return

        logger.info(f"FFmpeg command: {' '.join(cmd)}")

        try:
            self._process = self._popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                creationflags=subprocess.CREATE_NO_WINDOW if os.name == "nt" else 0
            )
        except OSError as e:
            yield FailureEvent(f"Failed to start FFmpeg: {e}")
            return

        process = self._process
        # Drain stderr on the side so a chatty FFmpeg cannot block on a full pipe
        stderr_tail = deque(maxlen=100)
        stderr_reader = threading.Thread(
            target=lambda: stderr_tail.extend(process.stderr),
            daemon=True
        )
        stderr_reader.start()

        return_code = None
        try:
            tracker = ProgressTracker(graph.duration)
            yield ProgressEvent(0.0)

            for line in process.stdout:
                if self._cancelled:
                    break
                seconds = parse_progress_line(line)
                if seconds is not None:
                    percent = tracker.update(seconds)
                    if percent is not None:
                        yield ProgressEvent(percent)
                elif line.startswith("progress=end"):
                    break

            if not self._cancelled:
                return_code = process.wait()
        finally:
            # Also reached when the consumer stops iterating early
            if return_code is None:
                process.terminate()
                process.wait()
            stderr_reader.join(timeout=5)
            self._process = None

        if return_code is None:
            yield FailureEvent("Export cancelled")
            return

        if return_code == 0:
            if tracker.percent < 100.0:
                yield ProgressEvent(100.0)
            logger.info(f"Export complete: {output_path}")
            yield SuccessEvent(output_path)
        else:
            excerpt = "".join(stderr_tail)[-DIAGNOSTIC_EXCERPT_CHARS:].strip()
            logger.error(f"FFmpeg exited with code {return_code}")
            yield FailureEvent(f"FFmpeg error: {excerpt}" if excerpt else f"FFmpeg exited with code {return_code}")

    def cancel(self) -> None:
        """Stop the running FFmpeg process (best effort)."""
        self._cancelled = True
        process = self._process
        if process is not None and process.poll() is None:
            process.terminate()


def run_export(
    request: ExportRequest,
    adapter: Optional[FFmpegExecutionAdapter] = None,
    probe: Optional[ProbeFunc] = None,
    source_exists: SourceCheck = default_source_exists
) -> Iterator[ExportEvent]:
    """
    Compile a request and execute it.

    Validation and compilation errors become a single FailureEvent
    before FFmpeg is started.
    """
    adapter = adapter or FFmpegExecutionAdapter()
    try:
        graph = asyncio.run(compile_render_graph(
            request.clips,
            request.options,
            probe=probe,
            source_exists=source_exists
        ))
    except (ValidationError, CompilationError) as e:
        logger.error(f"Export rejected: {e}")
        yield FailureEvent(str(e))
        return

    yield from adapter.execute(graph, request.output_path)


# ============================================================================
# Qt integration
# ============================================================================

class ExportWorker(QThread):
    """
    Worker thread for video export.

    Runs compilation and the FFmpeg process in a separate thread to
    keep the UI responsive during export.

    Signals:
        progress: Export progress (0 to 100)
        status: Status message
        completed: Export complete (success, output_path_or_error)
    """

    progress = Signal(float)
    status = Signal(str)
    completed = Signal(bool, str)

    def __init__(
        self,
        request: ExportRequest,
        adapter: Optional[FFmpegExecutionAdapter] = None,
        probe: Optional[ProbeFunc] = None,
        source_exists: SourceCheck = default_source_exists,
        parent=None
    ):
        super().__init__(parent)

        self.request = request
        self.adapter = adapter or FFmpegExecutionAdapter()
        self._probe = probe
        self._source_exists = source_exists

    def run(self) -> None:
        """Execute the export process."""
        self.status.emit("Building export graph...")
        self.progress.emit(0.0)

        events = run_export(self.request, self.adapter, self._probe, self._source_exists)
        for event in events:
            if isinstance(event, ProgressEvent):
                self.status.emit("Encoding video...")
                self.progress.emit(event.percent)
            elif isinstance(event, SuccessEvent):
                self.status.emit("Export complete!")
                self.completed.emit(True, event.output_path)
            else:
                self.status.emit("Export failed")
                self.completed.emit(False, event.message)

    def cancel(self) -> None:
        """Cancel the export process."""
        self.adapter.cancel()


class Exporter(QObject):
    """
    High-level export interface.

    Usage:
        exporter = Exporter()
        exporter.progress.connect(update_progress_bar)
        exporter.finished.connect(on_export_complete)
        exporter.export(ExportRequest.from_timeline(timeline, "/path/to/output.mp4"))

    Only one export runs at a time; export() returns False while busy.

    Signals:
        progress: Export progress (0 to 100)
        status: Status message
        finished: Export complete (success, output_path_or_error)
    """

    progress = Signal(float)
    status = Signal(str)
    finished = Signal(bool, str)

    def __init__(
        self,
        adapter_factory: Callable[[], FFmpegExecutionAdapter] = FFmpegExecutionAdapter,
        probe: Optional[ProbeFunc] = None,
        source_exists: SourceCheck = default_source_exists,
        parent=None
    ):
        super().__init__(parent)

        self._adapter_factory = adapter_factory
        self._probe = probe
        self._source_exists = source_exists
        self._worker: Optional[ExportWorker] = None

    def create_worker(self, request: ExportRequest) -> ExportWorker:
        worker = ExportWorker(
            request,
            adapter=self._adapter_factory(),
            probe=self._probe,
            source_exists=self._source_exists
        )
        worker.progress.connect(self.progress)
        worker.status.connect(self.status)
        worker.completed.connect(self.finished)
        return worker

    def export(self, request: ExportRequest) -> bool:
        """
        Start the export process.

        Returns:
            False if an export is already running
        """
        if self.is_exporting():
            logger.warning("Export already in progress")
            return False

        self._worker = self.create_worker(request)
        self._worker.start()
        return True

    def cancel(self) -> None:
        """Cancel the current export."""
        if self._worker:
            self._worker.cancel()

    def is_exporting(self) -> bool:
        """Check if an export is in progress."""
        return self._worker is not None and self._worker.isRunning()
