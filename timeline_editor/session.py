"""
Editing Session

Owns the current timeline snapshot, its undo history, and the services
used to compile and export it. Services are passed in rather than looked
up globally, so tests run a session with fake probes and processes.

    session = EditorSession()
    clip_id = session.insert_clip(MAIN_TRACK, probe_source("intro.mp4"))
    session.trim_clip(clip_id, new_in_time=1.0)
    session.undo()

    for event in session.export(ExportRequest.from_timeline(session.timeline, "out.mp4")):
        ...
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from timeline_editor import config
from timeline_editor.errors import ValidationError
from timeline_editor.export.exporter import (
    ExportEvent,
    ExportRequest,
    FFmpegExecutionAdapter,
    run_export,
)
from timeline_editor.export.ffmpeg_graph import (
    ExportOptions,
    ProbeFunc,
    RenderGraph,
    SourceCheck,
    compile_render_graph,
    default_source_exists,
)
from timeline_editor.models.commands import (
    Command,
    DeleteClipCommand,
    InsertClipCommand,
    MoveClipToTrackCommand,
    ReorderClipCommand,
    SetFilterCommand,
    SetMuteCommand,
    SetOverlayGeometryCommand,
    SetOverlaysCommand,
    SplitClipCommand,
    TrimClipCommand,
)
from timeline_editor.models.history import TimelineHistory
from timeline_editor.models.project import (
    MAIN_TRACK,
    Overlay,
    Position,
    Size,
    SourceRef,
    Timeline,
)
from timeline_editor.models.requests import apply_mutation_requests
from timeline_editor.shared.project_io import load_project, save_project

logger = logging.getLogger("TimelineEditor.Session")


class InteractiveEdit:
    """Applies commands to a session without recording history."""

    def __init__(self, session: "EditorSession"):
        self._session = session
        self.steps = 0

    def apply(self, command: Command) -> Timeline:
        self._session._timeline = command.apply(self._session._timeline)
        self.steps += 1
        return self._session._timeline


class EditorSession:
    """
    One open editing session.

    Every successful edit replaces the current snapshot and records
    it in the history. A failed edit raises ValidationError and leaves
    both untouched.
    """

    def __init__(
        self,
        timeline: Optional[Timeline] = None,
        history_limit: Optional[int] = None,
        probe: Optional[ProbeFunc] = None,
        source_exists: Optional[SourceCheck] = None,
        adapter: Optional[FFmpegExecutionAdapter] = None
    ):
        self._timeline = timeline or Timeline()
        self._timeline.check_invariants()
        self._history = TimelineHistory(history_limit or config.get_history_limit())
        self._history.push(self._timeline, "Initial state")

        self._probe = probe
        self._source_exists = source_exists or default_source_exists
        self._adapter = adapter

        self.library_clips: List[Dict[str, Any]] = []
        self.current_file: Optional[str] = None
        self.unsaved_changes = False

    @property
    def timeline(self) -> Timeline:
        return self._timeline

    @property
    def history(self) -> TimelineHistory:
        return self._history

    def _commit(self, timeline: Timeline, description: str) -> Timeline:
        self._timeline = timeline
        self._history.push(timeline, description)
        self.unsaved_changes = True
        return timeline

    # ========================================================================
    # Edit operations
    # ========================================================================

    def execute(self, command: Command) -> Timeline:
        """
        Apply a command and record the result.

        Raises:
            ValidationError: If the command cannot be applied
        """
        new_timeline = command.apply(self._timeline)
        logger.debug(f"Executed: {command.description}")
        return self._commit(new_timeline, command.description)

    def insert_clip(
        self,
        track: int,
        source: SourceRef,
        native_duration: Optional[float] = None,
        insert_index: Optional[int] = None
    ) -> str:
        """Insert an untrimmed clip and return its ID."""
        command = InsertClipCommand(track, source, native_duration, insert_index)
        self.execute(command)
        return command.clip_id

    def trim_clip(
        self,
        clip_id: str,
        new_in_time: Optional[float] = None,
        new_out_time: Optional[float] = None
    ) -> Timeline:
        return self.execute(TrimClipCommand(clip_id, new_in_time, new_out_time))

    def split_clip(self, clip_id: str, local_timestamp: float) -> Tuple[str, str]:
        """Split a clip at a time relative to its start; returns both new IDs."""
        command = SplitClipCommand(clip_id, local_timestamp)
        self.execute(command)
        return command.first_id, command.second_id

    def split_at_time(self, time: float, track: int = MAIN_TRACK) -> Tuple[str, str]:
        """Split whichever clip of a track is under a timeline position."""
        for clip in self._timeline.get_clips_at_time(time):
            if clip.track == track:
                return self.split_clip(clip.id, time - clip.start_time)
        raise ValidationError(f"No clip on track {track} at {time:.2f}s")

    def reorder_clip(self, clip_id: str, target_index: int) -> Timeline:
        return self.execute(ReorderClipCommand(clip_id, target_index))

    def delete_clip(self, clip_id: str) -> Timeline:
        return self.execute(DeleteClipCommand(clip_id))

    def move_clip_to_track(self, clip_id: str, track: int, insert_index: Optional[int] = None) -> str:
        """Move a clip to the other track; returns the ID it gets there."""
        command = MoveClipToTrackCommand(clip_id, track, insert_index)
        self.execute(command)
        return command.new_clip_id

    def set_mute(self, clip_id: str, muted: bool) -> Timeline:
        return self.execute(SetMuteCommand(clip_id, muted))

    def set_filter(self, clip_id: str, filter_name: Optional[str]) -> Timeline:
        return self.execute(SetFilterCommand(clip_id, filter_name))

    def set_overlays(self, clip_id: str, overlays: Optional[Iterable[Overlay]]) -> Timeline:
        return self.execute(SetOverlaysCommand(clip_id, overlays))

    def add_overlay(self, clip_id: str, image_ref: str, **kwargs) -> str:
        """Append a new overlay to a main-track clip and return its ID."""
        clip = self._timeline.require_clip(clip_id)
        overlay = Overlay.create_new(image_ref, **kwargs)
        self.set_overlays(clip_id, clip.overlays + (overlay,))
        return overlay.id

    def set_overlay_geometry(
        self,
        clip_id: str,
        position: Optional[Position] = None,
        size: Optional[Size] = None
    ) -> Timeline:
        return self.execute(SetOverlayGeometryCommand(clip_id, position, size))

    @contextmanager
    def interactive_edit(self, description: str = "Drag") -> Iterator[InteractiveEdit]:
        """
        Group a stream of intermediate edits into one undo step.

        Commands applied through the yielded object update the current
        snapshot immediately. When the block exits, one history entry is
        recorded, or none if the snapshot ended up unchanged. If the
        block raises, the starting snapshot is restored.

            with session.interactive_edit("Trim clip") as drag:
                for x in drag_positions:
                    drag.apply(TrimClipCommand(clip_id, new_out_time=x))
        """
        start = self._timeline
        edit = InteractiveEdit(self)
        try:
            yield edit
        except Exception:
            self._timeline = start
            raise

        if self._timeline != start:
            self._commit(self._timeline, description)
            logger.debug(f"Interactive edit committed after {edit.steps} steps: {description}")

    def apply_requests(
        self,
        requests: Iterable[Any],
        focused_clip_id: Optional[str] = None,
        description: str = "Assistant edit"
    ) -> Timeline:
        """Apply a batch of mutation requests as a single undo step."""
        new_timeline = apply_mutation_requests(self._timeline, requests, focused_clip_id)
        return self._commit(new_timeline, description)

    # ========================================================================
    # History
    # ========================================================================

    def undo(self) -> bool:
        snapshot = self._history.undo()
        if snapshot is None:
            return False
        self._timeline = snapshot
        self.unsaved_changes = True
        return True

    def redo(self) -> bool:
        snapshot = self._history.redo()
        if snapshot is None:
            return False
        self._timeline = snapshot
        self.unsaved_changes = True
        return True

    def can_undo(self) -> bool:
        return self._history.can_undo()

    def can_redo(self) -> bool:
        return self._history.can_redo()

    # ========================================================================
    # Persistence
    # ========================================================================

    def new_project(self) -> None:
        self._reset(Timeline(), [])
        self.current_file = None

    def save(self, file_path: Optional[str] = None) -> bool:
        """Save to a file (or the file last saved/loaded)."""
        file_path = file_path or self.current_file
        if not file_path:
            raise ValueError("No file path to save to")

        if not save_project(self._timeline, file_path, self.library_clips):
            return False
        self.current_file = file_path
        self.unsaved_changes = False
        return True

    def load(self, file_path: str) -> Timeline:
        """
        Load a project, replacing the timeline and resetting history.

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is invalid
        """
        project = load_project(file_path)
        self._reset(project.timeline, project.library_clips)
        self.current_file = file_path
        return self._timeline

    def _reset(self, timeline: Timeline, library_clips: List[Dict[str, Any]]) -> None:
        self._timeline = timeline
        self.library_clips = list(library_clips)
        self._history.clear()
        self._history.push(timeline, "Initial state")
        self.unsaved_changes = False

    # ========================================================================
    # Compile / export
    # ========================================================================

    def default_options(self) -> ExportOptions:
        return ExportOptions(resolution=config.get_setting("resolution"))

    async def compile(self, options: Optional[ExportOptions] = None) -> RenderGraph:
        """Compile the current snapshot into a render graph."""
        return await compile_render_graph(
            self._timeline,
            options or self.default_options(),
            probe=self._probe,
            source_exists=self._source_exists
        )

    def export(self, request: Optional[ExportRequest] = None) -> Iterator[ExportEvent]:
        """
        Compile and execute an export.

        Without a request, the current snapshot is exported with the
        default options to the default output path. Must not be called
        from inside a running event loop.
        """
        if request is None:
            request = ExportRequest.from_timeline(self._timeline, options=self.default_options())
        return run_export(
            request,
            adapter=self._adapter or FFmpegExecutionAdapter(),
            probe=self._probe,
            source_exists=self._source_exists
        )
