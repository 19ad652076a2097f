"""
Edit Commands

Every modification to the timeline is encapsulated as a Command
object. A command takes the current Timeline snapshot and returns a
new one; it never modifies the snapshot it was given. Invalid
requests raise ValidationError before anything is built, so a
command either fully succeeds or has no effect.

Undo/redo is handled by the history log, which stores the snapshots
commands produce (see timeline_editor.models.history).

Usage:
    command = TrimClipCommand(clip_id, new_in_time=2.0)
    timeline = command.apply(timeline)
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Iterable, Optional
import logging
import uuid

from timeline_editor.errors import ValidationError
from timeline_editor.models.project import (
    Clip,
    Overlay,
    Position,
    Size,
    SourceRef,
    Timeline,
    MAIN_TRACK,
    VIDEO_FILTERS,
    check_track,
)
from timeline_editor.models.validation import MIN_CLIP_DURATION, clamp, is_finite_number

logger = logging.getLogger("TimelineEditor.Commands")


class Command(ABC):
    """
    Abstract base class for all edit commands.

    Commands are self-contained: everything needed to build the new
    snapshot is passed to the constructor.
    """

    @abstractmethod
    def apply(self, timeline: Timeline) -> Timeline:
        """
        Apply the command.

        Args:
            timeline: The current snapshot

        Returns:
            The new snapshot

        Raises:
            ValidationError: If the command cannot be applied
        """

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of this command."""


def _new_clip_id() -> str:
    return f"clip-{uuid.uuid4().hex}"


def _require_time(value, label: str) -> float:
    if not is_finite_number(value):
        raise ValidationError(f"{label} must be a finite number, got {value!r}")
    return value


# ============================================================================
# Layout Commands
# ============================================================================

class InsertClipCommand(Command):
    """
    Insert a new, untrimmed clip into one track.

    The clip covers the whole source (in_time=0, out_time=duration).
    Without an insert index, or with one past the end, the clip is
    appended.
    """

    def __init__(
        self,
        track: int,
        source: SourceRef,
        native_duration: Optional[float] = None,
        insert_index: Optional[int] = None,
        clip_id: Optional[str] = None
    ):
        self._track = track
        self._source = source
        self._native_duration = source.duration if native_duration is None else native_duration
        self._insert_index = insert_index
        self.clip_id = clip_id or _new_clip_id()

    def apply(self, timeline: Timeline) -> Timeline:
        check_track(self._track)
        duration = _require_time(self._native_duration, "Native duration")
        if duration < MIN_CLIP_DURATION:
            raise ValidationError(
                f"Clip must be at least {MIN_CLIP_DURATION} seconds long"
            )
        if timeline.get_clip_by_id(self.clip_id) is not None:
            raise ValidationError(f"Duplicate clip id: {self.clip_id}")

        source = self._source
        if source.duration != duration:
            source = replace(source, duration=duration)

        clip = Clip(
            id=self.clip_id,
            source=source,
            in_time=0.0,
            out_time=duration,
            track=self._track
        )

        clips = list(timeline.get_track(self._track))
        index = self._insert_index
        if index is None or index < 0 or index >= len(clips):
            clips.append(clip)
        else:
            clips.insert(index, clip)

        logger.debug(f"Inserted {clip.name} on track {self._track}")
        return timeline.with_track(self._track, clips)

    @property
    def description(self) -> str:
        return f"Add clip: {self._source.name}"


class TrimClipCommand(Command):
    """
    Command to trim a clip's in/out points.

    Requested values are clamped to the source's native duration. Only
    the clip's own track is re-laid out.
    """

    def __init__(
        self,
        clip_id: str,
        new_in_time: Optional[float] = None,
        new_out_time: Optional[float] = None
    ):
        self._clip_id = clip_id
        self._new_in_time = new_in_time
        self._new_out_time = new_out_time

    def apply(self, timeline: Timeline) -> Timeline:
        clip = timeline.require_clip(self._clip_id)
        native = clip.native_duration

        in_time = clip.in_time
        out_time = clip.out_time
        if self._new_in_time is not None:
            in_time = clamp(_require_time(self._new_in_time, "In time"), 0.0, native)
        if self._new_out_time is not None:
            out_time = clamp(_require_time(self._new_out_time, "Out time"), 0.0, native)

        if out_time - in_time < MIN_CLIP_DURATION:
            raise ValidationError(
                f"Clip must be at least {MIN_CLIP_DURATION} seconds long"
            )

        return timeline.replace_clip(replace(clip, in_time=in_time, out_time=out_time))

    @property
    def description(self) -> str:
        return "Trim clip"


class SplitClipCommand(Command):
    """
    Command to split a clip in two.

    The timestamp is local to the clip's trimmed content: splitting a
    [2, 8] clip at 3 yields [2, 5] and [5, 8]. Both halves get new IDs
    and replace the original at its position in the track.
    """

    def __init__(self, clip_id: str, local_timestamp: float):
        self._clip_id = clip_id
        self._local_timestamp = local_timestamp
        self.first_id = _new_clip_id()
        self.second_id = _new_clip_id()

    def apply(self, timeline: Timeline) -> Timeline:
        clip = timeline.require_clip(self._clip_id)
        timestamp = _require_time(self._local_timestamp, "Split point")

        if timestamp < MIN_CLIP_DURATION or timestamp > clip.duration - MIN_CLIP_DURATION:
            raise ValidationError(
                f"Split point must be at least {MIN_CLIP_DURATION}s from clip edges"
            )

        split_source_time = clip.in_time + timestamp
        first = replace(clip, id=self.first_id, out_time=split_source_time)
        second = replace(clip, id=self.second_id, in_time=split_source_time)

        clips = []
        for candidate in timeline.get_track(clip.track):
            if candidate.id == clip.id:
                clips.extend([first, second])
            else:
                clips.append(candidate)
        return timeline.with_track(clip.track, clips)

    @property
    def description(self) -> str:
        return "Split clip"


class ReorderClipCommand(Command):
    """Move a clip to another index within its own track."""

    def __init__(self, clip_id: str, target_index: int):
        self._clip_id = clip_id
        self._target_index = target_index

    def apply(self, timeline: Timeline) -> Timeline:
        clip = timeline.require_clip(self._clip_id)
        if not is_finite_number(self._target_index):
            raise ValidationError(f"Target index must be a finite number, got {self._target_index!r}")
        clips = [c for c in timeline.get_track(clip.track) if c.id != clip.id]
        index = int(clamp(self._target_index, 0, len(clips)))
        clips.insert(index, clip)
        return timeline.with_track(clip.track, clips)

    @property
    def description(self) -> str:
        return "Move clip"


class DeleteClipCommand(Command):
    """Command to delete a clip from the timeline."""

    def __init__(self, clip_id: str):
        self._clip_id = clip_id

    def apply(self, timeline: Timeline) -> Timeline:
        clip = timeline.require_clip(self._clip_id)
        clips = [c for c in timeline.get_track(clip.track) if c.id != clip.id]
        return timeline.with_track(clip.track, clips)

    @property
    def description(self) -> str:
        return "Delete clip"


class MoveClipToTrackCommand(Command):
    """
    Move a clip to the other track.

    Cross-track moves are a delete followed by an insert: the moved
    clip gets a new ID but keeps its trim window, filter and mute flag.
    """

    def __init__(self, clip_id: str, track: int, insert_index: Optional[int] = None):
        self._clip_id = clip_id
        self._track = track
        self._insert_index = insert_index
        self.new_clip_id = _new_clip_id()

    def apply(self, timeline: Timeline) -> Timeline:
        clip = timeline.require_clip(self._clip_id)
        check_track(self._track)
        if clip.track == self._track:
            raise ValidationError("Clip is already on that track")

        timeline = DeleteClipCommand(clip.id).apply(timeline)

        moved = replace(
            clip,
            id=self.new_clip_id,
            track=self._track,
            overlays=clip.overlays if self._track == MAIN_TRACK else ()
        )
        clips = list(timeline.get_track(self._track))
        index = self._insert_index
        if index is None or index < 0 or index >= len(clips):
            clips.append(moved)
        else:
            clips.insert(index, moved)
        return timeline.with_track(self._track, clips)

    @property
    def description(self) -> str:
        return "Move clip to track"


# ============================================================================
# Attribute Commands
# ============================================================================

class SetMuteCommand(Command):
    """Command to mute or unmute a clip's audio."""

    def __init__(self, clip_id: str, muted: bool):
        self._clip_id = clip_id
        self._muted = bool(muted)

    def apply(self, timeline: Timeline) -> Timeline:
        clip = timeline.require_clip(self._clip_id)
        return timeline.replace_clip(replace(clip, muted=self._muted))

    @property
    def description(self) -> str:
        return "Mute clip" if self._muted else "Unmute clip"


class SetFilterCommand(Command):
    """Command to set or clear a clip's video filter ("none" clears)."""

    def __init__(self, clip_id: str, filter_name: Optional[str]):
        self._clip_id = clip_id
        self._filter = None if filter_name in (None, "", "none") else filter_name

    def apply(self, timeline: Timeline) -> Timeline:
        if self._filter is not None and self._filter not in VIDEO_FILTERS:
            raise ValidationError(f"Unknown filter: {self._filter}")
        clip = timeline.require_clip(self._clip_id)
        return timeline.replace_clip(replace(clip, filter=self._filter))

    @property
    def description(self) -> str:
        return f"Apply filter: {self._filter or 'none'}"


class SetOverlaysCommand(Command):
    """Replace the image overlays of a main-track clip (None clears)."""

    def __init__(self, clip_id: str, overlays: Optional[Iterable[Overlay]]):
        self._clip_id = clip_id
        self._overlays = tuple(overlays or ())

    def apply(self, timeline: Timeline) -> Timeline:
        clip = timeline.require_clip(self._clip_id)
        if self._overlays and clip.track != MAIN_TRACK:
            raise ValidationError("Overlays can only be added to main video track (track 0)")

        overlay_ids = [overlay.id for overlay in self._overlays]
        if len(overlay_ids) != len(set(overlay_ids)):
            raise ValidationError("Overlay ids must be unique within a clip")

        return timeline.replace_clip(replace(clip, overlays=self._overlays))

    @property
    def description(self) -> str:
        return f"Set overlays ({len(self._overlays)})"


class SetOverlayGeometryCommand(Command):
    """Set the picture-in-picture position/size of a clip."""

    def __init__(
        self,
        clip_id: str,
        position: Optional[Position] = None,
        size: Optional[Size] = None
    ):
        self._clip_id = clip_id
        self._position = position
        self._size = size

    def apply(self, timeline: Timeline) -> Timeline:
        clip = timeline.require_clip(self._clip_id)
        return timeline.replace_clip(replace(
            clip,
            position=self._position or clip.position,
            size=self._size or clip.size
        ))

    @property
    def description(self) -> str:
        return "Move overlay"
