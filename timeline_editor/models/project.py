"""
Timeline Data Model

This module defines the core data structures for the timeline editor.
Every edit produces a new immutable Timeline snapshot; snapshots are
what the history log stores, what gets saved to disk and what the
export graph builder compiles.

The data model follows a time-based approach where:
- Clips reference source files and define in/out points
- Timeline positions are stored in seconds and always derived
- The actual media files are never modified

Architecture:
    Timeline
    ├── main: Tuple[Clip, ...]      (track 0)
    │   └── overlays: Tuple[Overlay, ...]
    └── overlay: Tuple[Clip, ...]   (track 1, picture-in-picture)

Within a track clips are contiguous: the first starts at 0 and each
following clip starts where the previous one ends.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple
import os
import uuid

from timeline_editor.errors import ValidationError
from timeline_editor.models.validation import MIN_CLIP_DURATION, TIME_TOLERANCE, is_finite_number


MAIN_TRACK = 0
OVERLAY_TRACK = 1
TRACKS = (MAIN_TRACK, OVERLAY_TRACK)

# Filter names understood by the export pipeline
VIDEO_FILTERS = (
    "grayscale",
    "sepia",
    "vintage",
    "xray",
    "blur",
    "bright",
    "dark",
    "high-contrast",
    "flicker",
)


@dataclass(frozen=True)
class Position:
    """Frame-relative position in percent (0-100)."""
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], default: "Position") -> "Position":
        if not data:
            return default
        return cls(x=data.get("x", default.x), y=data.get("y", default.y))


@dataclass(frozen=True)
class Size:
    """Frame-relative size in percent (0-100)."""
    width: float = 100.0
    height: float = 100.0

    def to_dict(self) -> Dict[str, float]:
        return {"width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], default: "Size") -> "Size":
        if not data:
            return default
        return cls(
            width=data.get("width", default.width),
            height=data.get("height", default.height)
        )


DEFAULT_OVERLAY_POSITION = Position(10.0, 10.0)
DEFAULT_OVERLAY_SIZE = Size(25.0, 25.0)
DEFAULT_OVERLAY_OPACITY = 0.7

# Picture-in-picture geometry for clips on the overlay track
DEFAULT_PIP_POSITION = Position(70.0, 70.0)
DEFAULT_PIP_SIZE = Size(25.0, 25.0)


@dataclass(frozen=True)
class SourceRef:
    """
    Reference to an external media asset.

    Attributes:
        path: Absolute path to the source media file
        duration: Probed native duration (seconds)
        width: Native frame width, when known
        height: Native frame height, when known
    """
    path: str
    duration: float
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def name(self) -> str:
        """Display name (the file name)."""
        return os.path.basename(self.path)

    def to_dict(self) -> Dict[str, Any]:
        data = {"path": self.path, "duration": self.duration}
        if self.width is not None:
            data["width"] = self.width
        if self.height is not None:
            data["height"] = self.height
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRef":
        return cls(
            path=data["path"],
            duration=data["duration"],
            width=data.get("width"),
            height=data.get("height")
        )


@dataclass(frozen=True)
class Overlay:
    """
    An image composited onto a main-track clip.

    Attributes:
        id: Unique within the owning clip
        image_ref: Path to the overlay image
        opacity: 0.0 (invisible) to 1.0 (opaque)
        position: Top-left corner, percent of the frame
        size: Width/height, percent of the frame
    """
    id: str
    image_ref: str
    opacity: float = DEFAULT_OVERLAY_OPACITY
    position: Position = DEFAULT_OVERLAY_POSITION
    size: Size = DEFAULT_OVERLAY_SIZE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "imageRef": self.image_ref,
            "opacity": self.opacity,
            "position": self.position.to_dict(),
            "size": self.size.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Overlay":
        return cls(
            id=data["id"],
            image_ref=data["imageRef"],
            opacity=data.get("opacity", DEFAULT_OVERLAY_OPACITY),
            position=Position.from_dict(data.get("position"), DEFAULT_OVERLAY_POSITION),
            size=Size.from_dict(data.get("size"), DEFAULT_OVERLAY_SIZE)
        )

    @staticmethod
    def create_new(
        image_ref: str,
        opacity: float = DEFAULT_OVERLAY_OPACITY,
        position: Position = DEFAULT_OVERLAY_POSITION,
        size: Size = DEFAULT_OVERLAY_SIZE
    ) -> "Overlay":
        """Factory method to create a new overlay with a generated ID."""
        return Overlay(
            id=f"overlay-{uuid.uuid4().hex[:12]}",
            image_ref=image_ref,
            opacity=opacity,
            position=position,
            size=size
        )


@dataclass(frozen=True)
class Clip:
    """
    Represents a clip on the timeline.

    A clip is a reference to a portion of a source file placed on one
    of the two tracks. Its start_time is derived from the clips before
    it on the same track and is never set by edit commands directly.

    Attributes:
        id: Unique identifier across both tracks
        source: The source asset and its native duration
        in_time: Start time in the source file (seconds)
        out_time: End time in the source file (seconds)
        start_time: Derived position on the timeline (seconds)
        track: MAIN_TRACK or OVERLAY_TRACK
        muted: Whether the clip's audio is silenced
        filter: Optional entry of VIDEO_FILTERS
        overlays: Image overlays (main track)
        position: Picture-in-picture position (overlay track)
        size: Picture-in-picture size (overlay track)
    """
    id: str
    source: SourceRef
    in_time: float
    out_time: float
    start_time: float = 0.0
    track: int = MAIN_TRACK
    muted: bool = False
    filter: Optional[str] = None
    overlays: Tuple[Overlay, ...] = ()
    position: Position = DEFAULT_PIP_POSITION
    size: Size = DEFAULT_PIP_SIZE

    @property
    def duration(self) -> float:
        """Duration of this clip on the timeline."""
        return self.out_time - self.in_time

    @property
    def timeline_end(self) -> float:
        """End position on the timeline."""
        return self.start_time + self.duration

    @property
    def native_duration(self) -> float:
        return self.source.duration

    @property
    def name(self) -> str:
        return self.source.name

    def contains_time(self, time: float) -> bool:
        """Check if a timeline time falls within this clip."""
        return self.start_time <= time < self.timeline_end

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the snapshot clip schema."""
        return {
            "id": self.id,
            "sourceRef": self.source.to_dict(),
            "inTime": self.in_time,
            "outTime": self.out_time,
            "startTime": self.start_time,
            "track": self.track,
            "muted": self.muted,
            "filter": self.filter,
            "overlays": [overlay.to_dict() for overlay in self.overlays],
            "position": self.position.to_dict(),
            "size": self.size.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Clip":
        """
        Deserialize from the snapshot clip schema.

        Values are taken as-is; range checks happen when the clip is
        placed into a Timeline or compiled for export.
        """
        return cls(
            id=data["id"],
            source=SourceRef.from_dict(data["sourceRef"]),
            in_time=data["inTime"],
            out_time=data["outTime"],
            start_time=data.get("startTime", 0.0),
            track=data.get("track", MAIN_TRACK),
            muted=data.get("muted", False),
            filter=data.get("filter") or None,
            overlays=tuple(
                Overlay.from_dict(overlay_data)
                for overlay_data in (data.get("overlays") or [])
            ),
            position=Position.from_dict(data.get("position"), DEFAULT_PIP_POSITION),
            size=Size.from_dict(data.get("size"), DEFAULT_PIP_SIZE)
        )

    @staticmethod
    def create_new(
        source: SourceRef,
        in_time: float,
        out_time: float,
        track: int = MAIN_TRACK
    ) -> "Clip":
        """Factory method to create a new clip with a generated ID."""
        return Clip(
            id=f"clip-{uuid.uuid4().hex}",
            source=source,
            in_time=in_time,
            out_time=out_time,
            track=track
        )

    def validate(self) -> None:
        """
        Check the trim window against the source and the filter name.

        Raises:
            ValidationError: If the clip could not be rendered as stored
        """
        if not (is_finite_number(self.in_time) and is_finite_number(self.out_time)):
            raise ValidationError(f"Clip {self.id} has non-numeric trim points")
        if self.out_time <= self.in_time:
            raise ValidationError(f"Clip {self.id} has outTime <= inTime")
        if self.in_time < 0:
            raise ValidationError(f"Clip {self.id} starts before its source (inTime={self.in_time})")
        if not is_finite_number(self.source.duration):
            raise ValidationError(f"Clip {self.id} has no valid source duration")
        if self.out_time > self.source.duration + TIME_TOLERANCE:
            raise ValidationError(
                f"Clip {self.id} ends after its source "
                f"(outTime={self.out_time}, duration={self.source.duration})"
            )
        if self.duration < MIN_CLIP_DURATION - TIME_TOLERANCE:
            raise ValidationError(
                f"Clip {self.id} is shorter than {MIN_CLIP_DURATION} seconds"
            )
        if self.filter is not None and self.filter not in VIDEO_FILTERS:
            raise ValidationError(f"Clip {self.id} has unknown filter: {self.filter}")


def layout_track(clips: Iterable[Clip]) -> Tuple[Clip, ...]:
    """
    Recompute start times for one track.

    The first clip starts at 0 and every following clip starts where
    the previous one ends, so the track has no gaps or overlaps.
    """
    laid_out = []
    current_time = 0.0
    for clip in clips:
        if clip.start_time != current_time:
            clip = replace(clip, start_time=current_time)
        laid_out.append(clip)
        current_time = current_time + clip.duration
    return tuple(laid_out)


def check_track(track: int) -> int:
    if track not in TRACKS:
        raise ValidationError(f"Unknown track: {track}")
    return track


@dataclass(frozen=True)
class Timeline:
    """
    An immutable snapshot of both tracks.

    This is the single source of truth for the timeline state. Edit
    commands never modify a Timeline; they build a new one through
    with_track(), which re-derives the start times of that track.
    """
    main: Tuple[Clip, ...] = ()
    overlay: Tuple[Clip, ...] = ()

    @property
    def tracks(self) -> Tuple[Tuple[Clip, ...], Tuple[Clip, ...]]:
        return (self.main, self.overlay)

    @property
    def duration(self) -> float:
        """End time of the longest track."""
        return max(self.track_duration(MAIN_TRACK), self.track_duration(OVERLAY_TRACK))

    def track_duration(self, track: int) -> float:
        clips = self.get_track(track)
        if not clips:
            return 0.0
        return clips[-1].timeline_end

    def get_track(self, track: int) -> Tuple[Clip, ...]:
        return self.tracks[check_track(track)]

    def get_clip_by_id(self, clip_id: str) -> Optional[Clip]:
        """Find a clip by its ID across both tracks."""
        for clip in self.get_all_clips():
            if clip.id == clip_id:
                return clip
        return None

    def require_clip(self, clip_id: str) -> Clip:
        """Like get_clip_by_id, but a missing clip is a ValidationError."""
        clip = self.get_clip_by_id(clip_id)
        if clip is None:
            raise ValidationError(f"Clip not found: {clip_id}")
        return clip

    def index_of(self, clip_id: str) -> int:
        """Position of a clip within its own track."""
        clip = self.require_clip(clip_id)
        for i, candidate in enumerate(self.get_track(clip.track)):
            if candidate.id == clip_id:
                return i
        raise ValidationError(f"Clip not found: {clip_id}")

    def get_all_clips(self) -> List[Clip]:
        """Get all clips, main track first."""
        return list(self.main) + list(self.overlay)

    def get_clips_at_time(self, time: float) -> List[Clip]:
        """Get the clips on either track active at a timeline time."""
        return [clip for clip in self.get_all_clips() if clip.contains_time(time)]

    def with_track(self, track: int, clips: Iterable[Clip]) -> "Timeline":
        """Return a new Timeline with one track replaced and re-laid out."""
        laid_out = layout_track(clips)
        if check_track(track) == MAIN_TRACK:
            return replace(self, main=laid_out)
        return replace(self, overlay=laid_out)

    def replace_clip(self, clip: Clip) -> "Timeline":
        """Swap in a clip with the same ID, keeping its track position."""
        track = self.get_track(clip.track)
        updated = [clip if candidate.id == clip.id else candidate for candidate in track]
        return self.with_track(clip.track, updated)

    def check_invariants(self) -> None:
        """
        Verify per-track layout, trim windows and ID uniqueness.

        Raises:
            ValidationError: On the first violated invariant
        """
        seen_ids = set()
        for track, clips in enumerate(self.tracks):
            expected_start = 0.0
            for clip in clips:
                if clip.id in seen_ids:
                    raise ValidationError(f"Duplicate clip id: {clip.id}")
                seen_ids.add(clip.id)
                if clip.track != track:
                    raise ValidationError(f"Clip {clip.id} is stored on the wrong track")
                clip.validate()
                if clip.start_time != expected_start:
                    raise ValidationError(f"Clip {clip.id} breaks the track layout")
                overlay_ids = [overlay.id for overlay in clip.overlays]
                if len(overlay_ids) != len(set(overlay_ids)):
                    raise ValidationError(f"Clip {clip.id} has duplicate overlay ids")
                expected_start = clip.timeline_end

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the snapshot as a flat list of clips."""
        return {"timelineClips": [clip.to_dict() for clip in self.get_all_clips()]}

    @classmethod
    def from_clips(cls, clips: Iterable[Clip]) -> "Timeline":
        """
        Build a Timeline from an unordered list of clips.

        Clips are grouped by track and ordered by their stored start
        time (ties keep list order), then laid out again.
        """
        by_track: Dict[int, List[Clip]] = {MAIN_TRACK: [], OVERLAY_TRACK: []}
        for clip in clips:
            by_track[check_track(clip.track)].append(clip)

        timeline = cls(
            main=layout_track(sorted(by_track[MAIN_TRACK], key=lambda c: c.start_time)),
            overlay=layout_track(sorted(by_track[OVERLAY_TRACK], key=lambda c: c.start_time))
        )
        timeline.check_invariants()
        return timeline

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Timeline":
        """Deserialize a snapshot from a dictionary."""
        return cls.from_clips(
            Clip.from_dict(clip_data) for clip_data in data.get("timelineClips", [])
        )

    def __repr__(self) -> str:
        return (
            f"Timeline(main={len(self.main)}, "
            f"overlay={len(self.overlay)}, "
            f"duration={self.duration:.2f}s)"
        )
