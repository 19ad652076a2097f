"""
Timeline Mutation Requests

Command sources outside the editor (the assistant panel, scripts)
describe edits as named requests:

    {"name": "applyFilterToClip", "arguments": {"clipId": "all", "filter": "sepia"}}

This module turns a batch of such requests into edit commands and
applies them in order. A batch is atomic: if any request is invalid,
ValidationError is raised and the caller keeps its original snapshot.

Clip targets may be a clip ID or one of:
    "first"   - first clip on the main track
    "focused" - the clip focused in the UI (falls back to "first")
    "all"     - every clip (filters only)
    "track1"  - every clip on the overlay track (filters only)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging
import random

from timeline_editor.errors import ValidationError
from timeline_editor.models.commands import (
    Command,
    DeleteClipCommand,
    InsertClipCommand,
    ReorderClipCommand,
    SetFilterCommand,
    SetMuteCommand,
    SetOverlaysCommand,
    SplitClipCommand,
    TrimClipCommand,
)
from timeline_editor.models.project import (
    Clip,
    Overlay,
    Position,
    Size,
    SourceRef,
    Timeline,
    MAIN_TRACK,
    OVERLAY_TRACK,
)
from timeline_editor.models.validation import clamp

logger = logging.getLogger("TimelineEditor.Requests")

OVERLAY_TYPES = ("ghost", "monster", "tombstone")

# Horizontal slots overlays are spread across, in percent
X_POSITIONS = (15, 35, 55, 75, 85)

# Only the first overlay of a request is applied
MAX_OVERLAYS_PER_REQUEST = 1

REQUEST_OVERLAY_OPACITY = 0.5


@dataclass
class MutationRequest:
    """A single named edit request."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MutationRequest":
        return cls(name=data["name"], arguments=dict(data.get("arguments") or {}))


def place_overlay(overlay_type: str, index: int, rng: random.Random) -> Tuple[Position, Size]:
    """
    Pick a position and size for a new overlay.

    Overlays are spread horizontally by index; the vertical band
    depends on the type (ghosts float near the top, tombstones sit at
    the bottom, everything else goes in the middle).
    """
    x = X_POSITIONS[index % len(X_POSITIONS)] + (rng.random() * 10 - 5)

    if overlay_type == "ghost":
        y = 5 + rng.random() * 25
    elif overlay_type == "tombstone":
        y = 70 + rng.random() * 20
    else:
        y = 30 + rng.random() * 40

    base_size = 15 + rng.random() * 10
    return (
        Position(x=clamp(x, 5, 85), y=clamp(y, 5, 90)),
        Size(width=base_size, height=base_size)
    )


def _infer_overlay_type(overlay: Dict[str, Any]) -> str:
    overlay_type = overlay.get("type")
    if overlay_type in OVERLAY_TYPES:
        return overlay_type

    tags = " ".join(overlay.get("tags") or []).lower()
    if "tombstone" in tags or "grave" in tags:
        return "tombstone"
    if "monster" in tags or "zombie" in tags or "creature" in tags:
        return "monster"
    return "ghost"


def _first_main_clip(timeline: Timeline) -> Clip:
    if timeline.main:
        return timeline.main[0]
    clips = timeline.get_all_clips()
    if not clips:
        raise ValidationError("No clips on the timeline")
    return clips[0]


def resolve_targets(
    timeline: Timeline,
    target: str,
    focused_clip_id: Optional[str] = None
) -> List[Clip]:
    """Resolve a clip target to the clips it names."""
    if target == "all":
        clips = timeline.get_all_clips()
    elif target == "track1":
        clips = list(timeline.overlay)
    elif target == "focused" and focused_clip_id and timeline.get_clip_by_id(focused_clip_id):
        clips = [timeline.get_clip_by_id(focused_clip_id)]
    elif target in ("first", "focused"):
        clips = [_first_main_clip(timeline)]
    else:
        clips = [timeline.require_clip(target)]

    if not clips:
        raise ValidationError(f"No clips found for target: {target}")
    return clips


def _resolve_single(timeline: Timeline, target: str, focused_clip_id: Optional[str]) -> Clip:
    if target in ("all", "track1"):
        raise ValidationError(f"Target {target!r} is not allowed here")
    return resolve_targets(timeline, target, focused_clip_id)[0]


def _resolve_main_clip(timeline: Timeline, target: str, focused_clip_id: Optional[str]) -> Clip:
    """Overlay requests always land on a main-track clip."""
    if not timeline.main:
        raise ValidationError("No main video clip (track 0) found to add overlays to")
    if target in ("all", "track1"):
        return timeline.main[0]

    clip = resolve_targets(timeline, target, focused_clip_id)[0]
    if clip.track != MAIN_TRACK:
        logger.warning(
            f"Clip {clip.id} is not on main track (track 0), using first main track clip instead"
        )
        clip = timeline.main[0]
    return clip


def build_commands(
    timeline: Timeline,
    request: MutationRequest,
    focused_clip_id: Optional[str] = None,
    rng: Optional[random.Random] = None
) -> List[Command]:
    """
    Translate one request into edit commands against a snapshot.

    Raises:
        ValidationError: For unknown requests or unresolvable targets
    """
    args = request.arguments
    rng = rng or random.Random()

    if request.name == "insertClip":
        return [InsertClipCommand(
            track=args.get("track", MAIN_TRACK),
            source=SourceRef.from_dict(args["sourceRef"]),
            insert_index=args.get("insertIndex")
        )]

    if request.name == "trimClip":
        clip = _resolve_single(timeline, args.get("clipId", "first"), focused_clip_id)
        return [TrimClipCommand(clip.id, args.get("inTime"), args.get("outTime"))]

    if request.name == "splitClipAtTime":
        clip = _resolve_single(timeline, args.get("clipId", "first"), focused_clip_id)
        return [SplitClipCommand(clip.id, args.get("timestamp"))]

    if request.name == "reorderClip":
        clip = _resolve_single(timeline, args.get("clipId", "first"), focused_clip_id)
        return [ReorderClipCommand(clip.id, args.get("index", 0))]

    if request.name == "deleteClip":
        clip = _resolve_single(timeline, args.get("clipId", "first"), focused_clip_id)
        return [DeleteClipCommand(clip.id)]

    if request.name == "setMute":
        clips = resolve_targets(timeline, args.get("clipId", "first"), focused_clip_id)
        return [SetMuteCommand(clip.id, args.get("muted", True)) for clip in clips]

    if request.name == "applyFilterToClip":
        clips = resolve_targets(timeline, args.get("clipId", "first"), focused_clip_id)
        return [SetFilterCommand(clip.id, args.get("filter")) for clip in clips]

    if request.name == "applyBlackAndWhiteToTrack1":
        filter_name = "grayscale" if args.get("enable", True) is not False else None
        return [
            SetFilterCommand(clip.id, filter_name)
            for clip in timeline.get_track(OVERLAY_TRACK)
        ]

    if request.name == "addOverlaysToClip":
        clip = _resolve_main_clip(timeline, args.get("clipId", "first"), focused_clip_id)
        added = []
        for overlay in (args.get("overlays") or [])[:MAX_OVERLAYS_PER_REQUEST]:
            image_ref = overlay.get("imageRef") or overlay.get("filePath")
            if not image_ref:
                logger.error(f"Overlay missing imageRef: {overlay}")
                continue
            position, size = place_overlay(_infer_overlay_type(overlay), len(added), rng)
            added.append(Overlay.create_new(
                image_ref=image_ref,
                opacity=overlay.get("opacity") or REQUEST_OVERLAY_OPACITY,
                position=position,
                size=size
            ))
        if not added:
            raise ValidationError("Failed to add any overlays")
        return [SetOverlaysCommand(clip.id, clip.overlays + tuple(added))]

    raise ValidationError(f"Unknown request: {request.name}")


def apply_mutation_requests(
    timeline: Timeline,
    requests: Iterable[Any],
    focused_clip_id: Optional[str] = None,
    rng: Optional[random.Random] = None
) -> Timeline:
    """
    Apply a batch of requests in order.

    Args:
        timeline: Starting snapshot
        requests: MutationRequest objects or {"name", "arguments"} dicts
        focused_clip_id: Clip the "focused" target refers to
        rng: Random source for overlay placement

    Returns:
        The snapshot after every request has been applied

    Raises:
        ValidationError: Naming the first request that could not be applied
    """
    rng = rng or random.Random()
    for index, request in enumerate(requests):
        try:
            if not isinstance(request, MutationRequest):
                request = MutationRequest.from_dict(request)
            for command in build_commands(timeline, request, focused_clip_id, rng):
                timeline = command.apply(timeline)
        except (KeyError, TypeError) as e:
            raise ValidationError(f"Request {index} is malformed: {e!r}") from e
        except ValidationError as e:
            raise ValidationError(f"Request {index} ({request.name}) failed: {e}") from e
        logger.info(f"Applied request {index}: {request.name}")
    return timeline
