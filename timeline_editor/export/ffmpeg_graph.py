"""
FFmpeg Render Graph Builder

Builds render graphs from timeline snapshots. A render graph is an
ordered list of processing stages (trim, filter, overlay, concat,
scale/pad, mux) connected by symbolic stream labels; the export
pipeline turns it into a single FFmpeg -filter_complex command.

The builder creates deterministic, reproducible graphs that can be
inspected and tested without running FFmpeg. Its only I/O is one
optional probe of the first main-track source, needed when exporting
at the source's original resolution.

The process is split into stages:
1. Validate the clip list
2. Trim and filter every main-track clip, composite its overlays
3. Concatenate the main track
4. Composite the overlay track (picture-in-picture)
5. Scale and pad to the output resolution
6. Mux one video and one audio stream
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from timeline_editor.errors import CompilationError, ValidationError
from timeline_editor.models.project import (
    Clip,
    SourceRef,
    Timeline,
    MAIN_TRACK,
    OVERLAY_TRACK,
    TRACKS,
)
from timeline_editor.models.validation import clamp_opacity, clamp_percent, is_finite_number

logger = logging.getLogger("TimelineEditor.Graph")

RESOLUTIONS: Dict[str, Tuple[int, int]] = {
    "720p": (1280, 720),
    "1080p": (1920, 1080),
}
ORIGINAL_RESOLUTION = "original"

# FFmpeg filter chains for the named clip filters
FILTER_EXPRESSIONS: Dict[str, str] = {
    "grayscale": "hue=s=0",
    "sepia": "colorchannelmixer=.393:.769:.189:0:.349:.686:.168:0:.272:.534:.131",
    "vintage": "curves=preset=vintage",
    "xray": "negate,hue=s=0",
    "blur": "boxblur=5:1",
    "bright": "eq=brightness=0.15",
    "dark": "eq=brightness=-0.15",
    "high-contrast": "eq=contrast=1.5",
    "flicker": "noise=alls=40:allf=t+u",
}

MAIN_VIDEO = "mainVideo"
MAIN_AUDIO = "mainAudio"
OUTPUT_VIDEO = "outv"

ProbeFunc = Callable[[SourceRef], Awaitable[Tuple[int, int]]]
SourceCheck = Callable[[SourceRef], bool]


def default_source_exists(source: SourceRef) -> bool:
    """A source is resolvable when its file exists on disk."""
    return bool(source.path) and os.path.exists(source.path)


@dataclass(frozen=True)
class ExportOptions:
    """Export configuration that affects the render graph."""
    resolution: str = "1080p"
    overlay_track_visible: bool = True
    track0_muted: bool = False
    track1_muted: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportOptions":
        return cls(
            resolution=data.get("resolution", "1080p"),
            overlay_track_visible=data.get("overlayTrackVisible", True),
            track0_muted=data.get("track0Muted", False),
            track1_muted=data.get("track1Muted", False)
        )


@dataclass
class ExportSettings:
    """Encoder configuration for the FFmpeg command."""
    output_path: str
    fps: float = 30.0
    video_codec: str = "libx264"
    video_preset: str = "medium"
    video_crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"


@dataclass(frozen=True)
class GraphInput:
    """A media file read by the graph ("media" has audio+video, "image" is a still)."""
    index: int
    path: str
    kind: str = "media"

    @property
    def video(self) -> str:
        return f"{self.index}:v"

    @property
    def audio(self) -> str:
        return f"{self.index}:a"


@dataclass(frozen=True)
class Stage:
    """
    One processing step.

    Attributes:
        kind: trim, atrim, concat, overlay_scale, overlay, scale_pad or mux
        inputs: Stream labels consumed
        outputs: Stream labels produced
        params: Kind-specific parameters (already clamped)
    """
    kind: str
    inputs: Tuple[str, ...]
    outputs: Tuple[str, ...]
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RenderGraph:
    """The compiled, topologically ordered graph for one export."""
    inputs: Tuple[GraphInput, ...]
    stages: Tuple[Stage, ...]
    width: int
    height: int
    duration: float
    video_output: str
    audio_output: str

    def stages_of(self, kind: str) -> List[Stage]:
        return [stage for stage in self.stages if stage.kind == kind]

    @property
    def terminal(self) -> Stage:
        return self.stages[-1]

    def check_topology(self) -> None:
        """
        Verify every consumed label exists before it is used.

        Input file streams may be read any number of times; a stream
        produced by a stage is consumed at most once.

        Raises:
            CompilationError: On a dangling, duplicated or reused label
        """
        available = set()
        for graph_input in self.inputs:
            available.add(graph_input.video)
            if graph_input.kind == "media":
                available.add(graph_input.audio)
        file_streams = set(available)
        consumed = set()

        for stage in self.stages:
            for label in stage.inputs:
                if label not in available:
                    raise CompilationError(
                        f"Stage {stage.kind} consumes unknown stream [{label}]"
                    )
                if label not in file_streams:
                    if label in consumed:
                        raise CompilationError(f"Stream [{label}] is consumed twice")
                    consumed.add(label)
            for label in stage.outputs:
                if label in available:
                    raise CompilationError(f"Stream [{label}] is produced twice")
                available.add(label)

    def to_filter_complex(self) -> str:
        """Render the stages as an FFmpeg -filter_complex string."""
        parts = []
        for stage in self.stages:
            rendered = _render_stage(stage)
            if rendered:
                parts.append(rendered)
        return ";".join(parts)


# ============================================================================
# Graph construction
# ============================================================================

class _GraphBuilder:
    """Accumulates inputs and stages while a graph is being built."""

    def __init__(self):
        self.inputs: List[GraphInput] = []
        self.stages: List[Stage] = []
        self._input_map: Dict[str, GraphInput] = {}

    def add_input(self, path: str, kind: str = "media") -> GraphInput:
        key = f"{kind}:{path}"
        if key not in self._input_map:
            graph_input = GraphInput(index=len(self.inputs), path=path, kind=kind)
            self.inputs.append(graph_input)
            self._input_map[key] = graph_input
        return self._input_map[key]

    def add_stage(self, kind: str, inputs, outputs, **params) -> Stage:
        stage = Stage(kind=kind, inputs=tuple(inputs), outputs=tuple(outputs), params=params)
        self.stages.append(stage)
        return stage


def _split_tracks(clips: Union[Timeline, Iterable[Clip]]) -> Tuple[List[Clip], List[Clip]]:
    """Group clips by track, each in timeline order."""
    if isinstance(clips, Timeline):
        return list(clips.main), list(clips.overlay)

    by_track: Dict[Any, List[Clip]] = {}
    for clip in clips:
        by_track.setdefault(clip.track, []).append(clip)

    unknown = [track for track in by_track if track not in TRACKS]
    if unknown:
        raise ValidationError(f"Unknown track: {unknown[0]}")

    def order(clip: Clip) -> float:
        return clip.start_time if is_finite_number(clip.start_time) else 0.0

    return (
        sorted(by_track.get(MAIN_TRACK, []), key=order),
        sorted(by_track.get(OVERLAY_TRACK, []), key=order)
    )


def validate_clips(
    main: List[Clip],
    overlay: List[Clip],
    source_exists: SourceCheck = default_source_exists
) -> None:
    """
    Pre-pass run before any graph construction.

    Raises:
        ValidationError: On a missing source, a bad trim window, an
            unknown filter or an empty main track
    """
    if not main:
        raise ValidationError("No video clips to export")

    for clip in main + overlay:
        if not source_exists(clip.source):
            raise ValidationError(f"Source not found for clip {clip.id}: {clip.source.path}")
        clip.validate()


def _emit_video_trim(builder: _GraphBuilder, clip: Clip, label: str) -> str:
    source = builder.add_input(clip.source.path)
    builder.add_stage(
        "trim",
        [source.video],
        [label],
        start=clip.in_time,
        end=clip.out_time,
        filter=clip.filter
    )
    return label


def _emit_overlay_effects(builder: _GraphBuilder, clip: Clip, index: int, video: str) -> str:
    """Composite each image overlay of a main clip onto its video stream."""
    for j, overlay in enumerate(clip.overlays):
        try:
            width = clamp_percent(overlay.size.width)
            height = clamp_percent(overlay.size.height)
            x = clamp_percent(overlay.position.x)
            y = clamp_percent(overlay.position.y)
            opacity = clamp_opacity(overlay.opacity)
        except (TypeError, ValueError):
            logger.warning(f"Skipping overlay {overlay.id} on clip {clip.id}: invalid geometry")
            continue

        image = builder.add_input(overlay.image_ref, kind="image")
        scaled = f"ov{index}_{j}"
        reference = f"ref{index}_{j}"
        composited = f"v{index}_{j}"
        builder.add_stage(
            "overlay_scale",
            [image.video, video],
            [scaled, reference],
            width=width,
            height=height,
            opacity=opacity,
            image=overlay.image_ref
        )
        builder.add_stage(
            "overlay",
            [reference, scaled],
            [composited],
            x=x,
            y=y,
            eof_action="repeat"
        )
        video = composited
    return video


def _emit_main_track(builder: _GraphBuilder, main: List[Clip], options: ExportOptions) -> Tuple[str, str]:
    pairs = []
    for i, clip in enumerate(main):
        video = _emit_video_trim(builder, clip, f"v{i}")
        audio = f"a{i}"
        builder.add_stage(
            "atrim",
            [builder.add_input(clip.source.path).audio],
            [audio],
            start=clip.in_time,
            end=clip.out_time,
            muted=bool(clip.muted or options.track0_muted)
        )
        video = _emit_overlay_effects(builder, clip, i, video)
        pairs.append((video, audio))

    if len(pairs) == 1:
        return pairs[0]

    inputs = []
    for video, audio in pairs:
        inputs.extend([video, audio])
    builder.add_stage(
        "concat",
        inputs,
        [MAIN_VIDEO, MAIN_AUDIO],
        n=len(pairs),
        video=1,
        audio=1
    )
    return MAIN_VIDEO, MAIN_AUDIO


def _emit_overlay_track(builder: _GraphBuilder, overlay: List[Clip], main_video: str) -> str:
    """
    Composite the overlay track onto the main video.

    The whole segment uses the first overlay clip's size and position.
    """
    first = overlay[0]
    try:
        width = clamp_percent(first.size.width)
        height = clamp_percent(first.size.height)
        x = clamp_percent(first.position.x)
        y = clamp_percent(first.position.y)
    except (TypeError, ValueError) as e:
        raise CompilationError(f"Invalid overlay track geometry on clip {first.id}") from e

    streams = [_emit_video_trim(builder, clip, f"t{k}") for k, clip in enumerate(overlay)]
    if len(streams) == 1:
        overlay_video = streams[0]
    else:
        overlay_video = "overlayVideo"
        builder.add_stage(
            "concat",
            streams,
            [overlay_video],
            n=len(streams),
            video=1,
            audio=0
        )

    builder.add_stage(
        "overlay_scale",
        [overlay_video, main_video],
        ["overlayScaled", "overlayBase"],
        width=width,
        height=height,
        opacity=None,
        image=None
    )
    builder.add_stage(
        "overlay",
        ["overlayBase", "overlayScaled"],
        ["composited"],
        x=x,
        y=y,
        eof_action="pass"
    )
    return "composited"


def resolve_dimensions(resolution: str) -> Optional[Tuple[int, int]]:
    """
    Fixed output dimensions for a resolution name.

    Returns None for "original", which needs a probe.

    Raises:
        ValidationError: For unknown resolution names
    """
    if resolution == ORIGINAL_RESOLUTION:
        return None
    if resolution not in RESOLUTIONS:
        raise ValidationError(f"Unknown resolution: {resolution}")
    return RESOLUTIONS[resolution]


def build_render_graph(
    clips: Union[Timeline, Iterable[Clip]],
    options: ExportOptions,
    width: int,
    height: int,
    source_exists: SourceCheck = default_source_exists
) -> RenderGraph:
    """
    Build the render graph for known output dimensions.

    This is the synchronous part of compilation; it never touches
    the media files.

    Raises:
        ValidationError: If the clips fail the validation pre-pass
        CompilationError: If graph construction fails
    """
    main, overlay = _split_tracks(clips)
    validate_clips(main, overlay, source_exists)
    return _build_graph(main, overlay, options, width, height)


def _build_graph(
    main: List[Clip],
    overlay: List[Clip],
    options: ExportOptions,
    width: int,
    height: int
) -> RenderGraph:
    """Construct the graph from clips that already passed validate_clips."""
    try:
        builder = _GraphBuilder()
        video, audio = _emit_main_track(builder, main, options)

        if overlay and options.overlay_track_visible:
            video = _emit_overlay_track(builder, overlay, video)

        builder.add_stage(
            "scale_pad",
            [video],
            [OUTPUT_VIDEO],
            width=width,
            height=height
        )
        builder.add_stage(
            "mux",
            [OUTPUT_VIDEO, audio],
            [],
            video=OUTPUT_VIDEO,
            audio=audio
        )

        graph = RenderGraph(
            inputs=tuple(builder.inputs),
            stages=tuple(builder.stages),
            width=width,
            height=height,
            duration=sum(clip.duration for clip in main),
            video_output=OUTPUT_VIDEO,
            audio_output=audio
        )
        graph.check_topology()
    except CompilationError:
        raise
    except Exception as e:
        raise CompilationError(f"Failed to build render graph: {e}") from e

    logger.info(
        f"Built render graph: {len(graph.stages)} stages, "
        f"{graph.width}x{graph.height}, {graph.duration:.2f}s"
    )
    return graph


async def compile_render_graph(
    clips: Union[Timeline, Iterable[Clip]],
    options: ExportOptions,
    probe: Optional[ProbeFunc] = None,
    source_exists: SourceCheck = default_source_exists
) -> RenderGraph:
    """
    Compile a snapshot into a render graph.

    Args:
        clips: A Timeline or the snapshot's clip list
        options: Export options
        probe: Async callable returning (width, height) of a source;
            awaited once, only for the "original" resolution
        source_exists: Check that a source can be read

    Returns:
        The compiled RenderGraph

    Raises:
        ValidationError: If the snapshot or options are invalid
        CompilationError: If graph construction fails
    """
    main, overlay = _split_tracks(clips)
    validate_clips(main, overlay, source_exists)

    dimensions = resolve_dimensions(options.resolution)
    if dimensions is None:
        if probe is None:
            from timeline_editor.shared.ffmpeg_utils import probe_video_dimensions
            probe = probe_video_dimensions
        try:
            dimensions = await probe(main[0].source)
        except (OSError, RuntimeError) as e:
            raise ValidationError(f"Could not read source dimensions: {e}") from e

        width, height = dimensions
        if not (is_finite_number(width) and is_finite_number(height)) or width <= 0 or height <= 0:
            raise ValidationError(f"Source has invalid dimensions: {width}x{height}")
        dimensions = (int(width), int(height))

    return _build_graph(main, overlay, options, dimensions[0], dimensions[1])


# ============================================================================
# FFmpeg rendering
# ============================================================================

def _num(value: float, digits: int = 3) -> str:
    """Format a number for a filter argument without trailing zeros."""
    text = f"{value:.{digits}f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def _labels(labels: Iterable[str]) -> str:
    return "".join(f"[{label}]" for label in labels)


def _render_stage(stage: Stage) -> str:
    p = stage.params

    if stage.kind == "trim":
        chain = f"trim=start={_num(p['start'])}:end={_num(p['end'])},setpts=PTS-STARTPTS"
        if p.get("filter"):
            if p["filter"] not in FILTER_EXPRESSIONS:
                raise CompilationError(f"Unknown filter: {p['filter']}")
            chain += "," + FILTER_EXPRESSIONS[p["filter"]]
        return f"{_labels(stage.inputs)}{chain}{_labels(stage.outputs)}"

    if stage.kind == "atrim":
        chain = f"atrim=start={_num(p['start'])}:end={_num(p['end'])},asetpts=PTS-STARTPTS"
        if p.get("muted"):
            chain += ",volume=0"
        return f"{_labels(stage.inputs)}{chain}{_labels(stage.outputs)}"

    if stage.kind == "concat":
        return (
            f"{_labels(stage.inputs)}concat=n={p['n']}:v={p['video']}:a={p['audio']}"
            f"{_labels(stage.outputs)}"
        )

    if stage.kind == "overlay_scale":
        source, reference = stage.inputs
        scaled, passthrough = stage.outputs
        parts = []
        if p.get("opacity") is not None:
            alpha = f"{scaled}_alpha"
            parts.append(
                f"[{source}]format=rgba,colorchannelmixer=aa={_num(p['opacity'], 4)}[{alpha}]"
            )
            source = alpha
        parts.append(
            f"[{source}][{reference}]scale2ref="
            f"w=main_w*{_num(p['width'] / 100, 4)}:h=main_h*{_num(p['height'] / 100, 4)}"
            f"[{scaled}][{passthrough}]"
        )
        return ";".join(parts)

    if stage.kind == "overlay":
        return (
            f"{_labels(stage.inputs)}overlay="
            f"x=main_w*{_num(p['x'] / 100, 4)}:y=main_h*{_num(p['y'] / 100, 4)}"
            f":eof_action={p['eof_action']}{_labels(stage.outputs)}"
        )

    if stage.kind == "scale_pad":
        w, h = p["width"], p["height"]
        return (
            f"{_labels(stage.inputs)}scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2,setsar=1{_labels(stage.outputs)}"
        )

    if stage.kind == "mux":
        # Mapped on the command line, not part of the filter graph
        return ""

    raise CompilationError(f"Unknown stage kind: {stage.kind}")


def build_ffmpeg_command(
    graph: RenderGraph,
    settings: ExportSettings,
    ffmpeg: str = "ffmpeg"
) -> List[str]:
    """
    Build the complete FFmpeg command for a render graph.

    Args:
        graph: The compiled graph
        settings: Encoder settings and output path
        ffmpeg: FFmpeg executable

    Returns:
        Command as a list of arguments
    """
    cmd = [ffmpeg, "-y"]  # -y to overwrite output

    for graph_input in graph.inputs:
        cmd.extend(["-i", graph_input.path])

    cmd.extend(["-filter_complex", graph.to_filter_complex()])

    mux = graph.terminal
    cmd.extend([
        "-map", f"[{mux.params['video']}]",
        "-map", f"[{mux.params['audio']}]",
    ])

    cmd.extend([
        "-c:v", settings.video_codec,
        "-preset", settings.video_preset,
        "-crf", str(settings.video_crf),
        "-c:a", settings.audio_codec,
        "-b:a", settings.audio_bitrate,
        "-r", _num(settings.fps),
    ])

    cmd.append(settings.output_path)
    return cmd
