"""
Timeline Editor - Entry Point

Command-line access to a saved project.

Usage:
    # Print the FFmpeg filter graph a project compiles to
    timeline-editor graph project.json --resolution 720p

    # Export a project
    timeline-editor export project.json -o final.mp4
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from timeline_editor import config
from timeline_editor.errors import CompilationError, ExecutionError
from timeline_editor.export.exporter import (
    ExportRequest,
    FailureEvent,
    ProgressEvent,
    SuccessEvent,
)
from timeline_editor.export.ffmpeg_graph import (
    ORIGINAL_RESOLUTION,
    RESOLUTIONS,
    ExportOptions,
)
from timeline_editor.session import EditorSession

logger = logging.getLogger("TimelineEditor.App")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="timeline-editor",
        description="Compile and export timeline projects with FFmpeg"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolution_choices = list(RESOLUTIONS) + [ORIGINAL_RESOLUTION]

    graph_parser = subparsers.add_parser("graph", help="Print the compiled filter graph")
    graph_parser.add_argument("project", help="Project JSON file")
    graph_parser.add_argument("--resolution", choices=resolution_choices, default=None)

    export_parser = subparsers.add_parser("export", help="Render a project to MP4")
    export_parser.add_argument("project", help="Project JSON file")
    export_parser.add_argument("-o", "--output", default=None, help="Output video path")
    export_parser.add_argument("--resolution", choices=resolution_choices, default=None)
    export_parser.add_argument("--hide-overlay", action="store_true", help="Leave out the overlay track")
    export_parser.add_argument("--mute-main", action="store_true", help="Silence the main track")
    export_parser.add_argument("--mute-overlay", action="store_true", help="Silence the overlay track")

    return parser.parse_args(argv)


def build_options(args: argparse.Namespace) -> ExportOptions:
    return ExportOptions(
        resolution=args.resolution or config.get_setting("resolution"),
        overlay_track_visible=not getattr(args, "hide_overlay", False),
        track0_muted=getattr(args, "mute_main", False),
        track1_muted=getattr(args, "mute_overlay", False)
    )


def run_graph(session: EditorSession, args: argparse.Namespace) -> int:
    graph = asyncio.run(session.compile(build_options(args)))
    print(graph.to_filter_complex())
    return 0


def export_project(session: EditorSession, args: argparse.Namespace) -> int:
    request = ExportRequest.from_timeline(session.timeline, args.output, build_options(args))

    last_logged = -10.0
    for event in session.export(request):
        if isinstance(event, ProgressEvent):
            if event.percent - last_logged >= 10.0 or event.percent >= 100.0:
                logger.info(f"Exporting... {event.percent:.0f}%")
                last_logged = event.percent
        elif isinstance(event, SuccessEvent):
            logger.info(f"Exported to {event.output_path}")
            return 0
        elif isinstance(event, FailureEvent):
            raise ExecutionError(event.message)
    raise ExecutionError("Export ended without a result")


def run(argv: Optional[List[str]] = None) -> int:
    """
    Run the command line.

    Returns:
        Process exit code
    """
    args = parse_args(argv)
    config.load_environment()
    config.setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    session = EditorSession()
    try:
        session.load(args.project)
        if args.command == "graph":
            return run_graph(session, args)
        return export_project(session, args)
    except (FileNotFoundError, ValueError, CompilationError, ExecutionError) as e:
        logger.error(str(e))
        return 1


def main():
    """Main entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
