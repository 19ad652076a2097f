"""
Timeline Editor Core

A two-track, non-destructive video timeline with undo/redo history,
a render graph compiler, and an FFmpeg export backend.

Usage:
    timeline-editor graph project.json

Or from Python, start with timeline_editor.session.EditorSession.
"""

__version__ = "1.0.0"
__author__ = "LazyCut Team"
