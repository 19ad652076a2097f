"""Shared test fixtures for timeline editor tests."""

import io

import pytest

from timeline_editor.models.commands import InsertClipCommand
from timeline_editor.models.project import (
    MAIN_TRACK,
    OVERLAY_TRACK,
    SourceRef,
    Timeline,
)


def make_source(name="clip.mp4", duration=10.0, width=1920, height=1080):
    return SourceRef(path=f"/media/{name}", duration=duration, width=width, height=height)


def build_timeline(main=(), overlay=()):
    """Timeline with untrimmed clips m0, m1, ... and o0, o1, ... of the given durations."""
    timeline = Timeline()
    for i, duration in enumerate(main):
        command = InsertClipCommand(MAIN_TRACK, make_source(f"main{i}.mp4", duration), clip_id=f"m{i}")
        timeline = command.apply(timeline)
    for k, duration in enumerate(overlay):
        command = InsertClipCommand(OVERLAY_TRACK, make_source(f"over{k}.mp4", duration), clip_id=f"o{k}")
        timeline = command.apply(timeline)
    return timeline


class FakeProbe:
    """Async probe that records how often it is awaited."""

    def __init__(self, dimensions=(1280, 720), error=None):
        self.dimensions = dimensions
        self.error = error
        self.calls = []

    async def __call__(self, source):
        self.calls.append(source)
        if self.error is not None:
            raise self.error
        return self.dimensions


class FakeProcess:
    """Stands in for the FFmpeg subprocess."""

    def __init__(self, stdout_lines=(), stderr_text="", returncode=0):
        self.stdout = list(stdout_lines)
        self.stderr = io.StringIO(stderr_text)
        self.returncode = returncode
        self.terminated = False

    def wait(self):
        return self.returncode

    def poll(self):
        return None

    def terminate(self):
        self.terminated = True


class FakePopen:
    """Records the command and hands back a prepared FakeProcess."""

    def __init__(self, process=None, error=None):
        self.process = process or FakeProcess()
        self.error = error
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        if self.error is not None:
            raise self.error
        return self.process


class FakeAdapter:
    """Execution adapter replaying canned events."""

    def __init__(self, events):
        self.events = list(events)
        self.executed = []
        self.cancelled = False

    def execute(self, graph, output_path=None):
        self.executed.append((graph, output_path))
        yield from self.events

    def cancel(self):
        self.cancelled = True


def always_exists(source):
    return True


@pytest.fixture
def qt_app():
    from PySide6.QtCore import QCoreApplication

    return QCoreApplication.instance() or QCoreApplication([])
