"""Tests for the undo/redo history log."""

import pytest

from conftest import build_timeline
from timeline_editor.models.history import DEFAULT_HISTORY_LIMIT, TimelineHistory


def snapshots(count):
    return [build_timeline(main=[float(i + 1)]) for i in range(count)]


class TestTimelineHistory:

    def test_empty(self):
        history = TimelineHistory()
        assert history.current is None
        assert history.limit == DEFAULT_HISTORY_LIMIT == 50
        assert not history.can_undo()
        assert not history.can_redo()
        assert history.undo() is None
        assert history.redo() is None

    def test_undo_redo(self):
        history = TimelineHistory()
        s0, s1, s2 = snapshots(3)
        for snapshot in (s0, s1, s2):
            history.push(snapshot)

        assert history.undo() == s1
        assert history.undo() == s0
        assert history.undo() is None
        assert history.current == s0
        assert history.redo() == s1
        assert history.redo() == s2
        assert history.redo() is None

    def test_push_truncates_redo(self):
        history = TimelineHistory()
        s0, s1, s2, s3 = snapshots(4)
        for snapshot in (s0, s1, s2):
            history.push(snapshot)
        history.undo()
        history.undo()
        history.push(s3)

        assert len(history) == 2
        assert not history.can_redo()
        assert history.undo() == s0

    def test_bounded(self):
        history = TimelineHistory()
        items = snapshots(60)
        for snapshot in items:
            history.push(snapshot)

        assert len(history) == 50
        undo_count = 0
        while history.undo() is not None:
            undo_count += 1
        assert undo_count == 49
        # The ten oldest snapshots fell off the front
        assert history.current == items[10]

    def test_descriptions(self):
        history = TimelineHistory()
        s0, s1 = snapshots(2)
        history.push(s0, "Initial state")
        history.push(s1, "Trim clip")

        assert history.get_undo_description() == "Trim clip"
        assert history.get_redo_description() is None
        history.undo()
        assert history.get_undo_description() is None
        assert history.get_redo_description() == "Trim clip"

    def test_clear(self):
        history = TimelineHistory(limit=3)
        for snapshot in snapshots(3):
            history.push(snapshot)
        history.clear()
        assert len(history) == 0
        assert history.index == -1

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            TimelineHistory(limit=0)
