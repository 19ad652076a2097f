"""
Undo/Redo History

Keeps a bounded stack of Timeline snapshots plus a cursor into it.

    snapshots: [s0, s1, s2, s3]
                        ^ index

- undo() moves the cursor back one snapshot
- redo() moves it forward one
- push() drops everything after the cursor, then appends

Snapshots live in a deque with a fixed maxlen, so once the limit is
reached the oldest entry falls off the front as new ones arrive.
"""

from collections import deque
from typing import Deque, Optional, Tuple

from timeline_editor.models.project import Timeline

DEFAULT_HISTORY_LIMIT = 50


class TimelineHistory:
    """
    Manages the snapshot history for undo/redo operations.

    Each entry pairs a snapshot with the description of the edit that
    produced it, so the UI can label its undo/redo actions.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT):
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self._entries: Deque[Tuple[Timeline, str]] = deque(maxlen=limit)
        self._index = -1

    @property
    def limit(self) -> int:
        return self._entries.maxlen

    @property
    def index(self) -> int:
        return self._index

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def current(self) -> Optional[Timeline]:
        """The snapshot under the cursor, or None if history is empty."""
        if self._index < 0:
            return None
        return self._entries[self._index][0]

    def push(self, snapshot: Timeline, description: str = "") -> None:
        """
        Record a new snapshot after the cursor.

        Any redo entries are discarded. When the stack is full the
        oldest snapshot is dropped.
        """
        while len(self._entries) > self._index + 1:
            self._entries.pop()

        self._entries.append((snapshot, description))
        self._index = len(self._entries) - 1

    def undo(self) -> Optional[Timeline]:
        """
        Step back one snapshot.

        Returns:
            The snapshot to restore, or None if there is nothing to undo
        """
        if not self.can_undo():
            return None
        self._index -= 1
        return self._entries[self._index][0]

    def redo(self) -> Optional[Timeline]:
        """
        Step forward one snapshot.

        Returns:
            The snapshot to restore, or None if there is nothing to redo
        """
        if not self.can_redo():
            return None
        self._index += 1
        return self._entries[self._index][0]

    def can_undo(self) -> bool:
        """Check if there is an earlier snapshot."""
        return self._index > 0

    def can_redo(self) -> bool:
        """Check if there is a later snapshot."""
        return self._index < len(self._entries) - 1

    def get_undo_description(self) -> Optional[str]:
        """Get the description of the edit the next undo reverts."""
        if self.can_undo():
            return self._entries[self._index][1]
        return None

    def get_redo_description(self) -> Optional[str]:
        """Get the description of the edit the next redo re-applies."""
        if self.can_redo():
            return self._entries[self._index + 1][1]
        return None

    def clear(self) -> None:
        """Clear all history."""
        self._entries.clear()
        self._index = -1
