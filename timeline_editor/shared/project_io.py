"""
Project I/O Module

Handles serialization and deserialization of timeline snapshots.
Projects are saved as JSON files:

    {
        "version": "1.0.0",
        "saved_at": "...",
        "timelineClips": [...],
        "libraryClips": [...]
    }

Loading rebuilds the exact same Timeline, including the derived
start times, without touching any media file.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from timeline_editor.models.project import Timeline

logger = logging.getLogger("TimelineEditor.ProjectIO")

# Project file version for migration support
PROJECT_VERSION = "1.0.0"


@dataclass
class ProjectData:
    """A loaded project: the timeline plus the media library entries."""
    timeline: Timeline
    library_clips: List[Dict[str, Any]] = field(default_factory=list)
    version: str = PROJECT_VERSION


def snapshot_to_dict(
    timeline: Timeline,
    library_clips: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    """Serialize a snapshot in the versioned project format."""
    data = {"version": PROJECT_VERSION}
    data.update(timeline.to_dict())
    data["libraryClips"] = list(library_clips or [])
    return data


def snapshot_from_dict(data: Dict[str, Any]) -> ProjectData:
    """
    Rebuild a project from its dictionary form.

    Raises:
        ValueError: If the data is not a project or breaks the
            timeline invariants
    """
    if "timelineClips" not in data:
        raise ValueError("Timeline data not found in project")

    # Version check for future migrations
    version = data.get("version", "0.0.0")
    if version != PROJECT_VERSION:
        logger.warning(f"Project version {version} differs from {PROJECT_VERSION}")

    try:
        timeline = Timeline.from_dict(data)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid clip data in project: {e!r}") from e

    return ProjectData(
        timeline=timeline,
        library_clips=list(data.get("libraryClips") or []),
        version=version
    )


def save_project(
    timeline: Timeline,
    file_path: str,
    library_clips: Optional[List[Dict[str, Any]]] = None
) -> bool:
    """
    Saves a snapshot to a JSON file.

    Args:
        timeline: The snapshot to save
        file_path: Destination file path
        library_clips: Media library entries saved alongside

    Returns:
        True if successful, False otherwise
    """
    data = snapshot_to_dict(timeline, library_clips)
    data["saved_at"] = datetime.now().isoformat()

    try:
        # Ensure directory exists
        os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)

        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved project to {file_path}")
        return True

    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to save project: {e}")
        return False


def load_project(file_path: str) -> ProjectData:
    """
    Loads a project from a JSON file.

    Args:
        file_path: Path to the project file

    Returns:
        ProjectData with the rebuilt Timeline

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file format is invalid
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Project file not found: {file_path}")

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid project file format: {e}")

    if not isinstance(data, dict):
        raise ValueError("Project data not found in file")

    return snapshot_from_dict(data)
