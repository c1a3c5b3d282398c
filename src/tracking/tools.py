"""
Tracked tool definitions and tool configuration loading.

A tool is a rigid body carrying three or more infrared-reflective markers.
Its geometry (marker positions in the tool's own right-handed frame, in
meters) is fixed at configuration time; everything else on :class:`Tool` is
per-frame tracking state overwritten by the tracker.

Tool configuration files are JSON::

    {"tools": [
        {"name": "Probe",
         "id": 1,
         "coordinates": [["0.001", "0.002", "0.003"],
                         [0.000, 0.002, 0.003],
                         ...]}
    ]}
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .correspondence import DUPLICATE_TOLERANCE, remove_duplicates

LOGGER = logging.getLogger(__name__)

MAX_TOOL_ID = 255


@dataclass
class Tool:
    """A tracked tool: fixed geometry plus the latest observation."""

    tool_id: int
    geometry: np.ndarray  # (N, 3) marker positions in the tool frame
    name: Optional[str] = None

    visible: bool = False
    pose_world: np.ndarray = field(default_factory=lambda: np.eye(4))
    pose_depth: np.ndarray = field(default_factory=lambda: np.eye(4))
    observed_world: List[np.ndarray] = field(default_factory=list)  # Same order as geometry
    observed_depth: List[np.ndarray] = field(default_factory=list)  # Same order as geometry
    observed_pixels: List[Tuple[int, int]] = field(default_factory=list)  # For image labelling

    @classmethod
    def from_points(cls, tool_id: int, points: Sequence, name: Optional[str] = None) -> Tool:
        """Build a tool from its marker coordinates, validating them."""
        if isinstance(tool_id, bool) or not isinstance(tool_id, (int, np.integer)):
            raise ValueError(f"Tool id must be an integer, got {tool_id!r}")
        if not 0 <= int(tool_id) <= MAX_TOOL_ID:
            raise ValueError(f"Tool id {tool_id} outside 0-{MAX_TOOL_ID}")

        try:
            geometry = np.asarray(points, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Tool {tool_id}: coordinates are not numeric ({e})") from e

        if geometry.ndim != 2 or geometry.shape[1] != 3:
            raise ValueError(f"Tool {tool_id}: expected Nx3 coordinates, got shape {geometry.shape}")
        if not np.all(np.isfinite(geometry)):
            raise ValueError(f"Tool {tool_id}: coordinates must be finite")

        unique, _ = remove_duplicates(geometry, DUPLICATE_TOLERANCE)
        if len(unique) != len(geometry):
            LOGGER.warning(
                "Tool %d: dropped %d duplicate marker(s) closer than %.4f m",
                tool_id,
                len(geometry) - len(unique),
                DUPLICATE_TOLERANCE,
            )
        if len(unique) < 3:
            raise ValueError(f"Tool {tool_id}: at least 3 distinct markers required, got {len(unique)}")

        unique.setflags(write=False)
        return cls(tool_id=int(tool_id), geometry=unique, name=name)

    @property
    def marker_count(self) -> int:
        return len(self.geometry)

    def reset_observation(self):
        """Forget the previous frame's observation."""
        self.visible = False
        self.pose_world = np.eye(4)
        self.pose_depth = np.eye(4)
        self.observed_world.clear()
        self.observed_depth.clear()
        self.observed_pixels.clear()

    def to_dict(self) -> Dict:
        """Configuration-file representation of this tool."""
        entry = {"id": self.tool_id, "coordinates": self.geometry.tolist()}
        if self.name is not None:
            entry["name"] = self.name
        return entry


class ToolDictionary(dict):
    """Tools keyed by id; iterates in ascending id order.

    ``keys()``, ``values()`` and ``items()`` return sorted lists rather than
    live dict views, so callers always see tools in processing order. Set
    operations on keys need an explicit ``set(tools)``.
    """

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(super().keys()))

    def keys(self) -> List[int]:
        """Tool ids in ascending order (a list, not a view)."""
        return list(iter(self))

    def values(self) -> List[Tool]:
        """Tools in ascending id order (a list, not a view)."""
        return [self[k] for k in self]

    def items(self) -> List[Tuple[int, Tool]]:
        """(id, tool) pairs in ascending id order (a list, not a view)."""
        return [(k, self[k]) for k in self]

    def add(self, tool: Tool) -> bool:
        """Insert a tool unless its id is already taken (first one wins)."""
        if tool.tool_id in self:
            LOGGER.warning("Duplicate tool id %d ignored", tool.tool_id)
            return False
        self[tool.tool_id] = tool
        return True


def tool_dictionary_from_mapping(mapping: Mapping[int, Sequence]) -> ToolDictionary:
    """Build a ToolDictionary from ``{id: [[x, y, z], ...]}``.

    Invalid entries are logged and skipped.
    """
    tools = ToolDictionary()
    for tool_id, points in mapping.items():
        try:
            tools.add(Tool.from_points(tool_id, points))
        except ValueError as e:
            LOGGER.warning("Skipping tool %r: %s", tool_id, e)
    return tools


def _parse_tool_entry(entry) -> Tool:
    if not isinstance(entry, dict):
        raise ValueError(f"Tool entry must be an object, got {type(entry).__name__}")

    tool_id = entry.get("id")
    if isinstance(tool_id, float) and tool_id.is_integer():
        tool_id = int(tool_id)

    coordinates = entry.get("coordinates")
    if not isinstance(coordinates, list):
        raise ValueError("Missing 'coordinates' array")

    points = []
    for triplet in coordinates:
        if not isinstance(triplet, list) or len(triplet) != 3:
            raise ValueError(f"Coordinate {triplet!r} is not an [x, y, z] triplet")
        try:
            points.append([float(value) for value in triplet])
        except (TypeError, ValueError) as e:
            raise ValueError(f"Coordinate {triplet!r} is not numeric") from e

    name = entry.get("name")
    return Tool.from_points(tool_id, points, name=str(name) if name is not None else None)


def parse_tool_config(payload: Union[str, Dict]) -> ToolDictionary:
    """Parse a JSON tool configuration (string or already-decoded object).

    Returns an empty dictionary if the document itself is unusable; bad
    individual tools are skipped.
    """
    tools = ToolDictionary()

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            LOGGER.error("Tool configuration is not valid JSON: %s", e)
            return tools

    tool_array = payload.get("tools") if isinstance(payload, dict) else None
    if not isinstance(tool_array, list):
        LOGGER.error("Tool configuration has no 'tools' array")
        return tools

    for index, entry in enumerate(tool_array):
        try:
            tools.add(_parse_tool_entry(entry))
        except ValueError as e:
            LOGGER.warning("Skipping tool entry %d: %s", index, e)

    LOGGER.info("Loaded %d tool(s): %s", len(tools), tools.keys())
    return tools


def load_tool_config(path: Union[str, Path]) -> ToolDictionary:
    """Load a JSON tool configuration file."""
    if not os.path.exists(path):
        LOGGER.error("Tool configuration file not found: %s", path)
        return ToolDictionary()

    with open(path, "r", encoding="utf-8") as f:
        return parse_tool_config(f.read())


def save_tool_config(tools: Mapping[int, Tool], path: Union[str, Path]) -> bool:
    """Write tools to a JSON configuration file."""
    payload = {"tools": [tools[k].to_dict() for k in sorted(tools)]}
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=4)
        LOGGER.info("Tool configuration saved to %s", path)
        return True
    except OSError as e:
        LOGGER.error("Failed to save tool configuration to %s: %s", path, e)
        return False
