"""Spatial layer: static all-pairs index and dynamic A* search."""

from parcelbot.spatial.index import MapIndex, build_index
from parcelbot.spatial.pathfinding import action_target, find_path, path_to_actions

__all__ = ["MapIndex", "build_index", "find_path", "path_to_actions", "action_target"]
