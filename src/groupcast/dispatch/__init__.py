"""Dispatch contracts."""

from .graph import GraphPublisher, GroupListing, graph_error_message
from .queue import DispatchRun, ProgressUpdate, Publisher, QueueStatus, TargetState, selected_targets

__all__ = [
    "DispatchRun",
    "GraphPublisher",
    "GroupListing",
    "ProgressUpdate",
    "Publisher",
    "QueueStatus",
    "TargetState",
    "graph_error_message",
    "selected_targets",
]
