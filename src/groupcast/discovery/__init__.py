"""Group discovery: response interception, DOM scanning, and convergence collection."""

from .collector import CaptureState, CollectionResult, ConvergenceCollector, RunState, TickSnapshot
from .dom import DomScanner
from .interception import InterceptionLayer
from .names import NameFilter
from .payloads import extract_candidates_from_text
from .result_set import MergeReport, ResultSet
from .shapes import GroupShape, ShapeKind, walk_group_shapes

__all__ = [
    "CaptureState",
    "CollectionResult",
    "ConvergenceCollector",
    "DomScanner",
    "GroupShape",
    "InterceptionLayer",
    "MergeReport",
    "NameFilter",
    "ResultSet",
    "RunState",
    "ShapeKind",
    "TickSnapshot",
    "extract_candidates_from_text",
    "walk_group_shapes",
]
