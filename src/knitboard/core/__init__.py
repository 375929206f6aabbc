"""Core package.

Pure import logic (work-center resolution, the fabric gate and daily
reconciliation) and the value types it works on. Nothing here touches the
store.
"""

from knitboard.core.fabrics import FabricLookup, find_unknown_fabrics, parse_fabric_name
from knitboard.core.reconcile import filter_rows, reconcile, sort_for_review
from knitboard.core.work_centers import build_review, resolve_work_center

__all__ = [
    "FabricLookup",
    "build_review",
    "filter_rows",
    "find_unknown_fabrics",
    "parse_fabric_name",
    "reconcile",
    "resolve_work_center",
    "sort_for_review",
]
