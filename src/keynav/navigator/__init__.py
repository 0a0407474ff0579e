"""Key-space navigation: enumeration, grouping and key detail."""

from .classifier import (
    CollapseState,
    NamespaceNode,
    TreeRow,
    TypeGroup,
    build_tree,
    classify_by_type,
    key_path,
    visible_rows,
)
from .detail import KeyDetailLoader, LoadStatus
from .models import (
    TYPE_ORDER,
    EmptyDetail,
    HashDetail,
    JsonDetail,
    KeyDetail,
    KeyRecord,
    KeyType,
    ListDetail,
    LoadedKey,
    SetDetail,
    StringDetail,
    ZSetDetail,
)
from .scan import ScanCursorTracker, ScanPage, ScanState
from .session import NavigatorSession

__all__ = [
    "CollapseState",
    "EmptyDetail",
    "HashDetail",
    "JsonDetail",
    "KeyDetail",
    "KeyDetailLoader",
    "KeyRecord",
    "KeyType",
    "ListDetail",
    "LoadStatus",
    "LoadedKey",
    "NamespaceNode",
    "NavigatorSession",
    "ScanCursorTracker",
    "ScanPage",
    "ScanState",
    "SetDetail",
    "StringDetail",
    "TYPE_ORDER",
    "TreeRow",
    "TypeGroup",
    "ZSetDetail",
    "build_tree",
    "classify_by_type",
    "key_path",
    "visible_rows",
]
