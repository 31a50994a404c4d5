from __future__ import annotations

from .client import ServaldClient, parse_bundle_list, parse_message_ply, parse_table
from .types import MessagePlyList, PlyMessage, RhizomeBundle, RhizomeBundleList

__all__ = [
    "MessagePlyList",
    "PlyMessage",
    "RhizomeBundle",
    "RhizomeBundleList",
    "ServaldClient",
    "parse_bundle_list",
    "parse_message_ply",
    "parse_table",
]
