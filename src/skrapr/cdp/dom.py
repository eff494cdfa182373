"""
DOM node cache - last known description of every node the browser has pushed.
"""
import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger("skrapr")


class NodeCache:
    """
    Maps node ids to the node descriptions received in DOM.setChildNodes.

    Node ids are not stable across DOM.documentUpdated, so the whole cache is
    dropped when that event arrives. Only the event-dispatch path mutates it;
    callers get a read-only view.
    """

    def __init__(self):
        self._nodes: Dict[int, Dict[str, Any]] = {}
        self._view = MappingProxyType(self._nodes)

    @property
    def nodes(self) -> Mapping[int, Dict[str, Any]]:
        """Read-only live view of the cache."""
        return self._view

    def get(self, node_id: int) -> Optional[Dict[str, Any]]:
        return self._nodes.get(node_id)

    def upsert(self, nodes: Iterable[Dict[str, Any]]) -> int:
        """Insert or replace nodes and their pushed descendants. Returns the count stored."""
        count = 0
        stack = list(nodes)
        while stack:
            node = stack.pop()
            node_id = node.get("nodeId")
            if node_id is None:
                continue
            self._nodes[node_id] = node
            count += 1
            stack.extend(node.get("children") or ())
        return count

    def clear(self) -> None:
        self._nodes.clear()

    def __contains__(self, node_id) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)
