"""
Edge Map / Graph Index

Adjacency structure keyed by "sourceNodeId::handle".

Routing rule:
1. Exact (source, handle) edge
2. For a non-default handle with no edge, the node's "default" edge
3. Otherwise None: the node is terminal

When several edges share a key, the first one registered wins.
"""

from typing import Dict, Iterable, List, Optional

from .nodes import DEFAULT_HANDLE, EdgeDefinition

EdgeMap = Dict[str, List[EdgeDefinition]]


def edge_key(source_node_id: str, handle: Optional[str]) -> str:
    return f"{source_node_id}::{handle or DEFAULT_HANDLE}"


def build_edge_map(edges: Iterable[EdgeDefinition]) -> EdgeMap:
    """
    Index edges by source node and handle, preserving registration order.

    Example:
        >>> edge_map = build_edge_map([EdgeDefinition(id="e1", source_node_id="a", target_node_id="b")])
        >>> list(edge_map)
        ['a::default']
    """
    edge_map: EdgeMap = {}
    for edge in edges:
        edge_map.setdefault(edge_key(edge.source_node_id, edge.source_handle), []).append(edge)
    return edge_map


def get_next_node_id(edge_map: EdgeMap, source_node_id: str, handle: str = DEFAULT_HANDLE) -> Optional[str]:
    """
    Resolve the node that follows source_node_id through handle.

    A missing non-default handle falls back to the default edge, so a
    conditional step without a "failure" edge continues down "default".
    """
    edges = edge_map.get(edge_key(source_node_id, handle))
    if edges:
        return edges[0].target_node_id

    if handle != DEFAULT_HANDLE:
        default_edges = edge_map.get(edge_key(source_node_id, DEFAULT_HANDLE))
        if default_edges:
            return default_edges[0].target_node_id

    return None
