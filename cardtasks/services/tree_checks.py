"""
Tree invariant checks for a card's task hierarchy.

Pure, side-effect-free functions over a snapshot of task nodes. Any object
with ``id``, ``card_id``, ``parent_id`` and ``order_index`` attributes works,
so the same checks run against Pydantic models and ORM rows.
"""

from collections import defaultdict
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

from cardtasks.logging_config import get_logger

logger = get_logger(__name__)


def _index_by_id(nodes: Iterable[Any]) -> Dict[Hashable, Any]:
    return {node.id: node for node in nodes}


def build_children_index(nodes: Iterable[Any]) -> Dict[Optional[Hashable], List[Any]]:
    """
    Group nodes by parent_id, each group sorted by order_index.

    Roots are grouped under the ``None`` key.

    Args:
        nodes: Task nodes of one card

    Returns:
        Mapping of parent_id -> ordered list of children
    """
    index: Dict[Optional[Hashable], List[Any]] = defaultdict(list)
    for node in nodes:
        index[node.parent_id].append(node)
    for children in index.values():
        children.sort(key=lambda n: n.order_index)
    return index


def would_create_cycle(
    nodes: Iterable[Any],
    moving_id: Hashable,
    proposed_parent_id: Optional[Hashable],
) -> bool:
    """
    Check whether reparenting moving_id under proposed_parent_id creates a cycle.

    Walks the ancestor chain starting at proposed_parent_id. The walk keeps a
    visited set so it terminates even on a snapshot that already contains a
    loop; such a snapshot is reported as a cycle.

    Args:
        nodes: Task nodes of one card
        moving_id: ID of the node being moved
        proposed_parent_id: Candidate parent ID (None means root level)

    Returns:
        True if the move would make moving_id its own ancestor
    """
    if proposed_parent_id is None:
        return False
    if proposed_parent_id == moving_id:
        return True

    by_id = _index_by_id(nodes)
    visited = set()
    current = proposed_parent_id

    while current is not None:
        if current == moving_id:
            return True
        if current in visited:
            logger.warning(f"Existing cycle detected in snapshot at node {current}")
            return True
        visited.add(current)
        node = by_id.get(current)
        if node is None:
            break
        current = node.parent_id

    return False


def validate_sibling_order(
    nodes: Iterable[Any],
    card_id: Hashable,
    parent_id: Optional[Hashable],
) -> bool:
    """
    Check that the children of parent_id are densely ordered 0..n-1.

    Args:
        nodes: Task nodes (may span cards; only card_id is considered)
        card_id: Card owning the sibling group
        parent_id: Parent of the group (None for roots)

    Returns:
        True if order_index values are exactly 0..n-1 with no gaps or duplicates
    """
    indexes = sorted(
        node.order_index
        for node in nodes
        if node.card_id == card_id and node.parent_id == parent_id
    )
    return indexes == list(range(len(indexes)))


def find_order_violations(nodes: Iterable[Any]) -> List[Tuple[Hashable, Optional[Hashable]]]:
    """
    Check every sibling group in a snapshot.

    Returns:
        (card_id, parent_id) pairs whose groups are not densely ordered
    """
    groups: Dict[Tuple[Hashable, Optional[Hashable]], List[int]] = defaultdict(list)
    for node in nodes:
        groups[(node.card_id, node.parent_id)].append(node.order_index)

    return [
        key for key, indexes in groups.items()
        if sorted(indexes) != list(range(len(indexes)))
    ]


def collect_subtree(nodes: Iterable[Any], root_id: Hashable) -> List[Any]:
    """
    Collect a node and all its descendants in depth-first order.

    Parents always precede their children; iterate in reverse to process
    deepest nodes first. Guarded by a visited set like would_create_cycle.

    Args:
        nodes: Task nodes of one card
        root_id: ID of the subtree root

    Returns:
        Subtree nodes, root first; empty if root_id is unknown
    """
    nodes = list(nodes)
    by_id = _index_by_id(nodes)
    if root_id not in by_id:
        return []

    collected: List[Any] = []
    _walk(by_id[root_id], build_children_index(nodes), set(), collected)
    return collected


def tree_order(nodes: Iterable[Any]) -> List[Any]:
    """
    Flatten a card's nodes depth-first, siblings by order_index.

    Returns:
        Nodes in display order (roots and their subtrees in sequence)
    """
    children = build_children_index(nodes)
    ordered: List[Any] = []
    visited: set = set()
    for root in children.get(None, []):
        _walk(root, children, visited, ordered)
    return ordered


def _walk(node: Any, children: Dict[Optional[Hashable], List[Any]], visited: set, out: List[Any]) -> None:
    if node.id in visited:
        return
    visited.add(node.id)
    out.append(node)
    for child in children.get(node.id, []):
        _walk(child, children, visited, out)
