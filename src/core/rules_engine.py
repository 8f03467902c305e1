"""Rule tree matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from core.models import FieldSource, Message, RuleNode


@dataclass(frozen=True)
class RuleHit:
    """A matched node together with its position in the tree."""

    node: RuleNode
    path: Tuple[int, ...]

    @property
    def tag(self) -> str:
        return f"if{list(self.path)}"


def resolve_field(node: RuleNode, message: Message) -> Optional[str]:
    """Return the value a node matches against, or None when unresolvable."""

    if node.field_source is FieldSource.META_KEY:
        return message.attributes.get(node.field_name, "")
    return None


def node_matches(node: RuleNode, message: Message) -> bool:
    value = resolve_field(node, message)
    if value is None or node.pattern is None:
        return False
    # Unanchored on purpose: patterns wanting an exact match carry ^...$.
    return node.pattern.search(value) is not None


def collect_matches(message: Message, nodes: Iterable[RuleNode]) -> List[RuleHit]:
    """Return every matched node in visiting order.

    Matching logic:
    - Siblings are evaluated independently, a match never stops the next one.
    - A node's children are only evaluated when the node itself matched.
    - Order is depth-first: a node comes right before its matched subtree.
    """

    hits: List[RuleHit] = []

    def visit(node: RuleNode, path: Tuple[int, ...]) -> None:
        if not node_matches(node, message):
            return
        hits.append(RuleHit(node=node, path=path))
        for index, child in enumerate(node.then):
            visit(child, path + (index,))

    for index, node in enumerate(nodes):
        visit(node, (index,))
    return hits
