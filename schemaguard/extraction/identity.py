"""Identity allocation for graph-shaped extraction results.

## Extraction Theory: Shared Id Spaces

A support-ticket transcript yields tickets, each with embedded subtasks,
and any ticket or subtask may depend on any other. The model expresses
those edges with ids, so tickets and subtasks must draw ids from one pool
("work-item") or a reference "3" would be ambiguous.

Per extraction:
1. Every id the model already assigned is reserved (never reissued)
2. Nodes without an id get a fresh opaque one from next_id()
3. A NodeIndex maps (space, id) -> (shape, node, path) for reference lookup

Collisions between model-assigned ids are NOT renumbered: the model wrote
its reference fields relative to those ids, so renumbering would silently
rewire the graph. They are recorded and surface as validation violations.

## Data Flow

decoder.decode() -> IdentityAllocator.assign() -> NodeIndex -> validator
"""

from dataclasses import dataclass
from typing import Any, Iterator, Optional

from schemaguard.errors import IdentityCollisionError
from schemaguard.schema.descriptor import SchemaDescriptor, walk_nodes, ROOT_PATH
from schemaguard.shared.files import setup_logging

logger = setup_logging(__name__)


@dataclass
class IndexedNode:
    """One addressable node in a shared id space."""

    space: str
    node_id: str
    shape: str
    path: str
    node: dict[str, Any]


class NodeIndex:
    """Tagged-union lookup from (space, id) to the node that owns it.

    Reference resolution uses id equality only; ids carry no ordering.
    """

    def __init__(self):
        self._nodes: dict[tuple[str, str], IndexedNode] = {}
        self.collisions: list[IdentityCollisionError] = []

    def add(self, entry: IndexedNode) -> bool:
        """Register a node. Returns False (and records a collision) if the id is taken."""
        key = (entry.space, entry.node_id)
        owner = self._nodes.get(key)
        if owner is None:
            self._nodes[key] = entry
            return True
        if owner.node is entry.node:
            return True
        self.collisions.append(
            IdentityCollisionError(
                space=entry.space,
                node_id=entry.node_id,
                first_path=owner.path,
                second_path=entry.path,
                first_shape=owner.shape,
                second_shape=entry.shape,
            )
        )
        return False

    def resolve(self, space: str, node_id: Any) -> Optional[IndexedNode]:
        if not isinstance(node_id, str):
            return None
        return self._nodes.get((space, node_id))

    def owns(self, space: str, node_id: str, node: dict[str, Any]) -> bool:
        """True if `node` is the registered owner of the id."""
        owner = self._nodes.get((space, node_id))
        return owner is not None and owner.node is node

    def collisions_at(self, path: str) -> list[IdentityCollisionError]:
        return [c for c in self.collisions if c.second_path == path]

    def ids(self, space: str) -> list[str]:
        return [node_id for (s, node_id) in self._nodes if s == space]

    def __iter__(self) -> Iterator[IndexedNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._nodes


def _node_id(node: dict[str, Any], id_name: str) -> Optional[str]:
    value = node.get(id_name)
    if isinstance(value, str) and value.strip():
        return value
    return None


def index_nodes(value: Any, schema: SchemaDescriptor) -> NodeIndex:
    """Build a NodeIndex without assigning anything (read-only)."""
    index = NodeIndex()
    for shape, node, path in walk_nodes(value, schema, ROOT_PATH):
        spec = shape.id_spec
        if spec is None:
            continue
        node_id = _node_id(node, spec.name)
        if node_id is not None:
            index.add(IndexedNode(spec.id_space, node_id, shape.name, path, node))
    return index


class IdentityAllocator:
    """Hands out unique opaque ids per shared id space.

    One allocator lives for exactly one extract() call and is reused across
    its retries, so an id bound on attempt 0 is never reissued on attempt 2.

    Example:
        >>> allocator = IdentityAllocator()
        >>> allocator.next_id("work-item")
        'work-item-1'
        >>> allocator.reserve("work-item", "work-item-2")
        True
        >>> allocator.next_id("work-item")
        'work-item-3'
    """

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._bound: dict[str, set[str]] = {}

    def next_id(self, space: str) -> str:
        bound = self._bound.setdefault(space, set())
        counter = self._counters.get(space, 0)
        while True:
            counter += 1
            candidate = f"{space}-{counter}"
            if candidate not in bound:
                break
        self._counters[space] = counter
        bound.add(candidate)
        return candidate

    def reserve(self, space: str, node_id: str) -> bool:
        """Mark an externally assigned id as bound. Returns False if it already was."""
        bound = self._bound.setdefault(space, set())
        if node_id in bound:
            return False
        bound.add(node_id)
        return True

    def is_bound(self, space: str, node_id: str) -> bool:
        return node_id in self._bound.get(space, set())

    def assign(self, value: dict[str, Any], schema: SchemaDescriptor) -> NodeIndex:
        """Reserve model-assigned ids, fill missing ones, and index every node.

        Model ids are reserved in a first pass so a generated id can never
        shadow one that appears later in the tree. Mutates `value` in place
        (missing ids are written into their nodes).

        Args:
            value: Decoded root value.
            schema: Root descriptor.

        Returns:
            NodeIndex over all nodes in shared id spaces, with any
            collisions recorded on it.
        """
        nodes = [
            (shape, node, path)
            for shape, node, path in walk_nodes(value, schema, ROOT_PATH)
            if shape.id_spec is not None
        ]

        for shape, node, _ in nodes:
            node_id = _node_id(node, shape.id_spec.name)
            if node_id is not None:
                self.reserve(shape.id_space, node_id)

        index = NodeIndex()
        generated = 0
        for shape, node, path in nodes:
            spec = shape.id_spec
            node_id = _node_id(node, spec.name)
            if node_id is None:
                # Blank strings count as absent; other wrongly-typed ids are left
                # for the validator to report
                raw_id = node.get(spec.name)
                if raw_id is not None and not isinstance(raw_id, str):
                    continue
                node_id = self.next_id(spec.id_space)
                node[spec.name] = node_id
                generated += 1
            index.add(IndexedNode(spec.id_space, node_id, shape.name, path, node))

        if generated:
            logger.debug(f"Assigned {generated} missing ids ({len(index)} nodes indexed)")
        if index.collisions:
            logger.warning(f"Detected {len(index.collisions)} id collision(s) in model output")
        return index
