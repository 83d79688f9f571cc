from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

LOG = logging.getLogger(__name__)

PathLike = Union[str, Path]
ParameterValue = Union[str, int, float, bool]
ParameterSet = Dict[str, ParameterValue]


class GeometryKind(str, Enum):
    UNKNOWN = "unknown"
    BREP = "brep"
    MESH = "mesh"


class ElementClass(str, Enum):
    """Closed element classification used to pick a placement strategy."""

    WALL = "wall"
    FLOOR = "floor"
    CEILING = "ceiling"
    ROOF = "roof"
    COLUMN = "column"
    BEAM = "beam"
    DOOR = "door"
    WINDOW = "window"
    FURNITURE = "furniture"
    MEP_COMPONENT = "mep_component"
    SITE = "site"
    GENERIC_MODEL = "generic_model"
    OTHER = "other"


class OwnershipError(ValueError):
    """Raised when a tree edit would give a node two owners or form a cycle."""


def new_node_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class GeometryNode:
    """One geometry item of a forest.

    ``payload`` is opaque to the pipeline; only the kernel and the converters
    look inside it. ``parent_id`` is a lookup key into the owning forest,
    ``child_ids`` is the ownership edge.
    """

    name: str = ""
    kind: GeometryKind = GeometryKind.UNKNOWN
    element_class: ElementClass = ElementClass.GENERIC_MODEL
    payload: Any = None
    parameters: ParameterSet = field(default_factory=dict)
    id: str = field(default_factory=new_node_id)
    parent_id: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)
    target_object: Any = None
    source_id: Optional[str] = None

    @property
    def is_convert_ready(self) -> bool:
        return self.payload is not None and self.kind is not GeometryKind.UNKNOWN

    @property
    def is_valid(self) -> bool:
        return self.is_convert_ready

    @property
    def is_converted(self) -> bool:
        return self.target_object is not None


class GeometryForest:
    """Arena of geometry nodes addressed by id.

    Every node lives in ``self._nodes``. A node is owned by at most one of:
    its parent's ``child_ids`` or the ordered root list. Nodes that are in the
    arena but have no owner are "floating" (freshly cloned or detached); they
    are skipped by :meth:`walk` until attached somewhere.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, GeometryNode] = {}
        self._roots: List[str] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, item: object) -> bool:
        key = item.id if isinstance(item, GeometryNode) else item
        return key in self._nodes

    def __iter__(self) -> Iterator[GeometryNode]:
        return self.walk()

    # ------------- lookup -------------
    def get(self, node_id: str) -> GeometryNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise KeyError(f"Node {node_id!r} is not part of this forest") from None

    @property
    def roots(self) -> List[GeometryNode]:
        return [self._nodes[nid] for nid in self._roots]

    def children(self, node: GeometryNode) -> List[GeometryNode]:
        return [self._nodes[cid] for cid in self._require(node).child_ids]

    def parent(self, node: GeometryNode) -> Optional[GeometryNode]:
        node = self._require(node)
        if node.parent_id is None:
            return None
        return self._nodes.get(node.parent_id)

    def is_root(self, node: GeometryNode) -> bool:
        return node.id in self._roots

    def is_floating(self, node: GeometryNode) -> bool:
        node = self._require(node)
        return node.parent_id is None and node.id not in self._roots

    # ------------- construction -------------
    def create(
        self,
        name: str = "",
        *,
        kind: GeometryKind = GeometryKind.UNKNOWN,
        element_class: ElementClass = ElementClass.GENERIC_MODEL,
        payload: Any = None,
        parameters: Optional[Mapping[str, ParameterValue]] = None,
        parent: Optional[GeometryNode] = None,
        source_id: Optional[str] = None,
    ) -> GeometryNode:
        """Create a node and attach it under ``parent`` (or as a new root)."""
        node = GeometryNode(
            name=name,
            kind=kind,
            element_class=element_class,
            payload=payload,
            parameters=dict(parameters or {}),
            source_id=source_id,
        )
        self._register(node)
        if parent is None:
            self._roots.append(node.id)
        else:
            self.attach(parent, node)
        return node

    def add(self, node: GeometryNode, *, parent: Optional[GeometryNode] = None) -> GeometryNode:
        """Adopt an externally built, ownerless node into the arena."""
        if node.parent_id is not None or node.child_ids:
            raise OwnershipError(f"Node {node.name or node.id!r} already has tree links; use clone() instead")
        self._register(node)
        if parent is None:
            self._roots.append(node.id)
        else:
            self.attach(parent, node)
        return node

    def _register(self, node: GeometryNode) -> None:
        if node.id in self._nodes:
            raise OwnershipError(f"Node {node.id!r} is already registered")
        self._nodes[node.id] = node

    def _require(self, node: GeometryNode) -> GeometryNode:
        stored = self._nodes.get(node.id)
        if stored is None:
            raise KeyError(f"Node {node.name or node.id!r} is not part of this forest")
        return stored

    # ------------- ownership -------------
    def attach(self, parent: GeometryNode, child: GeometryNode, *, reparent: bool = False) -> GeometryNode:
        """Make ``child`` the last child of ``parent``.

        Raises :class:`OwnershipError` when ``child`` is already owned elsewhere
        (unless ``reparent`` is set) or when the edit would create a cycle.
        """
        parent = self._require(parent)
        child = self._require(child)
        if parent.id == child.id:
            raise OwnershipError("A node cannot be attached to itself")
        if child.parent_id == parent.id:
            return child
        if self._is_ancestor(child, parent):
            raise OwnershipError(f"Attaching {child.name or child.id!r} under {parent.name or parent.id!r} would create a cycle")
        if not self.is_floating(child):
            if not reparent:
                raise OwnershipError(f"Node {child.name or child.id!r} already has an owner")
            self.detach(child)
        parent.child_ids.append(child.id)
        child.parent_id = parent.id
        return child

    def add_root(self, node: GeometryNode, *, reparent: bool = False) -> GeometryNode:
        node = self._require(node)
        if node.id in self._roots:
            return node
        if not self.is_floating(node):
            if not reparent:
                raise OwnershipError(f"Node {node.name or node.id!r} already has an owner")
            self.detach(node)
        self._roots.append(node.id)
        return node

    def detach(self, node: GeometryNode) -> GeometryNode:
        """Remove ``node`` from its owner; it stays in the arena as a floating node."""
        node = self._require(node)
        if node.parent_id is not None:
            parent = self._nodes.get(node.parent_id)
            if parent is not None:
                parent.child_ids.remove(node.id)
            node.parent_id = None
        elif node.id in self._roots:
            self._roots.remove(node.id)
        return node

    def remove(self, node: GeometryNode) -> int:
        """Drop ``node`` and its subtree from the arena. Returns the number removed."""
        node = self._require(node)
        self.detach(node)
        doomed = [n.id for n in self._iter_subtree(node)]
        for nid in doomed:
            del self._nodes[nid]
        return len(doomed)

    def _is_ancestor(self, candidate: GeometryNode, node: GeometryNode) -> bool:
        current: Optional[str] = node.id
        while current is not None:
            if current == candidate.id:
                return True
            current = self._nodes[current].parent_id
        return False

    # ------------- traversal -------------
    def _iter_subtree(self, node: GeometryNode) -> Iterator[GeometryNode]:
        stack = [node.id]
        while stack:
            current = self._nodes[stack.pop()]
            yield current
            stack.extend(reversed(current.child_ids))

    def walk(self, start: Optional[GeometryNode] = None) -> Iterator[GeometryNode]:
        """Preorder traversal: parents before children, sibling order kept."""
        if start is not None:
            yield from self._iter_subtree(self._require(start))
            return
        for root_id in list(self._roots):
            yield from self._iter_subtree(self._nodes[root_id])

    def depth(self, node: GeometryNode) -> int:
        depth = 0
        current = self._require(node)
        while current.parent_id is not None:
            depth += 1
            current = self._nodes[current.parent_id]
        return depth

    # ------------- copy / merge -------------
    def clone(self, node: GeometryNode, *, into: Optional["GeometryForest"] = None) -> GeometryNode:
        """Deep-copy ``node`` and its subtree with fresh ids.

        The copy is registered in ``into`` (default: this forest) as a floating
        node. Parameter sets are copied; payloads and converted target handles
        are shared references.
        """
        source = self._require(node)
        target = into if into is not None else self

        def _copy(original: GeometryNode) -> GeometryNode:
            duplicate = GeometryNode(
                name=original.name,
                kind=original.kind,
                element_class=original.element_class,
                payload=original.payload,
                parameters=dict(original.parameters),
                target_object=original.target_object,
                source_id=original.source_id,
            )
            target._register(duplicate)
            for child_id in original.child_ids:
                child_copy = _copy(self._nodes[child_id])
                duplicate.child_ids.append(child_copy.id)
                child_copy.parent_id = duplicate.id
            return duplicate

        return _copy(source)

    def merge(self, nodes: Iterable[GeometryNode], *, kernel: Any = None, name: Optional[str] = None) -> GeometryNode:
        """Combine ``nodes`` into one floating node.

        A single input returns its clone. Several inputs produce a new parent
        (kind and class of the first input) holding a clone of each. When a
        kernel is given it is asked to merge the payloads into the parent.
        """
        items = [self._require(n) for n in nodes]
        if not items:
            raise ValueError("merge() requires at least one node")
        if len(items) == 1:
            return self.clone(items[0])
        first = items[0]
        merged = GeometryNode(
            name=name or f"{first.name or 'Geometry'}_merged",
            kind=first.kind,
            element_class=first.element_class,
        )
        self._register(merged)
        for item in items:
            copy_ = self.clone(item)
            merged.child_ids.append(copy_.id)
            copy_.parent_id = merged.id
        if kernel is not None:
            payloads = [item.payload for item in items if item.payload is not None]
            if payloads:
                merged.payload = kernel.merge(payloads)
        LOG.debug("Merged %d node(s) into %s", len(items), merged.id)
        return merged


@dataclass(slots=True)
class FamilyDefinition:
    """A parametric family: instance parameters, type variants and owned geometry."""

    name: str
    category: str
    template: Optional[str] = None
    parameters: ParameterSet = field(default_factory=dict)
    type_parameters: List[Dict[str, Any]] = field(default_factory=list)
    geometry: GeometryForest = field(default_factory=GeometryForest)
    output_path: Optional[str] = None
    id: str = field(default_factory=new_node_id)

    @property
    def is_valid(self) -> bool:
        return bool(self.name and self.name.strip()) and bool(self.category and self.category.strip())

    @property
    def roots(self) -> List[GeometryNode]:
        return self.geometry.roots


@dataclass(frozen=True)
class ConversionOptions:
    """Immutable per-run settings. Derive variants with ``dataclasses.replace``."""

    target_version: str = "2024"
    output_path: Optional[str] = None
    tolerance: float = 0.001
    merge_coincident_vertices: bool = True
    simplify_mesh: bool = True
    include_hidden_geometry: bool = False
    auto_determine_family_type: bool = True
    detailed_progress: bool = False
    parameter_mapping: Mapping[str, str] = field(default_factory=dict)
    template_path: Optional[str] = None
    create_family: bool = False
    family_name: Optional[str] = None
    family_category: Optional[str] = None
    require_family_geometry: bool = False
    overwrite: bool = True


__all__ = [
    "ConversionOptions",
    "ElementClass",
    "FamilyDefinition",
    "GeometryForest",
    "GeometryKind",
    "GeometryNode",
    "OwnershipError",
    "ParameterSet",
    "ParameterValue",
    "PathLike",
    "new_node_id",
]
