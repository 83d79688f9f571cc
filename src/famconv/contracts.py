"""Collaborator interfaces the pipeline talks to.

The pipeline never imports a concrete reader, writer or kernel; it only relies
on the protocols below. :mod:`famconv.ifc_reader`, :mod:`famconv.usd_family`
and :mod:`famconv.kernel` provide the shipped implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ContextManager, Iterator, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .model import ConversionOptions, ElementClass, FamilyDefinition, GeometryForest, GeometryNode, ParameterValue, PathLike


class ReaderError(RuntimeError):
    """The source document could not be opened or read."""


class WriterError(RuntimeError):
    """The target system refused an operation (document, element or save)."""


class KernelError(RuntimeError):
    """A geometry kernel operation failed for a payload."""


MESH_REPRESENTATION = "mesh"
CURVE_REPRESENTATION = "curve"


@dataclass(slots=True)
class TargetShape:
    """Document-independent shape built by a writer, placed later by Generate."""

    representation: str
    data: Any
    name: str = ""
    closed: bool = False

    @property
    def is_curve(self) -> bool:
        return self.representation == CURVE_REPRESENTATION


@runtime_checkable
class SourceFileReader(Protocol):
    extensions: Tuple[str, ...]

    def can_read(self, path: PathLike) -> bool:
        """Extension and signature check; must not raise."""
        ...

    def open(self, path: PathLike) -> Any:
        ...

    def read_nodes(self, handle: Any, forest: GeometryForest, options: ConversionOptions) -> Iterator[GeometryNode]:
        """Add nodes to ``forest`` lazily, yielding each one as it is created."""
        ...

    def read_family(self, handle: Any, path: PathLike, options: ConversionOptions) -> FamilyDefinition:
        ...

    def close(self, handle: Any) -> None:
        ...


@runtime_checkable
class GeometryKernel(Protocol):
    def tessellate(self, payload: Any, tolerance: float) -> Any:
        ...

    def cleanup(self, payload: Any, tolerance: float) -> Any:
        ...

    def simplify(self, payload: Any, tolerance: float) -> Any:
        ...

    def bounds(self, payload: Any) -> Tuple[Tuple[float, float, float], Tuple[float, float, float]]:
        ...

    def centroid(self, payload: Any) -> Tuple[float, float, float]:
        ...

    def merge(self, payloads: Sequence[Any]) -> Any:
        ...


@runtime_checkable
class TargetDocumentWriter(Protocol):
    """Target-side construction surface.

    Every mutating call on a document happens inside ``transaction(document,
    label)``; implementations serialize transactions per document.
    """

    document_suffix: str
    family_suffix: str
    template_suffix: str

    def build_shape(self, classification: ElementClass, geometry: Any, *, name: str = "") -> TargetShape:
        ...

    def create_document(
        self,
        template: Optional[PathLike],
        *,
        family: bool = False,
        name: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Any:
        ...

    def create_element(
        self,
        document: Any,
        classification: ElementClass,
        shape: TargetShape,
        *,
        name: str = "",
        construction: str = "direct_shape",
    ) -> Any:
        ...

    def set_parameter(self, element: Any, name: str, value: ParameterValue) -> bool:
        ...

    def add_family_parameter(
        self,
        document: Any,
        name: str,
        value: Optional[ParameterValue],
        *,
        instance: bool = True,
        group: str = "PG_GENERAL",
        declared_type: str = "Text",
    ) -> bool:
        ...

    def create_family_type(self, document: Any, type_name: str, values: Mapping[str, ParameterValue]) -> bool:
        ...

    def save(self, document: Any, path: PathLike, overwrite: bool = True) -> bool:
        ...

    def transaction(self, document: Any, label: str) -> ContextManager[Any]:
        ...


__all__ = [
    "CURVE_REPRESENTATION",
    "GeometryKernel",
    "KernelError",
    "MESH_REPRESENTATION",
    "ReaderError",
    "SourceFileReader",
    "TargetDocumentWriter",
    "TargetShape",
    "WriterError",
]
