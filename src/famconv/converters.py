from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from .contracts import GeometryKernel, KernelError, TargetDocumentWriter, WriterError
from .kernel import BrepPayload, BrepTopology, CurvePayload, MeshPayload
from .model import ConversionOptions, GeometryKind, GeometryNode
from .outcome import ConversionOutcome
from .progress import NullSink, ProgressChanged, ProgressSink, StatusChanged

LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class NodeConversion:
    outcome: ConversionOutcome
    converter: Optional[str] = None
    detail: str = ""


class GeometryConverter(ABC):
    """Turn one node's payload into a target shape stored on ``node.target_object``."""

    name = "converter"

    def __init__(self, kernel: GeometryKernel, writer: TargetDocumentWriter) -> None:
        self.kernel = kernel
        self.writer = writer
        self.last_detail = ""

    @abstractmethod
    def can_convert(self, kind: GeometryKind) -> bool:
        ...

    @abstractmethod
    def _build(self, node: GeometryNode, options: ConversionOptions, sink: ProgressSink) -> Any:
        """Return the writer's shape handle, or ``None`` when nothing could be built."""

    def convert(
        self,
        node: GeometryNode,
        options: ConversionOptions,
        sink: Optional[ProgressSink] = None,
        cancel_event: Any | None = None,
    ) -> ConversionOutcome:
        sink = sink or NullSink()
        self.last_detail = ""
        if node.payload is None:
            self.last_detail = "missing geometry payload"
            return ConversionOutcome.INVALID_INPUT
        if not self.can_convert(node.kind):
            self.last_detail = f"{self.name} cannot handle {node.kind.value} geometry"
            return ConversionOutcome.UNSUPPORTED_GEOMETRY
        sink.emit(StatusChanged(f"Converting {node.name or node.id} ({self.name})", 0.0))
        try:
            shape = self._build(node, options, sink)
        except (KernelError, WriterError) as exc:
            self.last_detail = str(exc)
            LOG.debug("%s failed for %s: %s", self.name, node.name or node.id, exc)
            return ConversionOutcome.FAILED
        if shape is None:
            if not self.last_detail:
                self.last_detail = "no target shape produced"
            return ConversionOutcome.FAILED
        node.target_object = shape
        sink.emit(ProgressChanged(100.0))
        return ConversionOutcome.SUCCESS


class BrepConverter(GeometryConverter):
    name = "brep"

    def can_convert(self, kind: GeometryKind) -> bool:
        return kind is GeometryKind.BREP

    def _build(self, node: GeometryNode, options: ConversionOptions, sink: ProgressSink) -> Any:
        payload = node.payload
        if not isinstance(payload, BrepPayload):
            self.last_detail = f"expected a BRep payload, got {type(payload).__name__}"
            return None
        if payload.topology is BrepTopology.CURVE:
            curve = self.kernel.tessellate(payload, options.tolerance)
            if not isinstance(curve, CurvePayload) or curve.points.shape[0] < 2:
                self.last_detail = "curve has fewer than two points"
                return None
            sink.emit(ProgressChanged(60.0))
            return self.writer.build_shape(node.element_class, curve, name=node.name)

        sink.emit(StatusChanged(f"Tessellating {payload.topology.value}"))
        mesh = self.kernel.tessellate(payload, options.tolerance)
        sink.emit(ProgressChanged(40.0))
        if options.merge_coincident_vertices:
            mesh = self.kernel.cleanup(mesh, options.tolerance)
        sink.emit(ProgressChanged(70.0))
        if not isinstance(mesh, MeshPayload) or mesh.face_count == 0:
            self.last_detail = "tessellation produced no faces"
            return None
        return self.writer.build_shape(node.element_class, mesh, name=node.name)


class MeshConverter(GeometryConverter):
    name = "mesh"

    def can_convert(self, kind: GeometryKind) -> bool:
        return kind is GeometryKind.MESH

    def _build(self, node: GeometryNode, options: ConversionOptions, sink: ProgressSink) -> Any:
        mesh = node.payload
        if isinstance(mesh, dict):
            mesh = MeshPayload.from_dict(mesh)
        if not isinstance(mesh, MeshPayload):
            self.last_detail = f"expected a mesh payload, got {type(mesh).__name__}"
            return None
        if options.merge_coincident_vertices:
            mesh = self.kernel.cleanup(mesh, options.tolerance)
        sink.emit(ProgressChanged(40.0))
        if options.simplify_mesh:
            mesh = self.kernel.simplify(mesh, options.tolerance)
        sink.emit(ProgressChanged(70.0))
        if mesh.face_count == 0:
            self.last_detail = "mesh has no faces left after cleanup"
            return None
        return self.writer.build_shape(node.element_class, mesh, name=node.name)


class ConverterRegistry:
    """Ordered converter list; the first one whose ``can_convert`` agrees wins."""

    def __init__(self, converters: Optional[Iterable[GeometryConverter]] = None) -> None:
        self._converters: List[GeometryConverter] = list(converters or ())

    @classmethod
    def default(cls, kernel: GeometryKernel, writer: TargetDocumentWriter) -> "ConverterRegistry":
        return cls([BrepConverter(kernel, writer), MeshConverter(kernel, writer)])

    def __len__(self) -> int:
        return len(self._converters)

    @property
    def converters(self) -> List[GeometryConverter]:
        return list(self._converters)

    def register(self, converter: GeometryConverter, *, first: bool = False) -> None:
        if first:
            self._converters.insert(0, converter)
        else:
            self._converters.append(converter)

    def select(self, kind: GeometryKind) -> Optional[GeometryConverter]:
        for converter in self._converters:
            if converter.can_convert(kind):
                return converter
        return None

    def convert_node(
        self,
        node: GeometryNode,
        options: ConversionOptions,
        sink: Optional[ProgressSink] = None,
        cancel_event: Any | None = None,
    ) -> NodeConversion:
        converter = self.select(node.kind)
        if converter is None:
            return NodeConversion(
                ConversionOutcome.UNSUPPORTED_GEOMETRY,
                detail=f"unsupported geometry ({node.kind.value})",
            )
        try:
            outcome = converter.convert(node, options, sink, cancel_event)
        except Exception as exc:
            LOG.warning("Converter %s raised for %s: %s", converter.name, node.name or node.id, exc, exc_info=True)
            return NodeConversion(ConversionOutcome.FAILED, converter.name, str(exc))
        detail = getattr(converter, "last_detail", "")
        if outcome is ConversionOutcome.UNSUPPORTED_GEOMETRY and not detail:
            detail = f"unsupported geometry ({node.kind.value})"
        return NodeConversion(outcome, converter.name, detail)

    def convert(
        self,
        node: GeometryNode,
        options: ConversionOptions,
        sink: Optional[ProgressSink] = None,
        cancel_event: Any | None = None,
    ) -> ConversionOutcome:
        return self.convert_node(node, options, sink, cancel_event).outcome


__all__ = [
    "BrepConverter",
    "ConverterRegistry",
    "GeometryConverter",
    "MeshConverter",
    "NodeConversion",
]
