from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .contracts import KernelError

LOG = logging.getLogger(__name__)

Vec3 = Tuple[float, float, float]


class BrepTopology(str, Enum):
    SOLID = "solid"
    SURFACE = "surface"
    CURVE = "curve"


@dataclass(slots=True)
class MeshPayload:
    """Triangle mesh as ``(N, 3)`` float vertices and ``(M, 3)`` int faces."""

    vertices: np.ndarray
    faces: np.ndarray
    normals: Optional[np.ndarray] = None

    @classmethod
    def from_arrays(cls, vertices: Any, faces: Any, normals: Any = None) -> "MeshPayload":
        v = np.asarray(vertices, dtype=float).reshape(-1, 3)
        f = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        n = None
        if normals is not None:
            n = np.asarray(normals, dtype=float).reshape(-1, 3)
            if n.shape[0] != v.shape[0]:
                n = None
        return cls(vertices=v, faces=f, normals=n)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeshPayload":
        return cls.from_arrays(data["vertices"], data["faces"], data.get("normals"))

    @property
    def vertex_count(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def face_count(self) -> int:
        return int(self.faces.shape[0])


@dataclass(slots=True)
class CurvePayload:
    points: np.ndarray
    closed: bool = False

    @classmethod
    def from_points(cls, points: Any, *, closed: bool = False) -> "CurvePayload":
        return cls(points=np.asarray(points, dtype=float).reshape(-1, 3), closed=closed)


Tessellator = Callable[[Any, float], Any]


@dataclass(slots=True)
class BrepPayload:
    """Boundary representation carried as an opaque native handle.

    ``tessellator(data, tolerance)`` turns the native data into a mesh (or a
    polyline for curves). Curves may be given directly as ``curve``.
    """

    topology: BrepTopology
    data: Any = None
    tessellator: Optional[Tessellator] = None
    curve: Optional[CurvePayload] = None


def _coerce_mesh(result: Any) -> MeshPayload:
    if isinstance(result, MeshPayload):
        return result
    if isinstance(result, dict) and "vertices" in result and "faces" in result:
        return MeshPayload.from_dict(result)
    if isinstance(result, tuple) and len(result) >= 2:
        return MeshPayload.from_arrays(result[0], result[1])
    raise KernelError(f"Tessellator returned unsupported result {type(result).__name__}")


def _points_of(payload: Any) -> np.ndarray:
    if isinstance(payload, MeshPayload):
        return payload.vertices
    if isinstance(payload, CurvePayload):
        return payload.points
    if isinstance(payload, BrepPayload) and payload.curve is not None:
        return payload.curve.points
    raise KernelError(f"No point data available for {type(payload).__name__}")


def _drop_degenerate(faces: np.ndarray) -> np.ndarray:
    if faces.size == 0:
        return faces
    mask = (faces[:, 0] != faces[:, 1]) & (faces[:, 1] != faces[:, 2]) & (faces[:, 0] != faces[:, 2])
    return faces[mask]


def _compact(vertices: np.ndarray, faces: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Drop vertices no face references, keeping first-use order stable."""
    if faces.size == 0:
        return vertices[:0], faces.reshape(0, 3)
    used = np.unique(faces.reshape(-1))
    remap = np.full(vertices.shape[0], -1, dtype=np.int64)
    remap[used] = np.arange(used.size, dtype=np.int64)
    return vertices[used], remap[faces]


class MeshKernel:
    """Numpy geometry kernel.

    BRep tessellation is delegated to the tessellator carried on the payload;
    everything else works on plain vertex/face arrays.
    """

    def __init__(self, default_tolerance: float = 0.001) -> None:
        self.default_tolerance = float(default_tolerance)

    def tessellate(self, payload: Any, tolerance: Optional[float] = None) -> Any:
        tol = self.default_tolerance if tolerance is None else float(tolerance)
        if isinstance(payload, (MeshPayload, CurvePayload)):
            return payload
        if not isinstance(payload, BrepPayload):
            raise KernelError(f"Cannot tessellate {type(payload).__name__}")
        if payload.topology is BrepTopology.CURVE:
            if payload.curve is not None:
                return payload.curve
            if payload.tessellator is None:
                raise KernelError("Curve payload has neither points nor a tessellator")
            result = payload.tessellator(payload.data, tol)
            if isinstance(result, CurvePayload):
                return result
            return CurvePayload.from_points(result)
        if payload.tessellator is None:
            raise KernelError(f"{payload.topology.value} payload has no tessellator")
        try:
            result = payload.tessellator(payload.data, tol)
        except KernelError:
            raise
        except Exception as exc:
            raise KernelError(f"Tessellation failed: {exc}") from exc
        return _coerce_mesh(result)

    def cleanup(self, payload: MeshPayload, tolerance: Optional[float] = None) -> MeshPayload:
        """Weld vertices closer than ``tolerance`` and drop collapsed faces."""
        if not isinstance(payload, MeshPayload):
            return payload
        vertices, faces = payload.vertices, payload.faces
        if vertices.size == 0:
            return payload
        tol = self.default_tolerance if tolerance is None else float(tolerance)
        keys = np.round(vertices / tol).astype(np.int64) if tol > 0 else vertices
        _, first, inverse = np.unique(keys, axis=0, return_index=True, return_inverse=True)
        inverse = np.asarray(inverse).reshape(-1)
        order = np.argsort(first)
        rank = np.empty_like(order)
        rank[order] = np.arange(order.size)
        welded = vertices[first[order]]
        new_faces = _drop_degenerate(rank[inverse][faces]) if faces.size else faces
        welded, new_faces = _compact(welded, new_faces)
        LOG.debug(
            "Cleanup welded %d -> %d vertices, %d -> %d faces",
            vertices.shape[0],
            welded.shape[0],
            faces.shape[0],
            new_faces.shape[0],
        )
        return MeshPayload(vertices=welded, faces=new_faces)

    def simplify(self, payload: MeshPayload, tolerance: Optional[float] = None) -> MeshPayload:
        """Remove duplicate, degenerate and zero-area triangles."""
        if not isinstance(payload, MeshPayload) or payload.faces.size == 0:
            return payload
        tol = self.default_tolerance if tolerance is None else float(tolerance)
        faces = _drop_degenerate(payload.faces)
        if faces.size:
            _, keep = np.unique(np.sort(faces, axis=1), axis=0, return_index=True)
            faces = faces[np.sort(keep)]
        if faces.size:
            v = payload.vertices
            cross = np.cross(v[faces[:, 1]] - v[faces[:, 0]], v[faces[:, 2]] - v[faces[:, 0]])
            area2 = np.linalg.norm(cross, axis=1)
            faces = faces[area2 > tol * tol]
        vertices, faces = _compact(payload.vertices, faces)
        normals = None
        if payload.normals is not None and faces.shape[0] == payload.faces.shape[0]:
            normals = payload.normals
        return MeshPayload(vertices=vertices, faces=faces, normals=normals)

    def bounds(self, payload: Any) -> Tuple[Vec3, Vec3]:
        points = _points_of(payload)
        if points.size == 0:
            raise KernelError("Cannot compute bounds of empty geometry")
        lo = points.min(axis=0)
        hi = points.max(axis=0)
        return (float(lo[0]), float(lo[1]), float(lo[2])), (float(hi[0]), float(hi[1]), float(hi[2]))

    def centroid(self, payload: Any) -> Vec3:
        points = _points_of(payload)
        if points.size == 0:
            raise KernelError("Cannot compute centroid of empty geometry")
        c = points.mean(axis=0)
        return float(c[0]), float(c[1]), float(c[2])

    def merge(self, payloads: Sequence[Any]) -> MeshPayload:
        """Concatenate mesh payloads (BReps are tessellated first; curves are skipped)."""
        vertices: List[np.ndarray] = []
        faces: List[np.ndarray] = []
        offset = 0
        for payload in payloads:
            mesh = self.tessellate(payload) if isinstance(payload, BrepPayload) else payload
            if not isinstance(mesh, MeshPayload):
                LOG.debug("Skipping non-mesh payload %s in merge", type(mesh).__name__)
                continue
            vertices.append(mesh.vertices)
            faces.append(mesh.faces + offset)
            offset += mesh.vertex_count
        if not vertices:
            raise KernelError("Nothing to merge: no mesh payloads supplied")
        return MeshPayload(vertices=np.vstack(vertices), faces=np.vstack(faces))


__all__ = [
    "BrepPayload",
    "BrepTopology",
    "CurvePayload",
    "MeshKernel",
    "MeshPayload",
    "Tessellator",
]
