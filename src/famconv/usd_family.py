"""USD authoring and reading of target documents and parametric families.

A document is a USD layer with a ``/World`` default prim (Z up). Elements are
Xforms grouped under one scope per category, each holding a ``Geometry`` Mesh
or BasisCurves child. Parameters are typed ``famconv:param:*`` attributes whose
display name keeps the original parameter name. Family types are variants of
the ``familyType`` variant set on ``/World``.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from .classification import category_for, dominant_category
from .contracts import CURVE_REPRESENTATION, MESH_REPRESENTATION, ReaderError, TargetShape, WriterError
from .kernel import BrepPayload, BrepTopology, CurvePayload, MeshPayload
from .model import (
    ConversionOptions,
    ElementClass,
    FamilyDefinition,
    GeometryForest,
    GeometryKind,
    GeometryNode,
    ParameterValue,
    PathLike,
)
from .parameters import INTEGER, TEXT, YES_NO, normalize_declared_type
from .pxr_utils import Gf, Sdf, Usd, UsdGeom, Vt, sanitize_name, unique_name

LOG = logging.getLogger(__name__)

WORLD_PATH = "/World"
PARAM_NAMESPACE = "famconv:param"
TYPE_VARIANT_SET = "familyType"
TYPE_ORDER_KEY = "famconv:typeOrder"
GEOMETRY_CHILD = "Geometry"
USD_EXTENSIONS = (".usda", ".usdc", ".usd")


@dataclass
class UsdDocument:
    stage: Any
    name: str
    family: bool = False
    category: Optional[str] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    used_names: Dict[str, Dict[str, int]] = field(default_factory=dict, repr=False)
    parameter_tokens: Dict[str, str] = field(default_factory=dict, repr=False)
    type_names: List[str] = field(default_factory=list)

    @property
    def root(self) -> Any:
        return self.stage.GetPrimAtPath(WORLD_PATH)


@dataclass
class UsdElement:
    document: UsdDocument
    prim: Any

    @property
    def path(self) -> str:
        return str(self.prim.GetPath())


def _value_type_for(value: Any) -> Any:
    if isinstance(value, bool):
        return Sdf.ValueTypeNames.Bool
    if isinstance(value, (int, np.integer)):
        return Sdf.ValueTypeNames.Int
    if isinstance(value, (float, np.floating)):
        return Sdf.ValueTypeNames.Double
    return Sdf.ValueTypeNames.String


def _value_type_for_declared(declared_type: str) -> Any:
    kind = normalize_declared_type(declared_type)
    if kind == TEXT:
        return Sdf.ValueTypeNames.String
    if kind == INTEGER:
        return Sdf.ValueTypeNames.Int
    if kind == YES_NO:
        return Sdf.ValueTypeNames.Bool
    return Sdf.ValueTypeNames.Double


def _coerce_for(type_name: Any, value: Any) -> Any:
    if type_name == Sdf.ValueTypeNames.Bool:
        return bool(value)
    if type_name == Sdf.ValueTypeNames.Int:
        return int(value)
    if type_name == Sdf.ValueTypeNames.Double:
        return float(value)
    return str(value)


def _python_value(value: Any) -> Optional[ParameterValue]:
    if value is None:
        return None
    if isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def _has_local_default(prim: Any, attr_name: str) -> bool:
    spec = prim.GetStage().GetEditTarget().GetPrimSpecForScenePath(prim.GetPath())
    if not spec:
        return False
    if attr_name not in spec.attributes:
        return False
    return spec.attributes[attr_name].HasDefaultValue()


def _ordered_type_tokens(root: Any, vset: Any) -> List[str]:
    names = list(vset.GetVariantNames())
    stored = [str(token) for token in (root.GetCustomDataByKey(TYPE_ORDER_KEY) or []) if token in names]
    return stored + [token for token in names if token not in stored]


class UsdFamilyWriter:
    """Target writer that authors USD layers."""

    document_suffix = ".usda"
    family_suffix = ".usda"
    template_suffix = ".usda"

    def __init__(self, *, meters_per_unit: float = 1.0) -> None:
        self.meters_per_unit = float(meters_per_unit)

    # ------------- shapes -------------
    def build_shape(self, classification: ElementClass, geometry: Any, *, name: str = "") -> TargetShape:
        if isinstance(geometry, MeshPayload):
            if geometry.face_count == 0:
                raise WriterError("Mesh has no faces")
            data = {
                "points": np.asarray(geometry.vertices, dtype=np.float32),
                "faces": np.asarray(geometry.faces, dtype=np.int32),
            }
            return TargetShape(MESH_REPRESENTATION, data, name=name)
        if isinstance(geometry, CurvePayload):
            if geometry.points.shape[0] < 2:
                raise WriterError("Curve needs at least two points")
            data = {"points": np.asarray(geometry.points, dtype=np.float32)}
            return TargetShape(CURVE_REPRESENTATION, data, name=name, closed=geometry.closed)
        raise WriterError(f"Cannot build a {classification.value} shape from {type(geometry).__name__}")

    # ------------- documents -------------
    def create_document(
        self,
        template: Optional[PathLike],
        *,
        family: bool = False,
        name: Optional[str] = None,
        category: Optional[str] = None,
    ) -> UsdDocument:
        stage = Usd.Stage.CreateInMemory()
        if stage is None:
            raise WriterError("USD could not create an in-memory stage")
        if template:
            stage.GetRootLayer().subLayerPaths.append(Path(template).resolve().as_posix())
        UsdGeom.SetStageUpAxis(stage, UsdGeom.Tokens.z)
        UsdGeom.SetStageMetersPerUnit(stage, self.meters_per_unit)
        world = UsdGeom.Xform.Define(stage, WORLD_PATH)
        stage.SetDefaultPrim(world.GetPrim())
        prim = world.GetPrim()
        doc_name = name or ("Family" if family else "Document")
        prim.SetCustomDataByKey("famconv:documentName", doc_name)
        prim.SetCustomDataByKey("famconv:isFamily", bool(family))
        if category:
            prim.SetCustomDataByKey("famconv:category", category)
        LOG.debug("Created %s document '%s' (template=%s)", "family" if family else "project", doc_name, template)
        return UsdDocument(stage=stage, name=doc_name, family=family, category=category)

    @contextmanager
    def transaction(self, document: UsdDocument, label: str) -> Iterator[UsdDocument]:
        with document.lock:
            LOG.debug("Begin transaction '%s'", label)
            yield document

    def _unique_child(self, document: UsdDocument, parent_path: str, base: str) -> str:
        used = document.used_names.setdefault(parent_path, {})
        while True:
            candidate = unique_name(base, used)
            if not document.stage.GetPrimAtPath(f"{parent_path}/{candidate}"):
                return candidate

    def _category_scope(self, document: UsdDocument, classification: ElementClass) -> str:
        token = sanitize_name(category_for(classification), fallback="Elements")
        path = f"{WORLD_PATH}/{token}"
        if not document.stage.GetPrimAtPath(path):
            UsdGeom.Scope.Define(document.stage, path)
        return path

    # ------------- elements -------------
    def create_element(
        self,
        document: UsdDocument,
        classification: ElementClass,
        shape: TargetShape,
        *,
        name: str = "",
        construction: str = "direct_shape",
    ) -> UsdElement:
        if not isinstance(shape, TargetShape):
            raise WriterError(f"Unsupported shape handle {type(shape).__name__}")
        stage = document.stage
        parent_path = self._category_scope(document, classification)
        token = self._unique_child(document, parent_path, sanitize_name(name, fallback=classification.value))
        element_path = f"{parent_path}/{token}"
        xform = UsdGeom.Xform.Define(stage, element_path)
        prim = xform.GetPrim()
        prim.SetCustomDataByKey("famconv:label", name or token)
        prim.SetCustomDataByKey("famconv:elementClass", classification.value)
        prim.SetCustomDataByKey("famconv:construction", construction)
        geom_path = f"{element_path}/{GEOMETRY_CHILD}"
        if shape.representation == MESH_REPRESENTATION:
            self._write_mesh(stage, geom_path, shape.data)
        elif shape.representation == CURVE_REPRESENTATION:
            self._write_curve(stage, geom_path, shape.data, closed=shape.closed)
        else:
            raise WriterError(f"Unknown shape representation '{shape.representation}'")
        return UsdElement(document=document, prim=prim)

    def _write_mesh(self, stage: Any, path: str, data: Mapping[str, Any]) -> Any:
        mesh = UsdGeom.Mesh.Define(stage, path)
        points = data["points"]
        faces = data["faces"]
        points_attr = Vt.Vec3fArray(len(points))
        for i, (x, y, z) in enumerate(points):
            points_attr[i] = Gf.Vec3f(float(x), float(y), float(z))
        mesh.CreatePointsAttr(points_attr)
        mesh.CreateFaceVertexIndicesAttr(Vt.IntArray([int(i) for i in np.asarray(faces).reshape(-1)]))
        mesh.CreateFaceVertexCountsAttr(Vt.IntArray([3] * int(len(faces))))
        mesh.CreateSubdivisionSchemeAttr(UsdGeom.Tokens.none)
        lo = np.min(points, axis=0)
        hi = np.max(points, axis=0)
        extent = Vt.Vec3fArray(2)
        extent[0] = Gf.Vec3f(float(lo[0]), float(lo[1]), float(lo[2]))
        extent[1] = Gf.Vec3f(float(hi[0]), float(hi[1]), float(hi[2]))
        mesh.CreateExtentAttr(extent)
        return mesh

    def _write_curve(self, stage: Any, path: str, data: Mapping[str, Any], *, closed: bool) -> Any:
        points = data["points"]
        basis = UsdGeom.BasisCurves.Define(stage, path)
        basis.CreateTypeAttr(UsdGeom.Tokens.linear)
        basis.CreateBasisAttr(UsdGeom.Tokens.linear)
        basis.CreateWrapAttr(UsdGeom.Tokens.periodic if closed else UsdGeom.Tokens.nonperiodic)
        basis.CreateCurveVertexCountsAttr(Vt.IntArray([len(points)]))
        pt_array = Vt.Vec3fArray(len(points))
        for idx, (x, y, z) in enumerate(points):
            pt_array[idx] = (float(x), float(y), float(z))
        basis.CreatePointsAttr(pt_array)
        return basis

    # ------------- parameters -------------
    def _parameter_attr_name(self, document: UsdDocument, name: str) -> str:
        existing = document.parameter_tokens.get(name)
        if existing is not None:
            return existing
        used = document.used_names.setdefault("__parameters__", {})
        token = unique_name(sanitize_name(name, fallback="Parameter"), used)
        attr_name = f"{PARAM_NAMESPACE}:{token}"
        document.parameter_tokens[name] = attr_name
        return attr_name

    def set_parameter(self, element: UsdElement, name: str, value: ParameterValue) -> bool:
        if value is None or not name:
            return False
        attr_name = self._parameter_attr_name(element.document, name)
        attr = element.prim.GetAttribute(attr_name)
        if not attr:
            attr = element.prim.CreateAttribute(attr_name, _value_type_for(value))
            attr.SetDisplayName(name)
        try:
            return bool(attr.Set(_coerce_for(attr.GetTypeName(), value)))
        except (TypeError, ValueError) as exc:
            LOG.debug("Parameter %s rejected value %r: %s", name, value, exc)
            return False

    def add_family_parameter(
        self,
        document: UsdDocument,
        name: str,
        value: Optional[ParameterValue],
        *,
        instance: bool = True,
        group: str = "PG_GENERAL",
        declared_type: str = "Text",
    ) -> bool:
        if not name:
            return False
        root = document.root
        attr_name = self._parameter_attr_name(document, name)
        type_name = _value_type_for_declared(declared_type)
        attr = root.GetAttribute(attr_name)
        if not attr:
            attr = root.CreateAttribute(attr_name, type_name)
        attr.SetDisplayName(name)
        attr.SetDisplayGroup(group)
        attr.SetCustomDataByKey("famconv:declaredType", normalize_declared_type(declared_type))
        attr.SetCustomDataByKey("famconv:instance", bool(instance))
        # Type parameters get their values from the familyType variants only;
        # a local opinion on /World would win over every variant.
        if value is None or not instance:
            return True
        try:
            return bool(attr.Set(_coerce_for(attr.GetTypeName(), value)))
        except (TypeError, ValueError) as exc:
            LOG.debug("Family parameter %s rejected default %r: %s", name, value, exc)
            return False

    def create_family_type(self, document: UsdDocument, type_name: str, values: Mapping[str, ParameterValue]) -> bool:
        root = document.root
        vset = root.GetVariantSets().AddVariantSet(TYPE_VARIANT_SET)
        used = document.used_names.setdefault("__types__", {})
        token = unique_name(sanitize_name(type_name, fallback="Default"), used)
        if not vset.AddVariant(token):
            return False
        root.SetCustomDataByKey(f"famconv:typeNames:{token}", type_name)
        vset.SetVariantSelection(token)
        ok = True
        with vset.GetVariantEditContext():
            for name, value in values.items():
                if value is None:
                    continue
                attr_name = self._parameter_attr_name(document, name)
                attr = root.GetAttribute(attr_name)
                if not attr:
                    attr = root.CreateAttribute(attr_name, _value_type_for(value))
                    attr.SetDisplayName(name)
                try:
                    ok = bool(attr.Set(_coerce_for(attr.GetTypeName(), value))) and ok
                except (TypeError, ValueError) as exc:
                    LOG.debug("Type %s rejected %s=%r: %s", type_name, name, value, exc)
                    ok = False
        for name, value in values.items():
            if value is not None and _has_local_default(root, self._parameter_attr_name(document, name)):
                LOG.warning("Type %s: %s has a family default that hides the type value", type_name, name)
                ok = False
        document.type_names.append(token)
        root.SetCustomDataByKey(TYPE_ORDER_KEY, Vt.StringArray(document.type_names))
        vset.SetVariantSelection(document.type_names[0])
        return ok

    # ------------- save -------------
    def save(self, document: UsdDocument, path: PathLike, overwrite: bool = True) -> bool:
        target = Path(path)
        if target.exists() and not overwrite:
            LOG.warning("Refusing to overwrite existing file %s", target)
            return False
        layer = document.stage.GetRootLayer()
        layer.customLayerData = {"famconv:documentName": document.name}
        ok = bool(layer.Export(target.as_posix()))
        if ok:
            LOG.info("Wrote %s", target)
        return ok


def _read_parameters(prim: Any) -> Dict[str, ParameterValue]:
    values: Dict[str, ParameterValue] = {}
    for attr in prim.GetAttributes():
        if not attr.GetName().startswith(f"{PARAM_NAMESPACE}:"):
            continue
        name = attr.GetDisplayName() or attr.GetName().split(":")[-1]
        value = _python_value(attr.Get())
        if value is not None:
            values[name] = value
    return values


def _mesh_payload(prim: Any) -> Optional[MeshPayload]:
    mesh = UsdGeom.Mesh(prim)
    points = mesh.GetPointsAttr().Get()
    indices = mesh.GetFaceVertexIndicesAttr().Get()
    counts = mesh.GetFaceVertexCountsAttr().Get()
    if not points or not indices or not counts:
        return None
    faces: List[Tuple[int, int, int]] = []
    cursor = 0
    for count in counts:
        polygon = [int(i) for i in indices[cursor : cursor + count]]
        cursor += count
        for k in range(1, len(polygon) - 1):
            faces.append((polygon[0], polygon[k], polygon[k + 1]))
    if not faces:
        return None
    return MeshPayload.from_arrays([tuple(p) for p in points], faces)


def _curve_payload(prim: Any) -> Optional[CurvePayload]:
    curves = UsdGeom.BasisCurves(prim)
    points = curves.GetPointsAttr().Get()
    if not points or len(points) < 2:
        return None
    closed = curves.GetWrapAttr().Get() == UsdGeom.Tokens.periodic
    return CurvePayload.from_points([tuple(p) for p in points], closed=closed)


def _element_class_of(prim: Any) -> ElementClass:
    raw = prim.GetCustomDataByKey("famconv:elementClass")
    try:
        return ElementClass(str(raw))
    except ValueError:
        return ElementClass.GENERIC_MODEL


def _is_element(prim: Any) -> bool:
    return prim.GetCustomDataByKey("famconv:elementClass") is not None


class UsdFamilyReader:
    """Read documents and families written by :class:`UsdFamilyWriter`.

    Any USD layer can be read; prims carrying no element metadata are
    traversed but only Mesh and BasisCurves prims under element Xforms (or
    bare geometry prims) become nodes.
    """

    extensions = USD_EXTENSIONS

    def can_read(self, path: PathLike) -> bool:
        source = Path(path)
        if source.suffix.lower() not in self.extensions or not source.is_file():
            return False
        try:
            with source.open("rb") as fh:
                head = fh.read(8)
        except OSError:
            return False
        if source.suffix.lower() == ".usda":
            return head.startswith(b"#usda")
        if source.suffix.lower() == ".usdc":
            return head.startswith(b"PXR-USDC")
        return head.startswith(b"#usda") or head.startswith(b"PXR-USDC")

    def open(self, path: PathLike) -> Any:
        stage = Usd.Stage.Open(Path(path).as_posix())
        if stage is None:
            raise ReaderError(f"USD could not open {path}")
        return stage

    def close(self, handle: Any) -> None:
        return None

    def _geometry_node(self, forest: GeometryForest, prim: Any, *, name: str, element_class: ElementClass, parent: Optional[GeometryNode]) -> Optional[GeometryNode]:
        if prim.IsA(UsdGeom.Mesh):
            payload = _mesh_payload(prim)
            kind = GeometryKind.MESH if payload is not None else GeometryKind.UNKNOWN
        elif prim.IsA(UsdGeom.BasisCurves):
            curve = _curve_payload(prim)
            payload = BrepPayload(BrepTopology.CURVE, curve=curve) if curve is not None else None
            kind = GeometryKind.BREP if payload is not None else GeometryKind.UNKNOWN
        else:
            return None
        return forest.create(
            name,
            kind=kind,
            element_class=element_class,
            payload=payload,
            parent=parent,
            source_id=str(prim.GetPath()),
        )

    def _element_node(self, forest: GeometryForest, prim: Any, parent: Optional[GeometryNode]) -> GeometryNode:
        label = str(prim.GetCustomDataByKey("famconv:label") or prim.GetName())
        element_class = _element_class_of(prim)
        geom = prim.GetChild(GEOMETRY_CHILD)
        node = None
        if geom:
            node = self._geometry_node(forest, geom, name=label, element_class=element_class, parent=parent)
        if node is None:
            node = forest.create(label, element_class=element_class, parent=parent, source_id=str(prim.GetPath()))
        node.parameters.update(_read_parameters(prim))
        return node

    def read_nodes(self, handle: Any, forest: GeometryForest, options: ConversionOptions) -> Iterator[GeometryNode]:
        stage = handle
        root = stage.GetDefaultPrim() or stage.GetPseudoRoot()

        def _visit(prim: Any, parent: Optional[GeometryNode]) -> Iterator[GeometryNode]:
            for child in prim.GetChildren():
                if child.GetName() == GEOMETRY_CHILD and _is_element(prim):
                    continue
                if not options.include_hidden_geometry and child.IsA(UsdGeom.Imageable):
                    if UsdGeom.Imageable(child).ComputeVisibility() == UsdGeom.Tokens.invisible:
                        continue
                if _is_element(child):
                    node = self._element_node(forest, child, parent)
                else:
                    node = self._geometry_node(forest, child, name=child.GetName(), element_class=ElementClass.GENERIC_MODEL, parent=parent)
                    if node is not None:
                        node.parameters.update(_read_parameters(child))
                if node is None:
                    yield from _visit(child, parent)
                    continue
                yield node
                yield from _visit(child, node)

        yield from _visit(root, None)

    def read_family(self, handle: Any, path: PathLike, options: ConversionOptions) -> FamilyDefinition:
        stage = handle
        root = stage.GetDefaultPrim()
        if not root:
            raise ReaderError(f"{path} has no default prim")
        forest = GeometryForest()
        for _ in self.read_nodes(stage, forest, options):
            pass

        instance_values: Dict[str, ParameterValue] = {}
        type_parameter_names: List[Tuple[str, str]] = []
        for attr in root.GetAttributes():
            if not attr.GetName().startswith(f"{PARAM_NAMESPACE}:"):
                continue
            display = attr.GetDisplayName() or attr.GetName().split(":")[-1]
            if attr.GetCustomDataByKey("famconv:instance") is False:
                type_parameter_names.append((display, attr.GetName()))
                continue
            value = _python_value(attr.Get())
            if value is not None:
                instance_values[display] = value

        tables: List[Dict[str, Any]] = []
        vsets = root.GetVariantSets()
        if vsets.HasVariantSet(TYPE_VARIANT_SET):
            vset = vsets.GetVariantSet(TYPE_VARIANT_SET)
            display_names = root.GetCustomDataByKey("famconv:typeNames") or {}
            original = vset.GetVariantSelection()
            with Usd.EditContext(stage, stage.GetSessionLayer()):
                for token in _ordered_type_tokens(root, vset):
                    vset.SetVariantSelection(token)
                    table: Dict[str, Any] = {"Type Name": display_names.get(token, token)}
                    for display, attr_name in type_parameter_names:
                        value = _python_value(root.GetAttribute(attr_name).Get())
                        if value is not None:
                            table[display] = value
                    tables.append(table)
                vset.SetVariantSelection(original)

        name = str(root.GetCustomDataByKey("famconv:documentName") or Path(path).stem)
        category = root.GetCustomDataByKey("famconv:category") or dominant_category(forest.walk())
        LOG.debug("Read family '%s' (%s) with %d type table(s)", name, category, len(tables))
        return FamilyDefinition(
            name=name,
            category=str(category),
            template=None,
            parameters=instance_values,
            type_parameters=tables,
            geometry=forest,
        )


__all__ = [
    "PARAM_NAMESPACE",
    "TYPE_ORDER_KEY",
    "TYPE_VARIANT_SET",
    "UsdDocument",
    "UsdElement",
    "UsdFamilyReader",
    "UsdFamilyWriter",
]
