"""IFC source reader built on ifcopenshell.

Every ``IfcProduct`` with a representation becomes one BRep node whose payload
tessellates lazily through ``ifcopenshell.geom``. Aggregated parts hang under
their assembly when the assembly has geometry of its own; everything else is a
root. Property sets and quantities (including those of the type object) are
flattened into the node's parameters.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set

import numpy as np

import ifcopenshell
import ifcopenshell.geom
import ifcopenshell.util.element

from .classification import classify_ifc_class, dominant_category
from .contracts import KernelError, ReaderError
from .family_types import TYPE_NAME_KEY
from .kernel import BrepPayload, BrepTopology, MeshPayload
from .model import ConversionOptions, FamilyDefinition, GeometryForest, GeometryKind, GeometryNode, PathLike

LOG = logging.getLogger(__name__)

IFC_SIGNATURE = b"ISO-10303-21"
# Products that carry geometry but are not building elements.
_SKIPPED_CLASSES = ("IfcOpeningElement", "IfcSpace", "IfcSpatialStructureElement", "IfcAnnotation", "IfcGrid")
_HEADER_ATTRIBUTES = ("GlobalId", "Name", "Description", "ObjectType", "Tag", "PredefinedType")


def _ifc_value_to_python(value):
    if value is None: return None
    if hasattr(value, "wrappedValue"): return _ifc_value_to_python(value.wrappedValue)
    if isinstance(value, (list, tuple)): return ", ".join(str(_ifc_value_to_python(v)) for v in value)
    if isinstance(value, (int, float, bool, str)): return value
    return str(value)


def _property_value(prop):
    if prop.is_a("IfcPropertySingleValue"):
        return _ifc_value_to_python(getattr(prop, "NominalValue", None))
    if prop.is_a("IfcPropertyEnumeratedValue"):
        return _ifc_value_to_python(list(getattr(prop, "EnumerationValues", None) or []))
    if prop.is_a("IfcPropertyListValue"):
        return _ifc_value_to_python(list(getattr(prop, "ListValues", None) or []))
    if prop.is_a("IfcPropertyReferenceValue"):
        ref = getattr(prop, "PropertyReference", None)
        return None if ref is None else (getattr(ref, "Name", None) or str(ref))
    return None


def _quantity_value(quantity):
    for attr in ("LengthValue", "AreaValue", "VolumeValue", "CountValue", "WeightValue", "TimeValue"):
        if hasattr(quantity, attr):
            return _ifc_value_to_python(getattr(quantity, attr))
    return None


def _definition_values(definition) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if definition.is_a("IfcPropertySet"):
        for prop in getattr(definition, "HasProperties", None) or []:
            if prop.is_a("IfcComplexProperty"):
                for sub in getattr(prop, "HasProperties", None) or []:
                    values[f"{prop.Name}.{sub.Name}"] = _property_value(sub)
            else:
                values[prop.Name] = _property_value(prop)
    elif definition.is_a("IfcElementQuantity"):
        for qty in getattr(definition, "Quantities", None) or []:
            values[qty.Name] = _quantity_value(qty)
    return {k: v for k, v in values.items() if v is not None}


def _iter_definitions(product, *, include_type: bool = True):
    for rel in getattr(product, "IsDefinedBy", None) or []:
        definition = getattr(rel, "RelatingPropertyDefinition", None)
        if definition is not None:
            yield definition
    if not include_type:
        return
    type_obj = ifcopenshell.util.element.get_type(product)
    if type_obj is not None:
        yield from getattr(type_obj, "HasPropertySets", None) or []


def flatten_properties(definitions) -> Dict[str, Any]:
    """Merge property sets into one table.

    Plain property names are used; a name already taken by an earlier set with a
    different value is qualified as ``"<set>.<name>"``.
    """
    values: Dict[str, Any] = {}
    for definition in definitions:
        set_name = getattr(definition, "Name", None) or "Unnamed"
        for name, value in _definition_values(definition).items():
            if name in values and values[name] != value:
                values[f"{set_name}.{name}"] = value
            else:
                values.setdefault(name, value)
    return values


def _entity_label(entity) -> str:
    for attr in ("Name", "LongName", "Description"):
        value = getattr(entity, attr, None)
        if isinstance(value, str) and value.strip(): return value.strip()
    label = entity.is_a() if hasattr(entity, "is_a") else "IfcEntity"
    try: step_id = entity.id()
    except Exception: step_id = None
    return f"{label}_{step_id}" if step_id is not None else label


def _spatial_container(element):
    for rel in getattr(element, "ContainedInStructure", None) or []:
        parent = getattr(rel, "RelatingStructure", None)
        if parent is not None: return parent
    return None


def _aggregate_parent(element):
    for rel in getattr(element, "Decomposes", None) or []:
        parent = getattr(rel, "RelatingObject", None)
        if parent is not None: return parent
    return None


def _to_bool(value):
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().upper()
    if text in {"F", "FALSE", "NO", "0"}:
        return False
    if text in {"T", "TRUE", "YES", "1"}:
        return True
    return None


def _layer_is_hidden(layer) -> bool:
    for attr in ("LayerOn", "LayerVisible", "LayerVisibility"):
        if _to_bool(getattr(layer, attr, None)) is False:
            return True
    for attr in ("LayerFrozen", "LayerBlocked"):
        if _to_bool(getattr(layer, attr, None)) is True:
            return True
    return False


def _entity_on_hidden_layer(entity) -> bool:
    """True when the product, its representation or any item sits on a hidden layer."""
    candidates: List[Any] = [entity]
    rep = getattr(entity, "Representation", None)
    if rep is not None:
        candidates.append(rep)
        for representation in getattr(rep, "Representations", None) or []:
            candidates.append(representation)
            candidates.extend(getattr(representation, "Items", None) or [])
    for obj in candidates:
        for layer in getattr(obj, "LayerAssignments", None) or []:
            if layer is not None and _layer_is_hidden(layer):
                return True
    return False


def triangulated_to_mesh(shape) -> MeshPayload:
    """Normalise an ifcopenshell triangulation into a :class:`MeshPayload`."""
    g = getattr(shape, "geometry", shape)
    verts = np.array(g.verts, dtype=float).reshape(-1, 3)
    faces = np.array(g.faces, dtype=int).reshape(-1, 3)
    normals = getattr(g, "normals", None)
    return MeshPayload.from_arrays(verts, faces, normals if normals else None)


class IfcSourceReader:
    """:class:`~famconv.contracts.SourceFileReader` for IFC2X3/IFC4 files."""

    extensions = (".ifc",)

    def __init__(self, *, use_world_coords: bool = True) -> None:
        self.use_world_coords = use_world_coords
        self._settings = None

    def _geom_settings(self):
        if self._settings is None:
            settings = ifcopenshell.geom.settings()
            for key in ("use-world-coords", "USE_WORLD_COORDS"):
                try:
                    settings.set(key, self.use_world_coords)
                    break
                except Exception:
                    continue
            self._settings = settings
        return self._settings

    def can_read(self, path: PathLike) -> bool:
        source = Path(path)
        if source.suffix.lower() not in self.extensions or not source.is_file():
            return False
        try:
            with source.open("rb") as fh:
                head = fh.read(64)
        except OSError:
            return False
        return head.lstrip().startswith(IFC_SIGNATURE)

    def open(self, path: PathLike) -> Any:
        try:
            return ifcopenshell.open(str(path))
        except Exception as exc:
            raise ReaderError(f"ifcopenshell could not open {path}: {exc}") from exc

    def close(self, handle: Any) -> None:
        return None

    def _tessellate(self, product, tolerance: float) -> MeshPayload:
        try:
            shape = ifcopenshell.geom.create_shape(self._geom_settings(), product)
        except Exception as exc:
            raise KernelError(f"ifcopenshell could not triangulate {product.is_a()} #{product.id()}: {exc}") from exc
        return triangulated_to_mesh(shape)

    def _accepts(self, product, options: ConversionOptions) -> bool:
        if getattr(product, "Representation", None) is None:
            return False
        if any(product.is_a(cls) for cls in _SKIPPED_CLASSES):
            return False
        if not options.include_hidden_geometry and _entity_on_hidden_layer(product):
            LOG.debug("Skipping %s on a hidden layer", _entity_label(product))
            return False
        return True

    def _parameters(self, product) -> Dict[str, Any]:
        values = flatten_properties(_iter_definitions(product))
        values["IfcClass"] = product.is_a()
        for attr in _HEADER_ATTRIBUTES:
            value = _ifc_value_to_python(getattr(product, attr, None))
            if value not in (None, ""):
                values.setdefault(attr, value)
        container = _spatial_container(product)
        if container is not None:
            values.setdefault("Level", _entity_label(container))
        material = ifcopenshell.util.element.get_material(product, should_inherit=True)
        if material is not None:
            name = getattr(material, "Name", None) or getattr(material, "LayerSetName", None)
            if name:
                values.setdefault("Material", str(name))
        return values

    def _node_for(self, product, forest: GeometryForest, parent: Optional[GeometryNode]) -> GeometryNode:
        payload = BrepPayload(BrepTopology.SOLID, data=product, tessellator=self._tessellate)
        return forest.create(
            _entity_label(product),
            kind=GeometryKind.BREP,
            element_class=classify_ifc_class(product.is_a(), getattr(product, "PredefinedType", None)),
            payload=payload,
            parameters=self._parameters(product),
            parent=parent,
            source_id=getattr(product, "GlobalId", None) or str(product.id()),
        )

    def read_nodes(self, handle: Any, forest: GeometryForest, options: ConversionOptions) -> Iterator[GeometryNode]:
        products = [p for p in handle.by_type("IfcProduct") or [] if self._accepts(p, options)]
        accepted: Set[int] = {p.id() for p in products}
        created: Dict[int, GeometryNode] = {}
        LOG.debug("%d IFC product(s) with geometry", len(products))

        def _owner(product):
            seen: Set[int] = set()
            current = _aggregate_parent(product)
            while current is not None and current.id() not in seen:
                if current.id() in accepted:
                    return current
                seen.add(current.id())
                current = _aggregate_parent(current)
            return None

        def _ensure(product) -> Iterator[GeometryNode]:
            if product.id() in created:
                return
            owner = _owner(product)
            if owner is not None and owner.id() not in created:
                yield from _ensure(owner)
            node = self._node_for(product, forest, created.get(owner.id()) if owner is not None else None)
            created[product.id()] = node
            yield node

        for product in products:
            yield from _ensure(product)

    def read_family(self, handle: Any, path: PathLike, options: ConversionOptions) -> FamilyDefinition:
        forest = GeometryForest()
        for _ in self.read_nodes(handle, forest, options):
            pass
        tables: List[Dict[str, Any]] = []
        for type_obj in handle.by_type("IfcTypeObject") or []:
            table: Dict[str, Any] = {TYPE_NAME_KEY: _entity_label(type_obj)}
            table.update(flatten_properties(getattr(type_obj, "HasPropertySets", None) or []))
            tables.append(table)
        parameters: Dict[str, Any] = {}
        projects = handle.by_type("IfcProject") or []
        if projects:
            parameters["Project"] = _entity_label(projects[0])
        schema = getattr(handle, "schema", None)
        if schema:
            parameters["IfcSchema"] = str(schema)
        category = dominant_category(forest.walk())
        LOG.info("IFC family from %s: %d node(s), %d type(s), category %s", Path(path).name, len(forest), len(tables), category)
        return FamilyDefinition(
            name=Path(path).stem,
            category=category,
            parameters=parameters,
            type_parameters=tables,
            geometry=forest,
        )


__all__ = [
    "IFC_SIGNATURE",
    "IfcSourceReader",
    "flatten_properties",
    "triangulated_to_mesh",
]
