"""Parameter name/value normalization between source and target vocabularies."""

from __future__ import annotations

import logging
import numbers
from datetime import date
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .model import ConversionOptions, ElementClass, ParameterSet, ParameterValue

LOG = logging.getLogger(__name__)

FORBIDDEN_CHARACTERS = '<>"/\\:*?|'
DEFAULT_PARAMETER_NAME = "Parameter"

# Common IFC property names and their family-parameter equivalents.
BUILTIN_NAME_MAP: Dict[str, str] = {
    "NominalHeight": "Height",
    "NominalWidth": "Width",
    "NominalLength": "Length",
    "NominalThickness": "Thickness",
    "OverallHeight": "Height",
    "OverallWidth": "Width",
    "Reference": "Type Mark",
    "FireRating": "Fire Rating",
    "AcousticRating": "Acoustic Rating",
    "ThermalTransmittance": "Thermal Transmittance",
    "LoadBearing": "Load Bearing",
    "IsExternal": "Is External",
}

TEXT = "Text"
INTEGER = "Integer"
NUMBER = "Number"
LENGTH = "Length"
AREA = "Area"
VOLUME = "Volume"
ANGLE = "Angle"
YES_NO = "YesNo"

_NUMERIC_TYPES = {NUMBER, LENGTH, AREA, VOLUME, ANGLE}
_DECLARED_TYPES = {t.lower(): t for t in (TEXT, INTEGER, YES_NO, *_NUMERIC_TYPES)}

_GROUP_HINTS = (
    ("PG_GEOMETRY", ("Width", "Length", "Height")),
    ("PG_MATERIALS", ("Material", "Finish")),
    ("PG_COST", ("Cost", "Price")),
    ("PG_IDENTITY_DATA", ("Manufacturer", "Model")),
)
DEFAULT_GROUP = "PG_GENERAL"

_CLASS_ATTRIBUTE_KEYS: Dict[ElementClass, tuple[str, ...]] = {
    ElementClass.WALL: ("Height", "Width"),
    ElementClass.FLOOR: ("Thickness",),
    ElementClass.CEILING: ("Height",),
    ElementClass.DOOR: ("Width", "Height"),
    ElementClass.WINDOW: ("Width", "Height", "SillHeight"),
}


def is_legal_name(name: str) -> bool:
    return bool(name) and not any(ch in FORBIDDEN_CHARACTERS for ch in name)


def sanitize_parameter_name(name: Optional[str]) -> str:
    if not name:
        return DEFAULT_PARAMETER_NAME
    return "".join("_" if ch in FORBIDDEN_CHARACTERS else ch for ch in name)


def _to_bool(value: Any) -> Optional[bool]:
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


def normalize_declared_type(declared_type: Optional[str]) -> str:
    if not declared_type:
        return TEXT
    return _DECLARED_TYPES.get(str(declared_type).strip().lower(), TEXT)


def declared_type_for(value: Any) -> str:
    """Pick a declared type for a plain value when creating a family parameter."""
    if isinstance(value, bool):
        return YES_NO
    if isinstance(value, numbers.Integral):
        return INTEGER
    if isinstance(value, numbers.Real):
        return LENGTH
    return TEXT


def parameter_group(name: str) -> str:
    """Group a family parameter by name hints (geometry, materials, cost, identity)."""
    if not name:
        return DEFAULT_GROUP
    for group, hints in _GROUP_HINTS:
        if any(hint in name for hint in hints):
            return group
    return DEFAULT_GROUP


class ParameterMapper:
    """Normalize parameter names and values for the target document.

    Names are looked up in the per-run rename table first, then in this
    mapper's own table. A name without forbidden characters passes through
    unchanged; otherwise every forbidden character becomes ``_``.
    """

    def __init__(self, name_map: Optional[Mapping[str, str]] = None, *, include_builtin: bool = True) -> None:
        table: Dict[str, str] = dict(BUILTIN_NAME_MAP) if include_builtin else {}
        if name_map:
            table.update(name_map)
        self.name_map = table

    def map_name(self, source_name: str, options: Optional[ConversionOptions] = None) -> str:
        run_map = options.parameter_mapping if options is not None else None
        if run_map and source_name in run_map:
            return run_map[source_name]
        if source_name in self.name_map:
            return self.name_map[source_name]
        if is_legal_name(source_name):
            return source_name
        return sanitize_parameter_name(source_name)

    def map_value(self, raw: Any) -> Optional[ParameterValue]:
        if raw is None:
            return None
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, Enum):
            return str(raw.name)
        if isinstance(raw, str):
            return raw
        if isinstance(raw, numbers.Integral):
            return int(raw)
        if isinstance(raw, numbers.Real):
            return float(raw)
        if isinstance(raw, date):
            return raw.strftime("%Y-%m-%d")
        return str(raw)

    def convert_by_declared_type(self, value: Any, declared_type: Optional[str]) -> Optional[ParameterValue]:
        """Coerce ``value`` to ``declared_type``; unparsable input becomes a zero value."""
        if value is None:
            return None
        kind = normalize_declared_type(declared_type)
        text = value if isinstance(value, str) else self.map_value(value)
        if kind == TEXT:
            return str(text)
        if kind == INTEGER:
            if isinstance(value, bool):
                return 0
            if isinstance(value, numbers.Integral):
                return int(value)
            if isinstance(value, numbers.Real) and float(value).is_integer():
                return int(value)
            try:
                return int(str(text).strip())
            except ValueError:
                return 0
        if kind in _NUMERIC_TYPES:
            if isinstance(value, bool):
                return 0.0
            if isinstance(value, numbers.Real):
                return float(value)
            try:
                return float(str(text).strip())
            except ValueError:
                return 0.0
        parsed = _to_bool(value)
        return bool(parsed) if parsed is not None else False

    def map_parameters(
        self,
        parameters: Optional[Mapping[str, Any]],
        options: Optional[ConversionOptions] = None,
        *,
        declared_types: Optional[Mapping[str, str]] = None,
    ) -> ParameterSet:
        """Normalize a whole parameter set. One bad entry never fails the set."""
        result: ParameterSet = {}
        if not parameters:
            return result
        for source_name, raw in parameters.items():
            try:
                name = self.map_name(str(source_name), options)
                if declared_types and source_name in declared_types:
                    value = self.convert_by_declared_type(raw, declared_types[source_name])
                else:
                    value = self.map_value(raw)
            except Exception as exc:
                LOG.warning("Skipping parameter %r: %s", source_name, exc)
                continue
            if name and value is not None:
                result[name] = value
        return result

    def convert_attributes(
        self,
        source: Optional[Mapping[str, Any]],
        element_class: ElementClass,
        options: Optional[ConversionOptions] = None,
    ) -> ParameterSet:
        """Pick display attributes plus the class-specific dimension keys."""
        result: ParameterSet = {}
        if not source:
            return result
        if "Material" in source:
            result["Material"] = str(source["Material"] or "") or "Default"
        if source.get("Color") is not None:
            color = self.map_value(source["Color"])
            if color is not None:
                result["Color"] = color
        if "LineStyle" in source:
            result["LineStyle"] = str(source["LineStyle"] or "") or "Thin Lines"
        if "FillPattern" in source:
            result["FillPattern"] = str(source["FillPattern"] or "") or "Solid"
        for key in _CLASS_ATTRIBUTE_KEYS.get(element_class, ()):
            if key in source:
                value = self.map_value(source[key])
                if value is not None:
                    result[key] = value
        return result


__all__ = [
    "ANGLE",
    "AREA",
    "BUILTIN_NAME_MAP",
    "DEFAULT_GROUP",
    "FORBIDDEN_CHARACTERS",
    "INTEGER",
    "LENGTH",
    "NUMBER",
    "ParameterMapper",
    "TEXT",
    "VOLUME",
    "YES_NO",
    "declared_type_for",
    "is_legal_name",
    "normalize_declared_type",
    "parameter_group",
    "sanitize_parameter_name",
]
