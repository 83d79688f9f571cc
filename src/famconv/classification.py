from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, Optional, Tuple

from .model import ElementClass, GeometryNode

# Checked in order; the first hint found in the lower-cased name wins.
_NAME_HINTS: Tuple[Tuple[str, ElementClass], ...] = (
    ("wall", ElementClass.WALL),
    ("floor", ElementClass.FLOOR),
    ("ceiling", ElementClass.CEILING),
    ("roof", ElementClass.ROOF),
    ("column", ElementClass.COLUMN),
    ("beam", ElementClass.BEAM),
    ("door", ElementClass.DOOR),
    ("window", ElementClass.WINDOW),
    ("furniture", ElementClass.FURNITURE),
)

_IFC_CLASSES: Dict[str, ElementClass] = {
    "IfcWall": ElementClass.WALL,
    "IfcWallStandardCase": ElementClass.WALL,
    "IfcWallElementedCase": ElementClass.WALL,
    "IfcCurtainWall": ElementClass.WALL,
    "IfcSlab": ElementClass.FLOOR,
    "IfcSlabStandardCase": ElementClass.FLOOR,
    "IfcCovering": ElementClass.CEILING,
    "IfcRoof": ElementClass.ROOF,
    "IfcColumn": ElementClass.COLUMN,
    "IfcColumnStandardCase": ElementClass.COLUMN,
    "IfcBeam": ElementClass.BEAM,
    "IfcBeamStandardCase": ElementClass.BEAM,
    "IfcMember": ElementClass.BEAM,
    "IfcDoor": ElementClass.DOOR,
    "IfcDoorStandardCase": ElementClass.DOOR,
    "IfcWindow": ElementClass.WINDOW,
    "IfcWindowStandardCase": ElementClass.WINDOW,
    "IfcFurniture": ElementClass.FURNITURE,
    "IfcFurnishingElement": ElementClass.FURNITURE,
    "IfcSystemFurnitureElement": ElementClass.FURNITURE,
    "IfcFlowTerminal": ElementClass.MEP_COMPONENT,
    "IfcFlowSegment": ElementClass.MEP_COMPONENT,
    "IfcFlowFitting": ElementClass.MEP_COMPONENT,
    "IfcFlowController": ElementClass.MEP_COMPONENT,
    "IfcFlowMovingDevice": ElementClass.MEP_COMPONENT,
    "IfcEnergyConversionDevice": ElementClass.MEP_COMPONENT,
    "IfcDistributionElement": ElementClass.MEP_COMPONENT,
    "IfcSite": ElementClass.SITE,
    "IfcGeographicElement": ElementClass.SITE,
    "IfcBuildingElementProxy": ElementClass.GENERIC_MODEL,
}

_PREDEFINED_OVERRIDES: Dict[Tuple[str, str], ElementClass] = {
    ("IfcSlab", "ROOF"): ElementClass.ROOF,
    ("IfcCovering", "FLOORING"): ElementClass.FLOOR,
    ("IfcCovering", "ROOFING"): ElementClass.ROOF,
}

CATEGORY_BY_CLASS: Dict[ElementClass, str] = {
    ElementClass.WALL: "Walls",
    ElementClass.FLOOR: "Floors",
    ElementClass.CEILING: "Ceilings",
    ElementClass.ROOF: "Roofs",
    ElementClass.COLUMN: "Columns",
    ElementClass.BEAM: "Structural Framing",
    ElementClass.DOOR: "Doors",
    ElementClass.WINDOW: "Windows",
    ElementClass.FURNITURE: "Furniture",
    ElementClass.MEP_COMPONENT: "Mechanical Equipment",
    ElementClass.SITE: "Site",
    ElementClass.GENERIC_MODEL: "Generic Models",
    ElementClass.OTHER: "Generic Models",
}
DEFAULT_CATEGORY = CATEGORY_BY_CLASS[ElementClass.GENERIC_MODEL]


def classify_by_name(name: Optional[str], current: ElementClass = ElementClass.GENERIC_MODEL) -> ElementClass:
    """Guess a class from name hints; an explicit non-generic class is kept."""
    if current is not ElementClass.GENERIC_MODEL:
        return current
    lowered = (name or "").lower()
    for hint, element_class in _NAME_HINTS:
        if hint in lowered:
            return element_class
    return ElementClass.GENERIC_MODEL


def classify_ifc_class(entity_type: str, predefined_type: Optional[str] = None) -> ElementClass:
    if predefined_type:
        override = _PREDEFINED_OVERRIDES.get((entity_type, str(predefined_type).upper()))
        if override is not None:
            return override
    return _IFC_CLASSES.get(entity_type, ElementClass.GENERIC_MODEL)


def category_for(element_class: ElementClass) -> str:
    return CATEGORY_BY_CLASS.get(element_class, DEFAULT_CATEGORY)


def dominant_category(nodes: Iterable[GeometryNode]) -> str:
    """Category of the most common element class (generic models when empty)."""
    counts = Counter(node.element_class for node in nodes)
    if not counts:
        return DEFAULT_CATEGORY
    element_class, _ = counts.most_common(1)[0]
    return category_for(element_class)


def class_for_category(category: Optional[str]) -> ElementClass:
    if not category:
        return ElementClass.GENERIC_MODEL
    wanted = category.strip().lower()
    for element_class, name in CATEGORY_BY_CLASS.items():
        if name.lower() == wanted:
            return element_class
    return classify_by_name(category)


__all__ = [
    "CATEGORY_BY_CLASS",
    "DEFAULT_CATEGORY",
    "category_for",
    "class_for_category",
    "classify_by_name",
    "classify_ifc_class",
    "dominant_category",
]
