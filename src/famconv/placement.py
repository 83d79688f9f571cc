"""Element construction strategies selected by element class."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from .contracts import TargetDocumentWriter, TargetShape
from .model import ElementClass, GeometryNode

LOG = logging.getLogger(__name__)

DEFAULT_WALL_HEIGHT = 3.0

DIRECT_SHAPE = "direct_shape"
WALL_BY_CURVE = "wall"
FLOOR_BY_PROFILE = "floor"
CEILING_BY_PROFILE = "ceiling"

PlacementStrategy = Callable[[TargetDocumentWriter, Any, GeometryNode], Any]


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool) or value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def place_direct_shape(writer: TargetDocumentWriter, document: Any, node: GeometryNode) -> Any:
    """Generic opaque-shape element; every other strategy falls back to this."""
    return writer.create_element(
        document,
        node.element_class,
        node.target_object,
        name=node.name,
        construction=DIRECT_SHAPE,
    )


def place_wall(writer: TargetDocumentWriter, document: Any, node: GeometryNode) -> Any:
    shape = node.target_object
    if not (isinstance(shape, TargetShape) and shape.is_curve):
        return place_direct_shape(writer, document, node)
    element = writer.create_element(document, ElementClass.WALL, shape, name=node.name, construction=WALL_BY_CURVE)
    height = _number(node.parameters.get("Height"), DEFAULT_WALL_HEIGHT)
    writer.set_parameter(element, "Unconnected Height", height)
    return element


def _place_by_profile(construction: str, element_class: ElementClass) -> PlacementStrategy:
    def _place(writer: TargetDocumentWriter, document: Any, node: GeometryNode) -> Any:
        shape = node.target_object
        if not (isinstance(shape, TargetShape) and shape.is_curve and shape.closed):
            return place_direct_shape(writer, document, node)
        return writer.create_element(document, element_class, shape, name=node.name, construction=construction)

    _place.__name__ = f"place_{construction}"
    return _place


place_floor = _place_by_profile(FLOOR_BY_PROFILE, ElementClass.FLOOR)
place_ceiling = _place_by_profile(CEILING_BY_PROFILE, ElementClass.CEILING)

STRATEGIES: Dict[ElementClass, PlacementStrategy] = {
    ElementClass.WALL: place_wall,
    ElementClass.FLOOR: place_floor,
    ElementClass.CEILING: place_ceiling,
    ElementClass.ROOF: place_direct_shape,
}


def strategy_for(element_class: ElementClass) -> PlacementStrategy:
    return STRATEGIES.get(element_class, place_direct_shape)


__all__ = [
    "DEFAULT_WALL_HEIGHT",
    "DIRECT_SHAPE",
    "PlacementStrategy",
    "STRATEGIES",
    "place_ceiling",
    "place_direct_shape",
    "place_floor",
    "place_wall",
    "strategy_for",
]
