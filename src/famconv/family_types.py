from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

LOG = logging.getLogger(__name__)

TYPE_NAME_KEY = "Type Name"
DEFAULT_TYPE_NAME = "Default"


def _type_name_of(table: Mapping[str, Any]) -> Optional[str]:
    raw = table.get(TYPE_NAME_KEY)
    if raw is None:
        return None
    name = str(raw).strip()
    return name or None


class FamilyTypeBuilder:
    """Turn raw type-parameter tables into named type variants.

    * No tables at all gives a single ``Default`` variant.
    * A repeated name keeps the position of its first occurrence; later
      tables overwrite overlapping keys.
    * A table without a ``Type Name`` becomes ``Default`` when that name is
      free, otherwise ``Default 2``, ``Default 3`` and so on.
    """

    def __init__(self, default_name: str = DEFAULT_TYPE_NAME) -> None:
        self.default_name = default_name

    def _unused_default(self, variants: Mapping[str, Dict[str, Any]]) -> str:
        if self.default_name not in variants:
            return self.default_name
        index = 2
        while f"{self.default_name} {index}" in variants:
            index += 1
        return f"{self.default_name} {index}"

    def build(self, tables: Optional[Iterable[Optional[Mapping[str, Any]]]]) -> List[Dict[str, Any]]:
        variants: Dict[str, Dict[str, Any]] = {}
        for table in tables or ():
            if table is None:
                continue
            name = _type_name_of(table)
            if name is None:
                name = self._unused_default(variants)
                LOG.debug("Type table without a name assigned '%s'", name)
            values = {k: v for k, v in table.items() if k != TYPE_NAME_KEY}
            existing = variants.get(name)
            if existing is None:
                variants[name] = {TYPE_NAME_KEY: name, **values}
            else:
                existing.update(values)
        if not variants:
            return [{TYPE_NAME_KEY: self.default_name}]
        return list(variants.values())


def build_family_types(tables: Optional[Iterable[Optional[Mapping[str, Any]]]]) -> List[Dict[str, Any]]:
    return FamilyTypeBuilder().build(tables)


def type_values(variant: Mapping[str, Any]) -> Dict[str, Any]:
    """The parameter values of a variant without its name."""
    return {k: v for k, v in variant.items() if k != TYPE_NAME_KEY}


__all__ = [
    "DEFAULT_TYPE_NAME",
    "FamilyTypeBuilder",
    "TYPE_NAME_KEY",
    "build_family_types",
    "type_values",
]
