from __future__ import annotations

import importlib
import re
from typing import Any, Dict, Optional

_PXR_CACHE: Dict[str, Any] = {}


def require_pxr_module(name: str) -> Any:
    module = _PXR_CACHE.get(name)
    if module is None:
        module = importlib.import_module(f"pxr.{name}")
        _PXR_CACHE[name] = module
    return module


class _ModuleProxy:
    """Import ``pxr.<name>`` on first attribute access."""

    def __init__(self, module_name: str):
        self._module_name = module_name

    def _module(self):
        return require_pxr_module(self._module_name)

    def __getattr__(self, item: str) -> Any:
        return getattr(self._module(), item)

    def __dir__(self):
        return dir(self._module())


Gf = _ModuleProxy("Gf")
Sdf = _ModuleProxy("Sdf")
Usd = _ModuleProxy("Usd")
UsdGeom = _ModuleProxy("UsdGeom")
Vt = _ModuleProxy("Vt")


def sanitize_name(raw_name: Any, fallback: Optional[str] = None) -> str:
    """Make a USD-legal prim or property token (deterministic)."""
    base = str(raw_name or fallback or "Unnamed")
    base = base.encode("ascii", "ignore").decode("ascii")
    name = re.sub(r"[^A-Za-z0-9_]", "_", base)
    name = re.sub(r"_+", "_", name).strip("_")
    if not name:
        name = "Unnamed"
    if name[0].isdigit():
        name = "_" + name
    return name[:63]


def unique_name(base: str, used: Dict[str, int]) -> str:
    """Append an incrementing suffix when ``base`` was handed out before."""
    count = used.get(base, 0)
    used[base] = count + 1
    if count == 0:
        return base
    return f"{base}_{count}"


__all__ = [
    "Gf",
    "Sdf",
    "Usd",
    "UsdGeom",
    "Vt",
    "require_pxr_module",
    "sanitize_name",
    "unique_name",
]
