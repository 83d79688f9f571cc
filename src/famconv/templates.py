"""Family template discovery."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .model import PathLike

LOG = logging.getLogger(__name__)

TEMPLATE_ROOT_ENV = "FAMCONV_TEMPLATE_ROOT"
DEFAULT_TEMPLATE_STEM = "Generic Model"

_TEMPLATE_BY_CATEGORY: Dict[str, str] = {
    "Walls": "Wall",
    "Floors": "Floor",
    "Doors": "Door",
    "Windows": "Window",
    "Furniture": "Furniture",
}

_SUBDIRECTORIES = (
    Path("Family Templates") / "English",
    Path("Templates") / "English",
)


def template_stem_for(category: Optional[str]) -> str:
    return _TEMPLATE_BY_CATEGORY.get((category or "").strip(), DEFAULT_TEMPLATE_STEM)


def template_roots(extra_roots: Optional[Sequence[PathLike]] = None) -> List[Path]:
    """Explicit roots first, then every entry of ``FAMCONV_TEMPLATE_ROOT``."""
    roots: List[Path] = [Path(r) for r in extra_roots or ()]
    env_value = os.environ.get(TEMPLATE_ROOT_ENV, "").strip()
    if env_value:
        roots.extend(Path(p) for p in env_value.split(os.pathsep) if p.strip())
    return roots


def _search_dirs(root: Path, target_version: Optional[str]) -> Iterable[Path]:
    if target_version:
        for sub in _SUBDIRECTORIES:
            yield root / str(target_version) / sub
        yield root / str(target_version)
    for sub in _SUBDIRECTORIES:
        yield root / sub
    yield root


def find_family_template(
    category: Optional[str],
    target_version: Optional[str],
    *,
    suffix: str,
    roots: Optional[Sequence[PathLike]] = None,
) -> Optional[Path]:
    """Locate the template file for ``category``; ``None`` when nothing matches."""
    filename = f"{template_stem_for(category)}{suffix}"
    for root in template_roots(roots):
        for directory in _search_dirs(root, target_version):
            candidate = directory / filename
            if candidate.is_file():
                LOG.debug("Using family template %s for category %s", candidate, category)
                return candidate
    return None


def available_templates(
    target_version: Optional[str],
    *,
    suffix: str,
    roots: Optional[Sequence[PathLike]] = None,
) -> Dict[str, Path]:
    """Map template stem to path for every template found; first hit wins."""
    found: Dict[str, Path] = {}
    for root in template_roots(roots):
        for directory in _search_dirs(root, target_version):
            if not directory.is_dir():
                continue
            for entry in sorted(directory.glob(f"*{suffix}")):
                found.setdefault(entry.stem, entry)
    return found


__all__ = [
    "DEFAULT_TEMPLATE_STEM",
    "TEMPLATE_ROOT_ENV",
    "available_templates",
    "find_family_template",
    "template_roots",
    "template_stem_for",
]
