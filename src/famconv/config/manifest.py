from __future__ import annotations

import fnmatch
import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml

from ..model import ConversionOptions

log = logging.getLogger(__name__)

_OPTION_FIELDS = {f.name: f for f in fields(ConversionOptions)}
_BOOL_OPTIONS = {
    "merge_coincident_vertices",
    "simplify_mesh",
    "include_hidden_geometry",
    "auto_determine_family_type",
    "detailed_progress",
    "create_family",
    "require_family_geometry",
    "overwrite",
}
_FLOAT_OPTIONS = {"tolerance"}
_TEXT_OPTIONS = {"target_version", "output_path", "template_path", "family_name", "family_category"}


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"true", "yes", "on", "1"}:
        return True
    if text in {"false", "no", "off", "0"}:
        return False
    raise ValueError(f"Manifest option '{key}' expects a boolean, got {value!r}")


def _coerce_option(key: str, value: Any) -> Any:
    if key in _BOOL_OPTIONS:
        return _coerce_bool(key, value)
    if key in _FLOAT_OPTIONS:
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Manifest option '{key}' expects a number, got {value!r}") from exc
        if number <= 0:
            raise ValueError(f"Manifest option '{key}' must be positive, got {number}")
        return number
    if key in _TEXT_OPTIONS:
        return None if value is None else str(value)
    raise ValueError(f"Unsupported manifest option: {key}")


def _parse_defaults(data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for key, value in (data or {}).items():
        normalized = str(key).strip().replace("-", "_")
        if normalized == "parameter_mapping":
            continue
        if normalized not in _OPTION_FIELDS:
            log.warning("Ignoring unknown manifest default '%s'", key)
            continue
        overrides[normalized] = _coerce_option(normalized, value)
    return overrides


def _parse_mapping_table(data: Any) -> Dict[str, str]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError("parameter_mapping must be a mapping of source name to target name")
    table: Dict[str, str] = {}
    for source, target in data.items():
        if target is None or not str(target).strip():
            log.warning("Manifest parameter mapping for '%s' has no target; skipping", source)
            continue
        table[str(source)] = str(target)
    return table


@dataclass
class FamilyRule:
    name: Optional[str] = None
    pattern: Optional[str] = None
    family_name: Optional[str] = None
    category: Optional[str] = None
    template: Optional[str] = None
    create_family: Optional[bool] = None

    def matches(self, path: Path) -> bool:
        target_name = path.name.lower()
        target_stem = path.stem.lower()
        if self.name:
            compare = self.name.lower()
            if compare == target_name or compare == target_stem:
                return True
        if self.pattern:
            pat = self.pattern.lower()
            if fnmatch.fnmatch(target_name, pat) or fnmatch.fnmatch(target_stem, pat):
                return True
        return False


@dataclass
class ResolvedFamilyPlan:
    source_path: Path
    family_name: Optional[str] = None
    category: Optional[str] = None
    template: Optional[str] = None
    create_family: Optional[bool] = None
    applied_rules: List[FamilyRule] = field(default_factory=list)


class ConversionManifest:
    """Run defaults, a parameter rename table and per-file family rules."""

    def __init__(
        self,
        *,
        defaults: Optional[Dict[str, Any]] = None,
        parameter_mapping: Optional[Dict[str, str]] = None,
        family_rules: Optional[List[FamilyRule]] = None,
    ) -> None:
        self.defaults = dict(defaults or {})
        self.parameter_mapping = dict(parameter_mapping or {})
        self.family_rules = list(family_rules or [])

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ConversionManifest":
        defaults = _parse_defaults(data.get("defaults"))
        mapping = _parse_mapping_table(data.get("parameter_mapping"))

        rules: List[FamilyRule] = []
        for entry in data.get("families", []) or []:
            if not isinstance(entry, Mapping):
                log.warning("Manifest family entry is not a mapping; skipping: %s", entry)
                continue
            if not entry.get("name") and not entry.get("pattern"):
                log.warning("Manifest family entry needs a name or pattern; skipping: %s", entry)
                continue
            create = entry.get("create_family")
            rules.append(
                FamilyRule(
                    name=entry.get("name"),
                    pattern=entry.get("pattern"),
                    family_name=entry.get("family_name"),
                    category=entry.get("category"),
                    template=entry.get("template"),
                    create_family=None if create is None else _coerce_bool("create_family", create),
                )
            )
        return cls(defaults=defaults, parameter_mapping=mapping, family_rules=rules)

    @classmethod
    def from_file(cls, path: Path) -> "ConversionManifest":
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        data = cls._load_data_from_text(text, suffix=path.suffix)
        return cls.from_mapping(data)

    @classmethod
    def from_text(cls, text: str, *, suffix: str) -> "ConversionManifest":
        data = cls._load_data_from_text(text, suffix=suffix)
        return cls.from_mapping(data)

    def resolve_for_path(self, source_path: Path) -> ResolvedFamilyPlan:
        """Fold every matching rule in order; later rules override earlier ones."""
        source_path = Path(source_path)
        plan = ResolvedFamilyPlan(
            source_path=source_path,
            family_name=self.defaults.get("family_name"),
            category=self.defaults.get("family_category"),
            template=self.defaults.get("template_path"),
            create_family=self.defaults.get("create_family"),
        )
        for rule in self._iter_matching_rules(source_path):
            plan.applied_rules.append(rule)
            if rule.family_name:
                plan.family_name = rule.family_name
            if rule.category:
                plan.category = rule.category
            if rule.template:
                plan.template = rule.template
            if rule.create_family is not None:
                plan.create_family = rule.create_family
        return plan

    def apply(self, options: ConversionOptions, source_path: Optional[Path] = None) -> ConversionOptions:
        """Return ``options`` with manifest defaults, mapping and matching rules applied."""
        merged = replace(options, **self.defaults)
        if self.parameter_mapping:
            table = dict(self.parameter_mapping)
            table.update(options.parameter_mapping)
            merged = replace(merged, parameter_mapping=table)
        if source_path is None:
            return merged
        plan = self.resolve_for_path(source_path)
        if not plan.applied_rules:
            return merged
        updates: Dict[str, Any] = {}
        if plan.family_name:
            updates["family_name"] = plan.family_name
        if plan.category:
            updates["family_category"] = plan.category
        if plan.template:
            updates["template_path"] = plan.template
        if plan.create_family is not None:
            updates["create_family"] = plan.create_family
        log.debug("Manifest rules %s applied to %s", [r.name or r.pattern for r in plan.applied_rules], source_path)
        return replace(merged, **updates)

    def _iter_matching_rules(self, source_path: Path) -> Iterable[FamilyRule]:
        for rule in self.family_rules:
            try:
                if rule.matches(source_path):
                    yield rule
            except Exception as exc:  # pragma: no cover
                log.warning("Manifest rule %s failed to evaluate for %s: %s", rule, source_path, exc)

    @staticmethod
    def _load_data_from_text(text: str, *, suffix: str) -> Dict[str, Any]:
        ext = (suffix or "").lower()
        if ext in {".yaml", ".yml"}:
            loaded = yaml.safe_load(text)
            if loaded is None:
                return {}
            if not isinstance(loaded, dict):
                raise ValueError("YAML manifest must define a mapping at the top level")
            return loaded
        if ext == ".json":
            loaded = json.loads(text)
            if not isinstance(loaded, dict):
                raise ValueError("JSON manifest must define a mapping at the top level")
            return loaded
        raise ValueError(f"Unsupported manifest type: {suffix}")


__all__ = [
    "ConversionManifest",
    "FamilyRule",
    "ResolvedFamilyPlan",
]
