"""Parse -> Convert -> Generate orchestration.

Each stage returns a :class:`~famconv.outcome.StageResult` and emits exactly
one :class:`~famconv.progress.Completed` event, whatever path it takes.
Per-item problems are reported as warnings and folded into the outcome;
nothing raised by a collaborator escapes a stage.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .classification import classify_by_name
from .contracts import SourceFileReader, TargetDocumentWriter, WriterError
from .converters import ConverterRegistry, NodeConversion
from .family_types import TYPE_NAME_KEY, FamilyTypeBuilder, type_values
from .kernel import MeshKernel
from .model import ConversionOptions, FamilyDefinition, GeometryForest, GeometryNode, PathLike
from .outcome import ConversionOutcome, StageResult
from .parameters import ParameterMapper, declared_type_for, parameter_group
from .placement import strategy_for
from .progress import NullSink, ProgressSink, StageReporter, as_sink, is_cancelled
from .templates import find_family_template

LOG = logging.getLogger(__name__)

# Share of the Generate stage (percent) given to each sub-step, in order.
GENERATE_WEIGHTS: Tuple[Tuple[str, float], ...] = (
    ("document", 10.0),
    ("elements", 50.0),
    ("parameters", 15.0),
    ("types", 15.0),
    ("save", 10.0),
)

DEFAULT_DOCUMENT_STEM = "famconv"


def weight_ranges(weights: Sequence[Tuple[str, float]] = GENERATE_WEIGHTS) -> Dict[str, Tuple[float, float]]:
    """Turn a weight table into ``{step: (start, end)}`` percentages summing to 100."""
    total = sum(w for _, w in weights) or 1.0
    ranges: Dict[str, Tuple[float, float]] = {}
    cursor = 0.0
    for name, weight in weights:
        span = 100.0 * weight / total
        ranges[name] = (cursor, cursor + span)
        cursor += span
    return ranges


def _label(node: GeometryNode) -> str:
    return node.name or node.id


def _file_stem(value: Optional[str], fallback: str) -> str:
    stem = re.sub(r'[<>:"/\\|?*]', "_", str(value or "")).strip(" .")
    return stem or fallback


def resolve_output_path(
    output_path: Optional[PathLike],
    *,
    name: Optional[str],
    suffix: str,
    family: bool,
) -> Path:
    """Explicit path, a file inside an explicit directory, or a unique temp path."""
    stem = _file_stem(name, DEFAULT_DOCUMENT_STEM)
    if output_path:
        candidate = Path(output_path)
        if candidate.is_dir():
            return candidate / f"{stem}{suffix}"
        if not candidate.suffix:
            return candidate.with_suffix(suffix)
        return candidate
    prefix = stem if family else DEFAULT_DOCUMENT_STEM
    return Path(tempfile.gettempdir()) / f"{prefix}_{uuid.uuid4().hex}{suffix}"


class Orchestrator:
    """Run the conversion stages against a reader, a writer and a converter registry."""

    def __init__(
        self,
        reader: Optional[SourceFileReader] = None,
        writer: Optional[TargetDocumentWriter] = None,
        registry: Optional[ConverterRegistry] = None,
        mapper: Optional[ParameterMapper] = None,
        sink: Any = None,
        *,
        kernel: Any = None,
        template_roots: Optional[Sequence[PathLike]] = None,
        type_builder: Optional[FamilyTypeBuilder] = None,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.kernel = kernel if kernel is not None else MeshKernel()
        if registry is None:
            registry = ConverterRegistry.default(self.kernel, writer) if writer is not None else ConverterRegistry()
        self.registry = registry
        self.mapper = mapper or ParameterMapper()
        self.sink: ProgressSink = as_sink(sink)
        self.template_roots = template_roots
        self.type_builder = type_builder or FamilyTypeBuilder()

    # ------------- parse -------------
    def _open_source(self, report: StageReporter, path: Optional[PathLike]) -> Tuple[Any, Optional[ConversionOutcome]]:
        if self.reader is None:
            report.fail("No source reader is configured")
            return None, ConversionOutcome.TARGET_SYSTEM_ERROR
        source = Path(path) if path else None
        if source is None or not source.is_file() or not os.access(source, os.R_OK):
            report.fail(f"Input file not found or unreadable: {path}")
            return None, ConversionOutcome.INVALID_INPUT
        try:
            readable = bool(self.reader.can_read(source))
        except Exception as exc:
            LOG.debug("can_read raised for %s: %s", source, exc)
            readable = False
        if not readable:
            report.fail(f"Unsupported input format: {source.name}")
            return None, ConversionOutcome.INVALID_INPUT
        report.status(f"Opening {source.name}", 5.0)
        try:
            handle = self.reader.open(source)
        except Exception as exc:
            report.fail(f"Could not open {source.name}: {exc}", exc)
            return None, ConversionOutcome.TARGET_SYSTEM_ERROR
        if handle is None:
            report.fail(f"Could not open {source.name}")
            return None, ConversionOutcome.TARGET_SYSTEM_ERROR
        return handle, None

    def _close_source(self, handle: Any) -> None:
        try:
            self.reader.close(handle)
        except Exception as exc:
            LOG.debug("Closing source handle failed: %s", exc)

    def parse(
        self,
        path: Optional[PathLike],
        options: Optional[ConversionOptions] = None,
        cancel_event: Any | None = None,
    ) -> StageResult[GeometryForest]:
        options = options or ConversionOptions()
        report = StageReporter(self.sink, "parse")
        handle, failure = self._open_source(report, path)
        if failure is not None:
            return StageResult(None, failure)
        source = Path(path)
        forest = GeometryForest()
        count = 0
        try:
            report.progress(10.0)
            iterator = iter(self.reader.read_nodes(handle, forest, options))
            while True:
                if is_cancelled(cancel_event):
                    report.complete(f"Parsing {source.name} cancelled after {count} node(s)", False)
                    return StageResult(None, ConversionOutcome.CANCELLED, count, count, report.warnings)
                try:
                    node = next(iterator)
                except StopIteration:
                    break
                if options.auto_determine_family_type:
                    node.element_class = classify_by_name(node.name, node.element_class)
                count += 1
                if options.detailed_progress:
                    report.status(f"Read {_label(node)}")
        except Exception as exc:
            LOG.debug("Reading %s failed", source, exc_info=True)
            report.fail(f"Failed to read {source.name}: {exc}", exc)
            return StageResult(None, ConversionOutcome.TARGET_SYSTEM_ERROR, count, 0, report.warnings)
        finally:
            self._close_source(handle)
        if count == 0:
            report.warning(f"No geometry found in {source.name}")
        report.progress(90.0)
        report.complete(f"Parsed {count} node(s) from {source.name}", True)
        return StageResult(forest, ConversionOutcome.SUCCESS, count, count, report.warnings)

    def parse_family(
        self,
        path: Optional[PathLike],
        options: Optional[ConversionOptions] = None,
        cancel_event: Any | None = None,
    ) -> StageResult[FamilyDefinition]:
        options = options or ConversionOptions()
        report = StageReporter(self.sink, "parse_family")
        handle, failure = self._open_source(report, path)
        if failure is not None:
            return StageResult(None, failure)
        source = Path(path)
        try:
            if is_cancelled(cancel_event):
                report.complete(f"Parsing {source.name} cancelled", False)
                return StageResult(None, ConversionOutcome.CANCELLED)
            report.status(f"Reading family from {source.name}", 20.0)
            family = self.reader.read_family(handle, source, options)
        except Exception as exc:
            LOG.debug("Reading family from %s failed", source, exc_info=True)
            report.fail(f"Failed to read family from {source.name}: {exc}", exc)
            return StageResult(None, ConversionOutcome.TARGET_SYSTEM_ERROR)
        finally:
            self._close_source(handle)
        if options.family_name:
            family.name = options.family_name
        if options.family_category:
            family.category = options.family_category
        if options.auto_determine_family_type:
            for node in family.geometry.walk():
                node.element_class = classify_by_name(node.name, node.element_class)
        if not family.is_valid:
            report.fail(f"Family read from {source.name} has no name or category")
            return StageResult(None, ConversionOutcome.INVALID_INPUT)
        report.progress(60.0)
        family.parameters = self.mapper.map_parameters(family.parameters, options)
        family.type_parameters = self.type_builder.build(family.type_parameters)
        count = len(family.geometry)
        report.complete(
            f"Parsed family '{family.name}' ({family.category}) with {len(family.type_parameters)} type(s) and {count} node(s)",
            True,
        )
        return StageResult(family, ConversionOutcome.SUCCESS, count, count, report.warnings)

    # ------------- convert -------------
    def _node_warning(self, node: GeometryNode, result: NodeConversion) -> str:
        if result.outcome is ConversionOutcome.UNSUPPORTED_GEOMETRY:
            return f"Node '{_label(node)}' skipped: {result.detail or 'unsupported geometry'}"
        detail = f": {result.detail}" if result.detail else ""
        return f"Node '{_label(node)}' failed to convert ({result.outcome.value}){detail}"

    def convert(
        self,
        forest: Optional[GeometryForest],
        options: Optional[ConversionOptions] = None,
        cancel_event: Any | None = None,
    ) -> StageResult[GeometryForest]:
        """Convert every node in preorder. Never raises."""
        options = options or ConversionOptions()
        report = StageReporter(self.sink, "convert")
        nodes: List[GeometryNode] = list(forest.walk()) if forest is not None else []
        total = len(nodes)
        if total == 0:
            report.fail("Nothing to convert: the geometry forest is empty")
            return StageResult(forest, ConversionOutcome.INVALID_INPUT)
        succeeded = 0
        try:
            report.status(f"Converting {total} node(s)", 0.0)
            for index, node in enumerate(nodes):
                if is_cancelled(cancel_event):
                    report.complete(f"Conversion cancelled after {index} of {total} node(s)", False)
                    return StageResult(forest, ConversionOutcome.CANCELLED, index, succeeded, report.warnings)
                start = 100.0 * index / total
                end = 100.0 * (index + 1) / total
                node.parameters = self.mapper.map_parameters(node.parameters, options)
                node_sink = report.scoped(start, end) if options.detailed_progress else NullSink()
                result = self.registry.convert_node(node, options, node_sink, cancel_event)
                if result.outcome is ConversionOutcome.SUCCESS:
                    succeeded += 1
                else:
                    report.warning(self._node_warning(node, result))
                report.step(0.0, 100.0, index, total)
        except Exception as exc:
            LOG.warning("Unexpected failure while converting: %s", exc, exc_info=True)
            report.fail(f"Conversion aborted: {exc}", exc)
            return StageResult(forest, ConversionOutcome.FAILED, total, succeeded, report.warnings)

        outcome = ConversionOutcome.aggregate(total, succeeded)
        report.complete(f"Converted {succeeded} of {total} node(s)", outcome.is_success)
        return StageResult(forest, outcome, total, succeeded, report.warnings)

    # ------------- generate -------------
    def generate(
        self,
        forest: Optional[GeometryForest],
        options: Optional[ConversionOptions] = None,
        cancel_event: Any | None = None,
        *,
        name: Optional[str] = None,
    ) -> StageResult[str]:
        options = options or ConversionOptions()
        report = StageReporter(self.sink, "generate")
        nodes = list(forest.walk()) if forest is not None else []
        if not nodes:
            report.fail("Nothing to generate: the geometry forest is empty")
            return StageResult(None, ConversionOutcome.INVALID_INPUT)
        return self._generate(report, nodes, None, options, cancel_event, name=name)

    def generate_family(
        self,
        family: Optional[FamilyDefinition],
        options: Optional[ConversionOptions] = None,
        cancel_event: Any | None = None,
    ) -> StageResult[str]:
        options = options or ConversionOptions()
        report = StageReporter(self.sink, "generate_family")
        if family is None or not family.is_valid:
            report.fail("Family definition needs a name and a category")
            return StageResult(None, ConversionOutcome.INVALID_INPUT)
        nodes = list(family.geometry.walk())
        if not nodes and options.require_family_geometry:
            report.fail(f"Family '{family.name}' has no geometry")
            return StageResult(None, ConversionOutcome.INVALID_INPUT)
        return self._generate(report, nodes, family, options, cancel_event, name=family.name)

    def _resolve_template(
        self,
        report: StageReporter,
        family: Optional[FamilyDefinition],
        options: ConversionOptions,
    ) -> Tuple[Optional[Path], bool]:
        """Return ``(template, ok)``; ``ok`` is False when a named template is missing."""
        explicit = options.template_path or (family.template if family is not None else None)
        if explicit:
            template = Path(explicit)
            if not template.is_file():
                report.fail(f"Template not found: {template}")
                return None, False
            return template, True
        if family is None:
            return None, True
        found = find_family_template(
            family.category,
            options.target_version,
            suffix=self.writer.template_suffix,
            roots=self.template_roots,
        )
        if found is None:
            LOG.info("No family template found for category %s; starting from an empty family", family.category)
        return found, True

    def _write_node_parameters(self, element: Any, node: GeometryNode, options: ConversionOptions) -> List[str]:
        """Write the node's parameters on ``element``; returns the names that were rejected."""
        values: Dict[str, Any] = dict(node.parameters)
        values.update(self.mapper.convert_attributes(node.parameters, node.element_class, options))
        rejected: List[str] = []
        for name, value in values.items():
            if value is None:
                continue
            try:
                ok = self.writer.set_parameter(element, name, value)
            except Exception as exc:
                LOG.debug("Setting %s on %s failed: %s", name, _label(node), exc)
                ok = False
            if not ok:
                rejected.append(name)
        return rejected

    def _family_plan(
        self,
        family: FamilyDefinition,
        variants: List[Dict[str, Any]],
        options: ConversionOptions,
    ) -> Tuple[List[Tuple[str, Any, bool]], List[Tuple[str, Dict[str, Any]]]]:
        """Return ``(parameters, types)`` for a family.

        ``parameters`` holds ``(name, value, instance)``. A family parameter
        that any type also sets becomes a type parameter, and its family
        value fills the types that leave it out.
        """
        defaults = self.mapper.map_parameters(family.parameters, options)
        types = [(str(v[TYPE_NAME_KEY]), self.mapper.map_parameters(type_values(v), options)) for v in variants]
        typed = set()
        for _, values in types:
            typed.update(values)
        planned: List[Tuple[str, Any, bool]] = [(n, v, n not in typed) for n, v in defaults.items()]
        seen = set(defaults)
        for _, values in types:
            for name, value in values.items():
                if name in seen:
                    continue
                seen.add(name)
                planned.append((name, value, False))
        shared = {n: v for n, v in defaults.items() if n in typed}
        return planned, [(type_name, {**shared, **values}) for type_name, values in types]

    def _add_family_parameters(self, report: StageReporter, document: Any, planned: List[Tuple[str, Any, bool]]) -> int:
        failures = 0
        with self.writer.transaction(document, "Family parameters"):
            for name, value, instance in planned:
                try:
                    ok = self.writer.add_family_parameter(
                        document,
                        name,
                        value,
                        instance=instance,
                        group=parameter_group(name),
                        declared_type=declared_type_for(value),
                    )
                except Exception as exc:
                    LOG.debug("Adding family parameter %s failed: %s", name, exc)
                    ok = False
                if not ok:
                    failures += 1
                    report.warning(f"Could not add family parameter '{name}'")
        return failures

    def _create_family_types(self, report: StageReporter, document: Any, types: List[Tuple[str, Dict[str, Any]]]) -> int:
        failures = 0
        with self.writer.transaction(document, "Family types"):
            for type_name, values in types:
                try:
                    ok = self.writer.create_family_type(document, type_name, values)
                except Exception as exc:
                    LOG.debug("Creating family type %s failed: %s", type_name, exc)
                    ok = False
                if not ok:
                    failures += 1
                    report.warning(f"Could not create family type '{type_name}'")
        return failures

    def _generate(
        self,
        report: StageReporter,
        nodes: List[GeometryNode],
        family: Optional[FamilyDefinition],
        options: ConversionOptions,
        cancel_event: Any | None,
        *,
        name: Optional[str],
    ) -> StageResult[str]:
        ranges = weight_ranges()
        writer = self.writer
        if writer is None:
            report.fail("No target writer is configured")
            return StageResult(None, ConversionOutcome.TARGET_SYSTEM_ERROR)
        is_family = family is not None
        suffix = writer.family_suffix if is_family else writer.document_suffix
        output_path = resolve_output_path(options.output_path, name=name, suffix=suffix, family=is_family)

        template, ok = self._resolve_template(report, family, options)
        if not ok:
            return StageResult(None, ConversionOutcome.TARGET_SYSTEM_ERROR)

        def _cancelled(step: str) -> StageResult[str]:
            report.complete(f"Generation cancelled before {step}", False)
            return StageResult(None, ConversionOutcome.CANCELLED, len(nodes), 0, report.warnings)

        # document
        if is_cancelled(cancel_event):
            return _cancelled("document creation")
        start, end = ranges["document"]
        report.status("Creating family document" if is_family else "Creating target document", start)
        try:
            document = writer.create_document(
                template,
                family=is_family,
                name=name,
                category=family.category if family is not None else None,
            )
        except Exception as exc:
            report.fail(f"Target system could not create a document: {exc}", exc)
            return StageResult(None, ConversionOutcome.TARGET_SYSTEM_ERROR)
        if document is None:
            report.fail("Target system could not create a document")
            return StageResult(None, ConversionOutcome.TARGET_SYSTEM_ERROR)
        report.progress(end)

        # elements
        start, end = ranges["elements"]
        report.status(f"Placing {len(nodes)} element(s)", start)
        failures = 0
        placed = 0
        for index, node in enumerate(nodes):
            if is_cancelled(cancel_event):
                return _cancelled(f"element {index + 1} of {len(nodes)}")
            if node.target_object is None:
                report.warning(f"Node '{_label(node)}' has no converted geometry; not placed")
            else:
                try:
                    with writer.transaction(document, f"Place {_label(node)}"):
                        element = strategy_for(node.element_class)(writer, document, node)
                        if element is None:
                            raise WriterError("no element returned")
                        rejected = self._write_node_parameters(element, node, options)
                    placed += 1
                    if rejected:
                        failures += 1
                        report.warning(f"Could not set {len(rejected)} parameter(s) on '{_label(node)}': {', '.join(rejected)}")
                except Exception as exc:
                    report.warning(f"Could not place '{_label(node)}': {exc}")
            report.step(start, end, index, len(nodes))
        failures += len(nodes) - placed
        if nodes and placed == 0:
            report.complete(f"None of {len(nodes)} element(s) could be placed; nothing saved", False)
            return StageResult(None, ConversionOutcome.FAILED, len(nodes), 0, report.warnings)
        if is_family and not nodes:
            failures += 1
            report.warning(f"Family '{family.name}' has no geometry")
        report.progress(end)

        # parameters and types
        if is_family:
            variants = self.type_builder.build(family.type_parameters)
            planned, types = self._family_plan(family, variants, options)
            if is_cancelled(cancel_event):
                return _cancelled("family parameters")
            start, end = ranges["parameters"]
            report.status(f"Creating {len(planned)} family parameter(s)", start)
            try:
                failures += self._add_family_parameters(report, document, planned)
            except Exception as exc:
                failures += 1
                report.warning(f"Family parameters could not be created: {exc}")
            report.progress(end)

            if is_cancelled(cancel_event):
                return _cancelled("family types")
            start, end = ranges["types"]
            report.status(f"Creating {len(variants)} family type(s)", start)
            try:
                failures += self._create_family_types(report, document, types)
            except Exception as exc:
                failures += 1
                report.warning(f"Family types could not be created: {exc}")
            report.progress(end)
        else:
            report.progress(ranges["types"][1])

        # save
        if is_cancelled(cancel_event):
            return _cancelled("save")
        start, end = ranges["save"]
        report.status(f"Saving {output_path}", start)
        cause: Optional[BaseException] = None
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            saved = bool(writer.save(document, output_path, options.overwrite))
        except Exception as exc:
            saved = False
            cause = exc
        if not saved:
            report.fail(f"Failed to save {output_path}", cause)
            return StageResult(None, ConversionOutcome.OUTPUT_WRITE_ERROR, len(nodes), placed, report.warnings)
        if family is not None:
            family.output_path = str(output_path)

        outcome = ConversionOutcome.SUCCESS if failures == 0 else ConversionOutcome.PARTIAL_SUCCESS
        report.complete(f"Saved {output_path} ({placed} of {len(nodes)} element(s))", True)
        return StageResult(str(output_path), outcome, len(nodes), placed, report.warnings)

    # ------------- whole run -------------
    def run(
        self,
        path: PathLike,
        options: Optional[ConversionOptions] = None,
        cancel_event: Any | None = None,
    ) -> StageResult[str]:
        """Parse, convert and generate; stops at the first stage that does not succeed."""
        options = options or ConversionOptions()
        if options.create_family:
            parsed = self.parse_family(path, options, cancel_event)
            if not parsed.ok:
                return StageResult(None, parsed.outcome, warnings=parsed.warnings)
            family = parsed.value
            if len(family.geometry):
                converted = self.convert(family.geometry, options, cancel_event)
                if not converted.ok:
                    return StageResult(None, converted.outcome, converted.attempted, converted.succeeded, converted.warnings)
            else:
                converted = StageResult(family.geometry, ConversionOutcome.SUCCESS)
            generated = self.generate_family(family, options, cancel_event)
        else:
            parsed_forest = self.parse(path, options, cancel_event)
            if not parsed_forest.ok:
                return StageResult(None, parsed_forest.outcome, warnings=parsed_forest.warnings)
            converted = self.convert(parsed_forest.value, options, cancel_event)
            if not converted.ok:
                return StageResult(None, converted.outcome, converted.attempted, converted.succeeded, converted.warnings)
            generated = self.generate(parsed_forest.value, options, cancel_event, name=Path(path).stem)
        outcome = generated.outcome
        if outcome is ConversionOutcome.SUCCESS and converted.outcome is ConversionOutcome.PARTIAL_SUCCESS:
            outcome = ConversionOutcome.PARTIAL_SUCCESS
        return StageResult(
            generated.value,
            outcome,
            generated.attempted,
            generated.succeeded,
            converted.warnings + generated.warnings,
        )


__all__ = [
    "GENERATE_WEIGHTS",
    "Orchestrator",
    "resolve_output_path",
    "weight_ranges",
]
