"""Programmatic entry point and command-line ``main``."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .cli import parse_args
from .config.manifest import ConversionManifest
from .contracts import SourceFileReader, TargetDocumentWriter
from .model import ConversionOptions, PathLike
from .outcome import ConversionOutcome
from .pipeline import Orchestrator
from .progress import LoggingSink, TeeSink, as_sink

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


@dataclass
class ConversionResult:
    """Outcome and artifact of converting one source file."""

    input_path: PathLike
    output_path: Optional[str]
    outcome: ConversionOutcome
    family: bool = False
    attempted: int = 0
    succeeded: int = 0
    warnings: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome.is_success

    def as_dict(self) -> Dict[str, Any]:
        return {
            "input": str(self.input_path),
            "output": self.output_path,
            "outcome": self.outcome.value,
            "family": self.family,
            "counts": {"attempted": self.attempted, "succeeded": self.succeeded},
            "warnings": self.warnings,
        }


def reader_for_path(path: PathLike) -> SourceFileReader:
    """Pick the reader for ``path`` by extension (IFC when nothing else matches)."""
    suffix = Path(path).suffix.lower()
    if suffix in (".usda", ".usdc", ".usd"):
        from .usd_family import UsdFamilyReader  # Local import

        return UsdFamilyReader()
    from .ifc_reader import IfcSourceReader  # Local import

    return IfcSourceReader()


def default_writer() -> TargetDocumentWriter:
    from .usd_family import UsdFamilyWriter  # Local import

    return UsdFamilyWriter()


def _load_manifest(
    manifest: Optional[ConversionManifest],
    manifest_path: Optional[PathLike],
    log: logging.Logger,
) -> Optional[ConversionManifest]:
    if manifest_path and manifest is not None:
        raise ValueError("Provide either manifest or manifest_path, not both.")
    if not manifest_path:
        return manifest
    manifest_fp = Path(manifest_path).resolve()
    loaded = ConversionManifest.from_file(manifest_fp)
    log.info("Loaded manifest from %s", manifest_fp)
    return loaded


def convert(
    input_path: PathLike,
    *,
    output_path: PathLike | None = None,
    options: ConversionOptions | None = None,
    manifest: ConversionManifest | None = None,
    manifest_path: PathLike | None = None,
    sink: Any = None,
    cancel_event: Any | None = None,
    logger: logging.Logger | None = None,
    reader: SourceFileReader | None = None,
    writer: TargetDocumentWriter | None = None,
) -> ConversionResult:
    """Programmatic API for running the converter inside another application.

    Manifest defaults and matching family rules are applied on top of
    ``options``; an explicit ``output_path`` wins over both. Raises
    ``ValueError`` for configuration problems only; conversion problems are
    reported through the returned outcome and ``sink``.
    """
    log = logger or LOG
    manifest_obj = _load_manifest(manifest, manifest_path, log)
    run_options = options or ConversionOptions()
    if manifest_obj is not None:
        run_options = manifest_obj.apply(run_options, Path(input_path))
    if output_path is not None:
        run_options = replace(run_options, output_path=str(output_path))

    events = LoggingSink(log)
    run_sink = events if sink is None else TeeSink(events, as_sink(sink))
    orchestrator = Orchestrator(
        reader if reader is not None else reader_for_path(input_path),
        writer if writer is not None else default_writer(),
        sink=run_sink,
    )
    log.info(
        "Converting %s to a %s (target %s)",
        input_path,
        "family" if run_options.create_family else "document",
        run_options.target_version,
    )
    result = orchestrator.run(input_path, run_options, cancel_event)
    return ConversionResult(
        input_path=input_path,
        output_path=result.value,
        outcome=result.outcome,
        family=run_options.create_family,
        attempted=result.attempted,
        succeeded=result.succeeded,
        warnings=result.warnings,
    )


def options_from_args(args: argparse.Namespace, base: ConversionOptions | None = None) -> ConversionOptions:
    """Overlay the flags the user actually gave on ``base``."""
    opts = base or ConversionOptions()
    updates: Dict[str, Any] = {}
    if args.target_version:
        updates["target_version"] = args.target_version
    if args.output_path:
        updates["output_path"] = args.output_path
    if args.template_path:
        updates["template_path"] = args.template_path
    if args.family_name:
        updates["family_name"] = args.family_name
    if args.family_category:
        updates["family_category"] = args.family_category
    if args.tolerance is not None:
        if args.tolerance <= 0:
            raise ValueError(f"--tolerance must be positive, got {args.tolerance}")
        updates["tolerance"] = float(args.tolerance)
    for flag in ("create_family", "include_hidden_geometry", "require_family_geometry"):
        if getattr(args, flag):
            updates[flag] = True
    for flag in ("merge_coincident_vertices", "simplify_mesh"):
        if not getattr(args, flag):
            updates[flag] = False
    if args.verbose:
        updates["detailed_progress"] = True
    return replace(opts, **updates)


def exit_code_for(outcome: ConversionOutcome, *, strict: bool = False) -> int:
    if outcome is ConversionOutcome.SUCCESS:
        return EXIT_OK
    if outcome is ConversionOutcome.PARTIAL_SUCCESS and not strict:
        return EXIT_OK
    return EXIT_FAILED


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    input_path = Path(args.input_path)
    try:
        manifest = None
        if args.manifest_path:
            manifest = _load_manifest(None, args.manifest_path, LOG)
        base = ConversionOptions()
        if manifest is not None:
            base = manifest.apply(base, input_path)
        options = options_from_args(args, base)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_USAGE) from exc

    result = convert(input_path, options=options)
    if result.output_path:
        LOG.info("Output: %s", result.output_path)
    if result.warnings:
        LOG.info("%d warning(s) reported", result.warnings)
    LOG.info("Outcome: %s", result.outcome.value)
    return exit_code_for(result.outcome, strict=args.strict)


__all__ = [
    "ConversionResult",
    "convert",
    "default_writer",
    "exit_code_for",
    "main",
    "options_from_args",
    "reader_for_path",
]
