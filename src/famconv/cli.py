from __future__ import annotations

import argparse
from typing import Sequence


class _JoinPathAction(argparse.Action):
    """Join successive CLI tokens into a single path string (handles spaces gracefully)."""

    def __call__(self, parser, namespace, values, option_string=None):
        joined = " ".join(values).strip()
        setattr(namespace, self.dest, joined or None)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the CLI arguments for the family converter."""

    parser = argparse.ArgumentParser(description="Convert IFC or USD geometry into USD documents and parametric families")
    parser.add_argument(
        "--input",
        dest="input_path",
        nargs="+",
        action=_JoinPathAction,
        required=True,
        help="Source file (.ifc, .usda, .usdc or .usd)",
    )
    parser.add_argument(
        "--output",
        dest="output_path",
        nargs="+",
        action=_JoinPathAction,
        default=None,
        help="Output file or directory (default: a unique file in the temp directory)",
    )
    parser.add_argument(
        "--target-version",
        dest="target_version",
        default=None,
        help="Target version used for template discovery (default: 2024, or the manifest value)",
    )
    parser.add_argument(
        "--manifest",
        dest="manifest_path",
        nargs="+",
        action=_JoinPathAction,
        default=None,
        help="Path to a manifest (YAML or JSON) with defaults, parameter mapping and family rules",
    )
    parser.add_argument(
        "--family",
        dest="create_family",
        action="store_true",
        help="Build a parametric family instead of a plain document",
    )
    parser.add_argument("--family-name", dest="family_name", default=None, help="Override the family name")
    parser.add_argument("--family-category", dest="family_category", default=None, help="Override the family category")
    parser.add_argument(
        "--template",
        dest="template_path",
        nargs="+",
        action=_JoinPathAction,
        default=None,
        help="Explicit template file; a missing file aborts generation",
    )
    parser.add_argument(
        "--tolerance",
        dest="tolerance",
        type=float,
        default=None,
        help="Geometric tolerance in metres (default: 0.001)",
    )
    parser.add_argument(
        "--include-hidden",
        dest="include_hidden_geometry",
        action="store_true",
        help="Also read geometry on hidden layers or with invisible visibility",
    )
    parser.add_argument(
        "--no-merge-vertices",
        dest="merge_coincident_vertices",
        action="store_false",
        help="Keep coincident vertices instead of welding them",
    )
    parser.add_argument(
        "--no-simplify",
        dest="simplify_mesh",
        action="store_false",
        help="Skip mesh simplification",
    )
    parser.add_argument(
        "--require-family-geometry",
        dest="require_family_geometry",
        action="store_true",
        help="Reject families that carry no geometry",
    )
    parser.add_argument(
        "--strict",
        dest="strict",
        action="store_true",
        help="Treat partial success as failure for the exit code",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        dest="verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)
