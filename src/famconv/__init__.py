"""Convert IFC and USD geometry into USD target documents and parametric families."""

from .config.manifest import ConversionManifest
from .contracts import KernelError, ReaderError, TargetShape, WriterError
from .conversion import ConversionResult, convert
from .converters import BrepConverter, ConverterRegistry, GeometryConverter, MeshConverter
from .family_types import FamilyTypeBuilder, build_family_types
from .kernel import BrepPayload, BrepTopology, CurvePayload, MeshKernel, MeshPayload
from .model import (
    ConversionOptions,
    ElementClass,
    FamilyDefinition,
    GeometryForest,
    GeometryKind,
    GeometryNode,
    OwnershipError,
)
from .outcome import ConversionOutcome, StageResult
from .parameters import ParameterMapper
from .pipeline import Orchestrator
from .progress import (
    CallbackSink,
    Completed,
    ErrorReported,
    LoggingSink,
    NullSink,
    ProgressChanged,
    RecordingSink,
    StatusChanged,
    WarningReported,
)

__version__ = "0.1.0"

__all__ = [
    "BrepConverter",
    "BrepPayload",
    "BrepTopology",
    "CallbackSink",
    "Completed",
    "ConversionManifest",
    "ConversionOptions",
    "ConversionOutcome",
    "ConversionResult",
    "ConverterRegistry",
    "CurvePayload",
    "ElementClass",
    "ErrorReported",
    "FamilyDefinition",
    "FamilyTypeBuilder",
    "GeometryConverter",
    "GeometryForest",
    "GeometryKind",
    "GeometryNode",
    "KernelError",
    "LoggingSink",
    "MeshConverter",
    "MeshKernel",
    "MeshPayload",
    "NullSink",
    "Orchestrator",
    "OwnershipError",
    "ParameterMapper",
    "ProgressChanged",
    "ReaderError",
    "RecordingSink",
    "StageResult",
    "StatusChanged",
    "TargetShape",
    "WarningReported",
    "WriterError",
    "build_family_types",
    "convert",
]
