from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class ConversionOutcome(str, Enum):
    """Closed set of stage results. One value is returned per stage call."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INVALID_INPUT = "invalid_input"
    UNSUPPORTED_GEOMETRY = "unsupported_geometry"
    TARGET_SYSTEM_ERROR = "target_system_error"
    OUTPUT_WRITE_ERROR = "output_write_error"

    @property
    def is_success(self) -> bool:
        return self in (ConversionOutcome.SUCCESS, ConversionOutcome.PARTIAL_SUCCESS)

    @classmethod
    def aggregate(cls, attempted: int, succeeded: int) -> "ConversionOutcome":
        """Fold per-item results: none succeeded is FAILED, all is SUCCESS."""
        if attempted < 0 or succeeded < 0 or succeeded > attempted:
            raise ValueError(f"Invalid aggregate counts: attempted={attempted} succeeded={succeeded}")
        if succeeded == 0:
            return cls.FAILED
        if succeeded == attempted:
            return cls.SUCCESS
        return cls.PARTIAL_SUCCESS


@dataclass
class StageResult(Generic[T]):
    """Value and outcome of one stage call; unpacks as ``(value, outcome)``."""

    value: Optional[T]
    outcome: ConversionOutcome
    attempted: int = 0
    succeeded: int = 0
    warnings: int = 0

    def __iter__(self) -> Iterator[Any]:
        yield self.value
        yield self.outcome

    @property
    def ok(self) -> bool:
        return self.outcome.is_success

    def as_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "warnings": self.warnings,
        }


__all__ = ["ConversionOutcome", "StageResult"]
