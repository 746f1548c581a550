"""
Error kinds and tagged result types returned at the core boundary.

Low-level math raises CoreError subclasses; public entry points convert
them into Evaluable / Unevaluable / Computed / ComputationError values so
callers handle every outcome explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar, Union

if TYPE_CHECKING:
    from models.types import AtRiskPosition

T = TypeVar("T")


class ErrorKind(str, Enum):
    INVALID_SNAPSHOT = "invalid_snapshot"
    MISSING_PRICE = "missing_price"
    STALE_PRICE = "stale_price"
    ARITHMETIC_OVERFLOW = "arithmetic_overflow"


class CoreError(ValueError):
    """Base class for failures of a single core computation."""
    kind: ErrorKind = ErrorKind.INVALID_SNAPSHOT


class InvalidSnapshotError(CoreError):
    kind = ErrorKind.INVALID_SNAPSHOT


class MissingPriceError(CoreError):
    kind = ErrorKind.MISSING_PRICE

    def __init__(self, asset_id: str, stale: bool = False):
        self.asset_id = asset_id
        self.stale = stale
        if stale:
            self.kind = ErrorKind.STALE_PRICE
        state = "stale" if stale else "missing"
        super().__init__(f"price for {asset_id} is {state}")


class ArithmeticOverflowError(CoreError):
    kind = ErrorKind.ARITHMETIC_OVERFLOW


@dataclass(frozen=True)
class Evaluable:
    """Position was fully priced and evaluated."""
    position: AtRiskPosition

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Unevaluable:
    """Position could not be evaluated; its risk is unknown, not zero."""
    manager_id: str
    reason: ErrorKind
    detail: str

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "manager_id": self.manager_id,
            "status": "unknown",
            "reason": self.reason.value,
            "detail": self.detail,
        }


EvaluationResult = Union[Evaluable, Unevaluable]


@dataclass(frozen=True)
class Computed(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ComputationError:
    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_exception(cls, exc: CoreError) -> "ComputationError":
        return cls(kind=exc.kind, message=str(exc))

    def to_dict(self) -> dict:
        return {"status": "error", "kind": self.kind.value, "message": self.message}
