from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

from pose.landmarks import CalibrationType


@dataclass(frozen=True)
class ProfileViolation:
    location: str
    message: str

    def __str__(self) -> str:
        return f"{self.location}: {self.message}" if self.location else self.message


class CalibrationError(ValueError):
    """A calibration set is missing one or more of the required session types."""

    def __init__(self, missing: Iterable[CalibrationType]):
        self.missing: List[CalibrationType] = sorted(missing, key=lambda t: t.value)
        names = ", ".join(t.value for t in self.missing)
        super().__init__(f"calibration sessions missing required types: {names}")


class ProfileValidationError(ValueError):
    """An assembled user profile does not satisfy the profile schema."""

    def __init__(self, violations: Sequence[ProfileViolation], context: str = "profile validation failed"):
        self.violations: List[ProfileViolation] = list(violations)
        detail = "; ".join(str(v) for v in self.violations)
        super().__init__(f"{context}: {detail}" if detail else context)
