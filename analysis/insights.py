from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Insight:
    """A coaching message derived from an analysis: what was seen and what to do about it."""
    title: str
    description: str
    severity: Severity
    recommendation: str


def severity_for_score(score: float) -> Severity:
    """Bucket a [0, 1] severity score: > 0.8 high, > 0.5 medium, else low."""
    if score > 0.8:
        return Severity.HIGH
    if score > 0.5:
        return Severity.MEDIUM
    return Severity.LOW
