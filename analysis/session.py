from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from math import isfinite
from typing import Any, Optional, Sequence

from .breathing import BreathingAnalysisResult
from .posture import PostureAnalysisResult


@dataclass(frozen=True)
class AnalyzedSession:
    """A recorded session together with the analyses run on it."""
    session_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    breathing: Optional[BreathingAnalysisResult] = None
    posture: Optional[PostureAnalysisResult] = None
    name: Optional[str] = None


def metric_at(session: Any, path: Sequence[str]) -> Optional[float]:
    """
    Follow `path` through attributes (or mapping keys) and return a finite number.

    Anything missing along the way, or a non-numeric leaf, gives None.
    """
    node = session
    for key in path:
        if node is None:
            return None
        if isinstance(node, dict):
            node = node.get(key)
        else:
            node = getattr(node, key, None)
    if node is None or isinstance(node, bool):
        return None
    try:
        value = float(node)
    except (TypeError, ValueError):
        return None
    return value if isfinite(value) else None
