from __future__ import annotations

from typing import Deque, List, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
from collections import deque
import time
import numpy as np


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(slots=True)
class RateTimer:
    """
    Simple rate tracker for loop diagnostics.

    Usage:
        rt = RateTimer(window=50)
        for frame in frames:
            # work...
            hz = rt.tick()
    """
    window: int = 50
    _times: Deque[float] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self._times = deque(maxlen=max(2, self.window))

    def tick(self) -> float:
        t = time.perf_counter()
        self._times.append(t)
        if len(self._times) < 2:
            return 0.0
        dt = (self._times[-1] - self._times[0]) / (len(self._times) - 1)
        return 0.0 if dt <= 0 else 1.0 / dt


def to_numpy_3x3(x) -> np.ndarray:
    """Ensure input is a 3x3 float64 numpy array (copy if necessary)."""
    a = np.asarray(x, dtype=float)
    if a.shape != (3, 3):
        raise ValueError("Expected 3x3")
    return a.copy()


def row_blocks(n_rows: int, block: int) -> List[Tuple[int, int]]:
    """Split [0, n_rows) into contiguous half-open (start, stop) blocks."""
    block = max(1, int(block))
    return [(r, min(n_rows, r + block)) for r in range(0, n_rows, block)]


def parse_pair(s: str, sep: str = ",") -> Tuple[float, float]:
    """'a,b' -> (a, b) as floats."""
    parts = [p for p in s.replace("x", sep).split(sep) if p.strip()]
    if len(parts) != 2:
        raise ValueError(f"Expected two values separated by '{sep}': {s!r}")
    return float(parts[0]), float(parts[1])


class Stopwatch:
    """Context manager measuring wall time in milliseconds."""

    def __enter__(self) -> "Stopwatch":
        self._t0 = time.perf_counter()
        self.ms = 0.0
        return self

    def __exit__(self, *exc) -> None:
        self.ms = (time.perf_counter() - self._t0) * 1e3
