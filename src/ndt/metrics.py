from __future__ import annotations

from dataclasses import dataclass


def rate_kbps(num_bytes: int, seconds: float) -> float:
    """Throughput in kilobits per second, as NDT servers compute it."""
    if seconds <= 0:
        raise ValueError(f"elapsed time must be positive, got {seconds}")
    return 8 * num_bytes / 1000 / seconds


@dataclass(slots=True)
class Metrics:
    bytes_transferred: int = 0
    start_ts: float | None = None
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.start_ts is None or self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_kbps(self) -> float:
        return rate_kbps(self.bytes_transferred, self.duration_s)
