from __future__ import annotations

import threading
from collections import Counter

from common.utils import now_utc_iso
from pydantic import BaseModel

UNMATCHED_ROUTE = "<unmatched>"


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]
    pipeline: dict[str, int]


class ServiceMetrics:
    """Request counters keyed by route template, plus pipeline event counters.

    Pipeline events are dotted names such as ``banner_stage_fallback.topics``
    or ``analysis_job_failed.profile_analysis``. Shared across the banner
    builder, the banner cache and the analysis tracker of one app.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "client_errors": 0, "server_errors": 0}
        self._endpoints: dict[str, dict[str, float | int]] = {}
        self._pipeline: Counter[str] = Counter()

    def observe_request(
        self,
        *,
        method: str,
        route: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        with self._lock:
            self._totals["requests"] += 1
            if 400 <= status_code < 500:
                self._totals["client_errors"] += 1
            elif status_code >= 500:
                self._totals["server_errors"] += 1

            endpoint = self._endpoints.setdefault(
                f"{method} {route}",
                {"count": 0, "errors": 0, "latency_ms_avg": 0.0, "latency_ms_max": 0.0},
            )
            count = int(endpoint["count"]) + 1
            endpoint["count"] = count
            if status_code >= 400:
                endpoint["errors"] = int(endpoint["errors"]) + 1
            previous_avg = float(endpoint["latency_ms_avg"])
            endpoint["latency_ms_avg"] = previous_avg + (duration_ms - previous_avg) / count
            endpoint["latency_ms_max"] = max(float(endpoint["latency_ms_max"]), duration_ms)

    def count(self, event: str) -> None:
        with self._lock:
            self._pipeline[event] += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            totals = dict(self._totals)
            totals["errors"] = totals["client_errors"] + totals["server_errors"]
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=totals,
                endpoints={key: dict(value) for key, value in self._endpoints.items()},
                pipeline=dict(sorted(self._pipeline.items())),
            )
