from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np

ERROR_TIMEOUT = "timeout"
ERROR_HTTP = "http"
ERROR_NETWORK = "network"


@dataclass(frozen=True)
class RequestOutcome:
    """Terminal result of one logical request, after any retries."""
    request_num: int
    success: bool
    duration_ms: int
    retry_count: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    start_time: float = 0.0
    end_time: float = 0.0


@dataclass
class RunSummary:
    total: int = 0
    successes: int = 0
    failures: int = 0
    total_retries: int = 0
    retried_requests: int = 0
    retried_successes: int = 0
    avg_duration_ms: float = 0.0
    p50_ms: float = 0.0
    p90_ms: float = 0.0
    p99_ms: float = 0.0
    failures_by_kind: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[RequestOutcome]) -> "RunSummary":
        outcomes = list(outcomes)
        if not outcomes:
            return cls()
        durations = np.array([o.duration_ms for o in outcomes], dtype=float)
        p50, p90, p99 = np.percentile(durations, [50, 90, 99])
        kinds = Counter(o.error_kind or "unknown" for o in outcomes if not o.success)
        return cls(
            total=len(outcomes),
            successes=sum(1 for o in outcomes if o.success),
            failures=sum(1 for o in outcomes if not o.success),
            total_retries=sum(o.retry_count for o in outcomes),
            retried_requests=sum(1 for o in outcomes if o.retry_count > 0),
            retried_successes=sum(1 for o in outcomes if o.success and o.retry_count > 0),
            avg_duration_ms=float(durations.mean()),
            p50_ms=float(p50),
            p90_ms=float(p90),
            p99_ms=float(p99),
            failures_by_kind=dict(kinds),
        )

    def lines(self, indent: str = "") -> List[str]:
        out = [
            f"{indent}Total Requests: {self.total}",
            f"{indent}Successes: {self.successes}",
            f"{indent}Failures: {self.failures}",
            f"{indent}Total Retries: {self.total_retries}",
            f"{indent}Requests that needed retries: {self.retried_requests}",
            f"{indent}Successfully retried requests: {self.retried_successes}",
            f"{indent}Average Response Time: {self.avg_duration_ms:.2f}ms",
            f"{indent}Response Time p50/p90/p99: "
            f"{self.p50_ms:.2f}ms / {self.p90_ms:.2f}ms / {self.p99_ms:.2f}ms",
        ]
        if self.failures_by_kind:
            kinds = ", ".join(f"{k}={v}" for k, v in sorted(self.failures_by_kind.items()))
            out.append(f"{indent}Failures by kind: {kinds}")
        return out

    def format(self, title: str = "--- Final Results ---") -> str:
        return "\n" + "\n".join([title] + self.lines()) + "\n"
