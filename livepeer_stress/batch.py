"""
Concurrent batch driver.

A batch launches ``count`` RequestRunner invocations at once (no throttling),
joins them, and reduces the outcomes into a RunSummary. Gateway/type statistics
for the dual-gateway run are built the same way: each batch is reduced on its own
after the join, so no counters are shared between requests.
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from livepeer_stress.config import GatewayTarget, RetrySettings
from livepeer_stress.outcome import RequestOutcome, RunSummary
from livepeer_stress.runner import RequestRunner
from livepeer_stress.sinks import MetricsWriter, ResultLog

logger = logging.getLogger(__name__)

CALL_TYPE_TITLES = {"llm": "LLM", "image": "Image"}


def make_session() -> aiohttp.ClientSession:
    # limit=0: every request of the batch gets its own connection immediately
    return aiohttp.ClientSession(connector=aiohttp.TCPConnector(limit=0))


@dataclass
class BatchSpec:
    target: GatewayTarget
    payload: Dict[str, Any]
    log: ResultLog
    image_dir: Optional[str] = None
    metrics: Optional[MetricsWriter] = None
    plot_path: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return self.target.label, self.target.call_type


async def gather_outcomes(
    session: aiohttp.ClientSession,
    count: int,
    spec: BatchSpec,
    settings: RetrySettings,
) -> List[RequestOutcome]:
    runner = RequestRunner(
        session, spec.target, spec.payload, settings, spec.log,
        image_dir=spec.image_dir, metrics=spec.metrics,
    )
    return list(await asyncio.gather(*(runner.run(i + 1) for i in range(count))))


async def run_batch(
    count: int,
    spec: BatchSpec,
    settings: RetrySettings,
    session: Optional[aiohttp.ClientSession] = None,
    title: str = "--- Final Results ---",
) -> RunSummary:
    """Fire ``count`` concurrent requests at ``spec.target`` and summarize them.

    The summary block is appended to the batch log and printed to stdout.
    """
    logger.info("Starting %s batch of %d concurrent requests against %s",
                spec.target.call_type, count, spec.target.url)
    if session is None:
        async with make_session() as own_session:
            outcomes = await gather_outcomes(own_session, count, spec, settings)
    else:
        outcomes = await gather_outcomes(session, count, spec, settings)

    summary = RunSummary.from_outcomes(outcomes)
    text = summary.format(title)
    spec.log.append_block(text)
    print(text)

    if spec.plot_path:
        # imported lazily, matplotlib is only needed with --plot
        from livepeer_stress.plot import plot_durations
        plot_durations(outcomes, spec.plot_path, title=f"{spec.target.label} {spec.target.call_type}")
    return summary


async def run_batches(
    count: int,
    specs: List[BatchSpec],
    settings: RetrySettings,
) -> Dict[Tuple[str, str], RunSummary]:
    """Run one batch per spec, all concurrently on a shared session.

    Returns the gateway/type stats mapping ``(label, call_type) -> RunSummary``.
    """
    async with make_session() as session:
        summaries = await asyncio.gather(*(
            run_batch(
                count, spec, settings, session=session,
                title=f"--- {spec.target.label} {CALL_TYPE_TITLES[spec.target.call_type]} Results ---",
            )
            for spec in specs
        ))
    return {spec.key: summary for spec, summary in zip(specs, summaries)}


def format_gateway_summary(
    stats: Dict[Tuple[str, str], RunSummary],
    gateways: Dict[str, str],
    now: Optional[datetime] = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    lines = ["", "=== Gateway Performance Summary ===", f"Time: {now.isoformat()}"]
    for label, url in gateways.items():
        heading = f"{label} ({url})"
        lines += ["", heading, "-" * len(heading)]
        for call_type in ("llm", "image"):
            summary = stats.get((label, call_type))
            if summary is None:
                continue
            lines.append(f"{CALL_TYPE_TITLES[call_type]} Requests:")
            lines += summary.lines(indent="  ")
            lines.append("")
    return "\n".join(lines) + "\n"
