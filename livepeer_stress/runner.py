"""
Bounded-retry request runner.

One RequestRunner fires one logical request at a gateway: it POSTs the payload,
retries failed attempts up to ``max_retries`` times with a fixed delay between
them, and settles into exactly one RequestOutcome. Duration covers the whole
logical request (every attempt, every retry delay and the post-success cool-down).

Per-request errors never leave ``run``; they end up in the outcome and the log.
"""

from __future__ import annotations
import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

import aiohttp

from livepeer_stress.config import GatewayTarget, RetrySettings, join_url
from livepeer_stress.outcome import ERROR_HTTP, ERROR_NETWORK, ERROR_TIMEOUT, RequestOutcome
from livepeer_stress.payloads import headers_for
from livepeer_stress.sinks import MetricsWriter, ResultLog, iso_time

logger = logging.getLogger(__name__)


def classify_error(exc: BaseException) -> Tuple[str, Optional[int], str]:
    """Return (error kind, HTTP status if any, message) for a failed attempt."""
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, asyncio.TimeoutError):
        return ERROR_TIMEOUT, None, message
    if isinstance(exc, aiohttp.ClientResponseError):
        return ERROR_HTTP, exc.status, message
    return ERROR_NETWORK, None, message


class RequestRunner:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        target: GatewayTarget,
        payload: Dict[str, Any],
        settings: RetrySettings,
        log: ResultLog,
        image_dir: Optional[str] = None,
        metrics: Optional[MetricsWriter] = None,
    ):
        self.session = session
        self.target = target
        self.payload = payload
        self.settings = settings
        self.log = log
        self.image_dir = image_dir
        self.metrics = metrics
        self.headers = headers_for(target.call_type)
        self.timeout = aiohttp.ClientTimeout(total=settings.timeout_ms / 1000.0)

    def _prefix(self, request_num: int) -> str:
        return f"[{self.target.label}][{self.target.call_type.upper()} Req#{request_num}]"

    async def _attempt(self) -> Tuple[int, bytes]:
        async with self.session.post(
            self.target.url, json=self.payload, headers=self.headers, timeout=self.timeout
        ) as resp:
            if not 200 <= resp.status < 300:
                raise aiohttp.ClientResponseError(
                    resp.request_info,
                    resp.history,
                    status=resp.status,
                    message=resp.reason or "",
                    headers=resp.headers,
                )
            body = await resp.read()
            return resp.status, body

    async def run(self, request_num: int) -> RequestOutcome:
        prefix = self._prefix(request_num)
        max_retries = self.settings.max_retries
        retry_count = 0
        start_wall = time.time()
        t0 = time.perf_counter()

        while True:
            suffix = f" (Retry {retry_count}/{max_retries})" if retry_count else ""
            logger.info("%s%s => %s", prefix, suffix, self.target.url)
            logger.debug("%s Payload: %s", prefix, json.dumps(self.payload, indent=2))
            try:
                status, body = await self._attempt()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                kind, status, message = classify_error(e)
                logger.error("%s Error: %s (kind=%s, status=%s)", prefix, message, kind, status)
                if retry_count >= max_retries:
                    return await self._finish(
                        request_num, False, retry_count, start_wall, t0,
                        status=status, error=message, error_kind=kind,
                    )
                retry_count += 1
                logger.info(
                    "%s Retrying in %dms... (%d/%d)",
                    prefix, self.settings.retry_delay_ms, retry_count, max_retries,
                )
                await asyncio.sleep(self.settings.retry_delay_ms / 1000.0)
                continue

            logger.info("%s Response status: %d", prefix, status)
            if self.target.call_type == "image":
                await self._save_images(request_num, body)
            else:
                logger.debug("%s Response data: %s", prefix, body.decode("utf-8", errors="replace"))

            if self.settings.settle_delay_ms:
                await asyncio.sleep(self.settings.settle_delay_ms / 1000.0)
            return await self._finish(request_num, True, retry_count, start_wall, t0, status=status)

    async def _finish(
        self,
        request_num: int,
        success: bool,
        retry_count: int,
        start_wall: float,
        t0: float,
        status: Optional[int] = None,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
    ) -> RequestOutcome:
        duration_ms = max(0, int(round((time.perf_counter() - t0) * 1000)))
        end_wall = start_wall + duration_ms / 1000.0
        outcome = RequestOutcome(
            request_num=request_num,
            success=success,
            duration_ms=duration_ms,
            retry_count=retry_count,
            status_code=status,
            error=error,
            error_kind=error_kind,
            start_time=start_wall,
            end_time=end_wall,
        )
        await self.log.append(format_outcome_line(outcome))
        if self.metrics is not None:
            await self.metrics.write(outcome)
        return outcome

    # ----------------------------- Image follow-up -----------------------------

    async def _save_images(self, request_num: int, body: bytes):
        """Download every image referenced by the response. Failures are logged, never raised."""
        prefix = self._prefix(request_num)
        try:
            data = json.loads(body)
        except ValueError as e:
            logger.error("%s Response is not JSON, no images saved: %s", prefix, e)
            return
        images = data.get("images") if isinstance(data, dict) else None
        if not images:
            logger.warning("%s Response contains no images", prefix)
            return
        if not isinstance(images, list):
            logger.error("%s Response 'images' is not a list: %r", prefix, images)
            return
        if self.image_dir is None:
            return

        for i, image in enumerate(images, start=1):
            relative_url = image.get("url") if isinstance(image, dict) else None
            if not relative_url or not isinstance(relative_url, str):
                logger.error("%s Image %d has no usable url: %r", prefix, i, relative_url)
                continue
            image_url = join_url(self.target.base_url, relative_url)
            logger.info("%s Image URL: %s", prefix, image_url)
            try:
                async with self.session.get(image_url, timeout=self.timeout) as resp:
                    resp.raise_for_status()
                    content = await resp.read()
                os.makedirs(self.image_dir, exist_ok=True)
                image_path = os.path.join(self.image_dir, f"request_{request_num}_image_{i}.png")
                with open(image_path, "wb") as f:
                    f.write(content)
                logger.info("%s Saved image to %s", prefix, image_path)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
                logger.error("%s Failed to fetch/save image %d: %s", prefix, i, str(e) or e.__class__.__name__)


def format_outcome_line(outcome: RequestOutcome) -> str:
    timing = (
        f"Start={iso_time(outcome.start_time)}, End={iso_time(outcome.end_time)}, "
        f"Duration={outcome.duration_ms}ms"
    )
    if outcome.success:
        retries = f" (After {outcome.retry_count} retries)" if outcome.retry_count else ""
        return f"Request {outcome.request_num}{retries}: {timing}, Status={outcome.status_code}"
    status = outcome.status_code if outcome.status_code is not None else "unknown"
    return (
        f"Request {outcome.request_num} (FAILED after {outcome.retry_count} retries): "
        f"{timing}, Status={status}, Error={outcome.error}"
    )
