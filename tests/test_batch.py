import asyncio
from datetime import datetime, timezone

import pytest
from aiohttp import test_utils

from livepeer_stress.batch import BatchSpec, format_gateway_summary, run_batch, run_batches
from livepeer_stress.config import RetrySettings
from livepeer_stress.outcome import RunSummary
from livepeer_stress.payloads import image_payload, llm_payload
from livepeer_stress.sinks import MetricsWriter, ResultLog


def _base_url(server) -> str:
    return str(server.make_url("/")).rstrip("/")


def _batch(gateway, make_target, settings, log, count, **spec_kwargs):
    async def scenario():
        async with test_utils.TestServer(gateway.app()) as server:
            spec = BatchSpec(target=make_target(_base_url(server)), payload=llm_payload("hi"),
                             log=log, **spec_kwargs)
            return await run_batch(count, spec, settings)

    return asyncio.run(scenario())


def test_all_requests_succeed(tmp_path, capsys, gateway_cls, make_target, fast_retry):
    log = ResultLog(str(tmp_path / "run.log"))

    summary = _batch(gateway_cls(), make_target, fast_retry, log, 10)

    assert (summary.successes, summary.failures, summary.total_retries) == (10, 0, 0)
    assert summary.total == 10
    text = log.read()
    assert sum(1 for line in text.splitlines() if line.startswith("Request ")) == 10
    assert "--- Final Results ---" in text
    assert "Successes: 10" in text
    assert "Successes: 10" in capsys.readouterr().out


def test_requests_are_launched_together(tmp_path, gateway_cls, make_target, fast_retry):
    # the gateway only answers once all 25 requests are in flight at the same time
    gateway = gateway_cls(barrier=25)

    summary = _batch(gateway, make_target, fast_retry, ResultLog(str(tmp_path / "run.log")), 25)

    assert summary.successes == 25
    assert gateway.calls == 25


def test_all_failures_still_produce_a_summary(tmp_path, gateway_cls, make_target, fast_retry):
    gateway = gateway_cls(fail_times=10_000)
    log = ResultLog(str(tmp_path / "run.log"))

    summary = _batch(gateway, make_target, fast_retry, log, 4)

    assert summary.successes == 0
    assert summary.failures == 4
    assert summary.successes + summary.failures == 4
    assert summary.total_retries == 4 * 3
    assert summary.failures_by_kind == {"http": 4}
    assert log.read().count("FAILED after 3 retries") == 4


def test_mixed_outcomes_add_up(tmp_path, gateway_cls, make_target):
    settings = RetrySettings(max_retries=0, retry_delay_ms=0, timeout_ms=5_000, settle_delay_ms=0)
    gateway = gateway_cls(fail_times=3)
    metrics = MetricsWriter(str(tmp_path / "run.csv"))

    summary = _batch(gateway, make_target, settings, ResultLog(str(tmp_path / "run.log")), 8,
                     metrics=metrics)

    assert summary.successes == 5
    assert summary.failures == 3
    assert summary.successes + summary.failures == summary.total == 8
    with open(metrics.csv_path, encoding="utf-8") as f:
        assert len(f.read().splitlines()) == 1 + 8


@pytest.mark.parametrize("image_body", [
    {"images": 5},
    {"images": [{"url": 123}]},
    {"images": "not-a-list"},
])
def test_malformed_image_response_does_not_break_the_batch(tmp_path, gateway_cls, make_target,
                                                           fast_retry, image_body):
    gateway = gateway_cls(image_body=image_body)
    log = ResultLog(str(tmp_path / "run.log"))
    image_dir = tmp_path / "images"

    async def scenario():
        async with test_utils.TestServer(gateway.app()) as server:
            spec = BatchSpec(target=make_target(_base_url(server), "image"),
                             payload=image_payload("a cat", 512), log=log, image_dir=str(image_dir))
            return await run_batch(2, spec, fast_retry)

    summary = asyncio.run(scenario())

    assert (summary.successes, summary.failures, summary.total_retries) == (2, 0, 0)
    assert "Successes: 2" in log.read()
    assert gateway.image_calls == 0
    assert not image_dir.exists()


def test_run_batches_builds_gateway_type_stats(tmp_path, gateway_cls, make_target, fast_retry):
    gw1 = gateway_cls(images=1)
    gw2 = gateway_cls(fail_times=10_000)

    async def scenario():
        async with test_utils.TestServer(gw1.app()) as s1, test_utils.TestServer(gw2.app()) as s2:
            specs = []
            for label, server in (("gateway1", s1), ("gateway2", s2)):
                for call_type in ("image", "llm"):
                    payload = llm_payload("hi") if call_type == "llm" else image_payload("a cat", 512)
                    specs.append(BatchSpec(
                        target=make_target(_base_url(server), call_type, label),
                        payload=payload,
                        log=ResultLog(str(tmp_path / f"{label}_{call_type}.log")),
                        image_dir=str(tmp_path / f"{label}_images") if call_type == "image" else None,
                    ))
            return await run_batches(3, specs, fast_retry)

    stats = asyncio.run(scenario())

    assert set(stats) == {("gateway1", "image"), ("gateway1", "llm"),
                          ("gateway2", "image"), ("gateway2", "llm")}
    assert stats[("gateway1", "llm")].successes == 3
    assert stats[("gateway1", "image")].successes == 3
    assert stats[("gateway2", "llm")].failures == 3
    assert len(list((tmp_path / "gateway1_images").iterdir())) == 3
    assert "--- gateway1 LLM Results ---" in (tmp_path / "gateway1_llm.log").read_text()


def test_format_gateway_summary():
    stats = {
        ("gateway1", "llm"): RunSummary(total=2, successes=2, avg_duration_ms=1200.0),
        ("gateway1", "image"): RunSummary(total=2, successes=1, failures=1, total_retries=3),
    }
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    text = format_gateway_summary(stats, {"gateway1": "https://gw1.example"}, now=now)

    assert "=== Gateway Performance Summary ===" in text
    assert "Time: 2024-05-01T12:00:00+00:00" in text
    assert "gateway1 (https://gw1.example)" in text
    assert text.index("LLM Requests:") < text.index("Image Requests:")
    assert "  Average Response Time: 1200.00ms" in text
    assert "  Total Retries: 3" in text
