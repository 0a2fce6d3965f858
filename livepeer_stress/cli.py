"""
livepeer-stress command line.

Usage (examples):
    LIVEPEER_GATEWAY_URL=https://gateway.example livepeer-stress llm 50
    LIVEPEER_GATEWAY_URL=https://gateway.example livepeer-stress image 2 --plot
    livepeer-stress dual --test=both --concurrency=10 \
        --gateway1Url=https://first.example --gateway2Url=https://second.example \
        --llmEndpoint=llm --imageEndpoint=text-to-image

Every request is retried up to --max-retries times (default 3) with
--retry-delay-ms between attempts. Logs, CSV metrics and downloaded images land
under --output-dir (default ./output).
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from livepeer_stress.batch import BatchSpec, format_gateway_summary, run_batch, run_batches
from livepeer_stress.config import TOTAL_PROMPT_TOKENS, StressConfig, config_from_args
from livepeer_stress.errors import ConfigurationError
from livepeer_stress.payloads import image_payload, llm_payload
from livepeer_stress.prompts import IMAGE_PROMPT_KEY, LLM_PROMPT_KEY, PromptSet, read_prompts
from livepeer_stress.sinks import MetricsWriter, ResultLog, run_timestamp

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


# ----------------------------- Run layout -----------------------------

@dataclass
class RunPlan:
    specs: List[BatchSpec]
    error_log: str
    summary_log: Optional[str] = None


def _spec(config: StressConfig, target, payload, log_path: str, header: str,
          image_dir: Optional[str]) -> BatchSpec:
    stem = os.path.splitext(log_path)[0]
    return BatchSpec(
        target=target,
        payload=payload,
        log=ResultLog(log_path, header=header),
        image_dir=image_dir,
        metrics=MetricsWriter(stem + ".csv"),
        plot_path=stem + ".png" if config.plot else None,
    )


def _payload_for(config: StressConfig, call_type: str, prompts: PromptSet):
    if call_type == "llm":
        return llm_payload(prompts.llm_prompt)
    return image_payload(prompts.img_prompt, size=config.image_size)


def plan_run(config: StressConfig, prompts: PromptSet, ts: Optional[str] = None) -> RunPlan:
    """Create output directories and fresh log files for every batch of the run."""
    ts = ts or run_timestamp()

    if config.command == "llm":
        out = os.path.join(config.output_dir, "llm_gen")
        target = config.targets()[0]
        log_path = os.path.join(out, f"stress_test_results_{ts}.log")
        header = f"--- New Stress Test Run ---\nInitial prompt tokens: {TOTAL_PROMPT_TOKENS}"
        spec = _spec(config, target, _payload_for(config, "llm", prompts), log_path, header, None)
        return RunPlan(specs=[spec], error_log=log_path)

    if config.command == "image":
        run_dir = os.path.join(config.output_dir, "img_gen", f"image_stress_test_results_{ts}")
        image_dir = os.path.join(run_dir, "images")
        os.makedirs(image_dir, exist_ok=True)
        target = config.targets()[0]
        log_path = os.path.join(run_dir, "test_results.log")
        spec = _spec(config, target, _payload_for(config, "image", prompts), log_path,
                     "--- New Image Generation Stress Test Run ---", image_dir)
        return RunPlan(specs=[spec], error_log=log_path)

    out = os.path.join(config.output_dir, "dual_stress_test")
    specs = []
    for target in config.targets():
        image_dir = os.path.join(out, f"{target.label}_images")
        if target.call_type == "image":
            os.makedirs(image_dir, exist_ok=True)
        log_path = os.path.join(out, f"{target.label}_{target.call_type}_{ts}.log")
        header = f"--- {target.label.capitalize()} {'LLM' if target.call_type == 'llm' else 'Image'} Test ---"
        specs.append(_spec(config, target, _payload_for(config, target.call_type, prompts),
                           log_path, header, image_dir if target.call_type == "image" else None))
    return RunPlan(
        specs=specs,
        error_log=os.path.join(out, "dual_stress_test_errors.log"),
        summary_log=os.path.join(out, f"gateway_summary_{ts}.log"),
    )


# ----------------------------- Execution -----------------------------

async def execute(config: StressConfig, plan: RunPlan) -> int:
    for spec in plan.specs:
        logger.info("Request configuration: url=%s payload=%s", spec.target.url, spec.payload)
    print(f"Starting stress test with {config.total_requests} concurrent requests "
          f"per gateway and call type ({len(plan.specs)} batch(es))")

    if config.command != "dual":
        await run_batch(config.total_requests, plan.specs[0], config.retry)
        return config.total_requests

    stats = await run_batches(config.total_requests, plan.specs, config.retry)
    summary = format_gateway_summary(stats, config.gateways)
    with open(plan.summary_log, "w", encoding="utf-8") as f:
        f.write(summary)
    print("\nSummary written to:", plan.summary_log)
    print(summary)
    return config.total_requests * len(plan.specs)


def print_banner(config: StressConfig):
    print("--- Livepeer Stress Test ---")
    print(f"COMMAND: {config.command}")
    if config.command == "dual":
        print(f"TEST_MODE: {config.test_mode}")
    print(f"CONCURRENT_REQUESTS: {config.total_requests}")
    for label, url in config.gateways.items():
        print(f"{label} URL: {url}")
    print(f"LLM Endpoint: {config.llm_endpoint}")
    print(f"Image Endpoint: {config.image_endpoint}")
    print(f"Max retries: {config.retry.max_retries}, retry delay: {config.retry.retry_delay_ms}ms")
    print("-" * 41 + "\n")


def _required_prompts(config: StressConfig) -> List[str]:
    keys = {"llm": LLM_PROMPT_KEY, "image": IMAGE_PROMPT_KEY}
    return [keys[c] for c in config.call_types()]


# ----------------------------- CLI -----------------------------

def _add_common_args(p: argparse.ArgumentParser):
    p.add_argument("--llmEndpoint", dest="llm_endpoint", default=None,
                   help="path segment for LLM calls (env LLM_GATEWAY_ENDPOINT, default: llm)")
    p.add_argument("--imageEndpoint", dest="image_endpoint", default=None,
                   help="path segment for image calls (env IMAGE_GATEWAY_ENDPOINT, default: text-to-image)")
    p.add_argument("--max-retries", type=int, default=None, help="retries per request (env MAX_RETRIES, default: 3)")
    p.add_argument("--retry-delay-ms", type=int, default=None, help="delay between attempts (env RETRY_DELAY_MS)")
    p.add_argument("--timeout-ms", type=int, default=None, help="per-attempt timeout (default: 300000)")
    p.add_argument("--settle-delay-ms", type=int, default=None,
                   help="pause after each successful request (default: 1000)")
    p.add_argument("--prompts-file", default=None, help="prompts file (env PROMPTS_FILE, default: ./prompts)")
    p.add_argument("--output-dir", default=None, help="output root (env OUTPUT_DIR, default: ./output)")
    p.add_argument("--plot", action="store_true", help="save a duration chart next to each log")
    p.add_argument("-v", "--verbose", action="store_true", help="log payloads and response bodies")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="livepeer-stress",
                                     description="Concurrent stress tests for Livepeer gateways")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("llm", "stress the LLM endpoint of one gateway"),
                            ("image", "stress the text-to-image endpoint of one gateway")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("concurrency", nargs="?", default=None,
                       help="number of concurrent requests (env TOTAL_REQUESTS)")
        p.add_argument("--gatewayUrl", dest="gateway_url", default=None,
                       help="gateway base URL (env LIVEPEER_GATEWAY_URL)")
        _add_common_args(p)

    p = sub.add_parser("dual", help="stress LLM and/or image calls on up to two gateways at once")
    p.add_argument("--test", default=None, help='"llm", "image" or "both" (env TEST_GATEWAYS, default: both)')
    p.add_argument("--concurrency", default=None,
                   help="concurrent requests per call type per gateway (env TOTAL_REQUESTS, default: 10)")
    p.add_argument("--gateway1Url", dest="gateway1_url", default=None, help="base URL for gateway 1 (env GATEWAY_1_URL)")
    p.add_argument("--gateway2Url", dest="gateway2_url", default=None, help="base URL for gateway 2 (env GATEWAY_2_URL)")
    _add_common_args(p)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)

    try:
        config = config_from_args(args)
        prompts = read_prompts(config.prompts_file, required=_required_prompts(config))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    print_banner(config)
    try:
        plan = plan_run(config, prompts)
    except OSError as e:
        print(f"Could not prepare output in {config.output_dir}: {e}", file=sys.stderr)
        return 1
    try:
        total = asyncio.run(execute(config, plan))
    except Exception as e:
        logger.exception("Error during stress test")
        with open(plan.error_log, "a", encoding="utf-8") as f:
            f.write(f"Error during stress test: {e}\n")
        return 1

    print("\n--- Stress Test Complete ---")
    print(f"Total requests attempted: {total}")
    print("Please refer to the output logs for detailed results and timings.\n")
    return 0


def run_cli():
    sys.exit(main())


if __name__ == "__main__":
    run_cli()
