"""
Configuration for the stress test commands.

Every setting is resolved in the same order: command-line flag, then environment
variable, then the hard-coded default below. Missing or malformed required values
raise ConfigurationError before any request is issued.
"""

from __future__ import annotations
import argparse
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from livepeer_stress.errors import ConfigurationError

# ----------------------------- Defaults -----------------------------

LLM_MODEL = "meta-llama/Meta-Llama-3.1-8B-Instruct"
IMAGE_MODEL = "ByteDance/SDXL-Lightning"
SYSTEM_PROMPT = "You are a helpful assistant"
LLM_MAX_TOKENS = 1000

# Estimated token usage of the LLM prompt, written at the top of the LLM log.
SYSTEM_PROMPT_TOKENS = 32
USER_PROMPT_TOKENS = 1024
TOTAL_PROMPT_TOKENS = SYSTEM_PROMPT_TOKENS + USER_PROMPT_TOKENS

DEFAULT_LLM_ENDPOINT = "llm"
DEFAULT_IMAGE_ENDPOINT = "text-to-image"
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_MS = 300_000
DEFAULT_SETTLE_DELAY_MS = 1000
DEFAULT_PROMPTS_FILE = "prompts"
DEFAULT_OUTPUT_DIR = "output"

TEST_MODES = ("llm", "image", "both")
CALL_TYPES = ("llm", "image")

# per command: (default request count, default retry delay ms, default image size)
COMMAND_DEFAULTS = {
    "llm": (50, 1000, 1024),
    "image": (2, 2000, 1024),
    "dual": (10, 2000, 512),
}


# ----------------------------- Configuration classes -----------------------------

@dataclass(frozen=True)
class RetrySettings:
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = 2000
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    settle_delay_ms: int = DEFAULT_SETTLE_DELAY_MS


@dataclass(frozen=True)
class GatewayTarget:
    """One (gateway, call type) pair a batch is fired at."""
    label: str
    base_url: str
    endpoint: str
    call_type: str

    @property
    def url(self) -> str:
        return join_url(self.base_url, self.endpoint)


@dataclass
class StressConfig:
    command: str
    gateways: Dict[str, str]
    total_requests: int
    test_mode: str = "both"
    llm_endpoint: str = DEFAULT_LLM_ENDPOINT
    image_endpoint: str = DEFAULT_IMAGE_ENDPOINT
    image_size: int = 1024
    retry: RetrySettings = field(default_factory=RetrySettings)
    prompts_file: str = DEFAULT_PROMPTS_FILE
    output_dir: str = DEFAULT_OUTPUT_DIR
    plot: bool = False

    def call_types(self) -> List[str]:
        if self.command in CALL_TYPES:
            return [self.command]
        if self.test_mode == "both":
            return ["image", "llm"]
        return [self.test_mode]

    def targets(self) -> List[GatewayTarget]:
        targets = []
        for label, base_url in self.gateways.items():
            for call_type in self.call_types():
                endpoint = self.llm_endpoint if call_type == "llm" else self.image_endpoint
                targets.append(GatewayTarget(label, base_url, endpoint, call_type))
        return targets


# ----------------------------- Resolution helpers -----------------------------

def join_url(base_url: str, path: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def get_arg_value(flag_value: Optional[str], env_var: str, default: Optional[str]) -> Optional[str]:
    """Flag value if given, else the environment variable, else the default."""
    if flag_value not in (None, ""):
        return str(flag_value)
    env_value = os.environ.get(env_var)
    if env_value:
        return env_value
    return default


def parse_int(value, name: str, minimum: int = 0) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if parsed < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {parsed}")
    return parsed


def _resolve_gateways(args: argparse.Namespace) -> Dict[str, str]:
    if args.command == "dual":
        gateways = {}
        gw1 = get_arg_value(getattr(args, "gateway1_url", None), "GATEWAY_1_URL", "")
        gw2 = get_arg_value(getattr(args, "gateway2_url", None), "GATEWAY_2_URL", "")
        if gw1:
            gateways["gateway1"] = gw1
        if gw2:
            gateways["gateway2"] = gw2
        if not gateways:
            raise ConfigurationError(
                "At least one gateway URL must be specified (--gateway1Url/GATEWAY_1_URL "
                "or --gateway2Url/GATEWAY_2_URL)."
            )
        return gateways

    url = get_arg_value(getattr(args, "gateway_url", None), "LIVEPEER_GATEWAY_URL", "")
    if not url:
        raise ConfigurationError("LIVEPEER_GATEWAY_URL environment variable not set (or pass --gatewayUrl)")
    return {"gateway": url}


def config_from_args(args: argparse.Namespace) -> StressConfig:
    """Build a StressConfig from parsed CLI arguments and the environment."""
    if args.command not in COMMAND_DEFAULTS:
        raise ConfigurationError(f"Unknown command {args.command!r}")
    default_total, default_delay, image_size = COMMAND_DEFAULTS[args.command]

    gateways = _resolve_gateways(args)

    test_mode = "both"
    if args.command == "dual":
        test_mode = get_arg_value(getattr(args, "test", None), "TEST_GATEWAYS", "both")
    if test_mode not in TEST_MODES:
        raise ConfigurationError(f"--test must be one of {', '.join(TEST_MODES)}, got {test_mode!r}")

    total = get_arg_value(getattr(args, "concurrency", None), "TOTAL_REQUESTS", str(default_total))
    retry = RetrySettings(
        max_retries=parse_int(
            get_arg_value(args.max_retries, "MAX_RETRIES", str(DEFAULT_MAX_RETRIES)), "max retries"
        ),
        retry_delay_ms=parse_int(
            get_arg_value(args.retry_delay_ms, "RETRY_DELAY_MS", str(default_delay)), "retry delay"
        ),
        timeout_ms=parse_int(args.timeout_ms if args.timeout_ms is not None else DEFAULT_TIMEOUT_MS,
                             "timeout", minimum=1),
        settle_delay_ms=parse_int(
            args.settle_delay_ms if args.settle_delay_ms is not None else DEFAULT_SETTLE_DELAY_MS,
            "settle delay",
        ),
    )

    return StressConfig(
        command=args.command,
        gateways=gateways,
        total_requests=parse_int(total, "request count", minimum=1),
        test_mode=test_mode,
        llm_endpoint=get_arg_value(args.llm_endpoint, "LLM_GATEWAY_ENDPOINT", DEFAULT_LLM_ENDPOINT),
        image_endpoint=get_arg_value(args.image_endpoint, "IMAGE_GATEWAY_ENDPOINT", DEFAULT_IMAGE_ENDPOINT),
        image_size=image_size,
        retry=retry,
        prompts_file=get_arg_value(args.prompts_file, "PROMPTS_FILE", DEFAULT_PROMPTS_FILE),
        output_dir=get_arg_value(args.output_dir, "OUTPUT_DIR", DEFAULT_OUTPUT_DIR),
        plot=bool(getattr(args, "plot", False)),
    )
