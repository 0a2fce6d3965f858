from __future__ import annotations
from typing import Any, Dict

from livepeer_stress.config import IMAGE_MODEL, LLM_MAX_TOKENS, LLM_MODEL, SYSTEM_PROMPT

JSON_HEADERS = {"Content-Type": "application/json"}
# The gateway is asked for an event stream even though the body sets stream=false.
LLM_HEADERS = {"Accept": "text/event-stream", "Content-Type": "application/json"}


def llm_payload(prompt: str, model: str = LLM_MODEL, max_tokens: int = LLM_MAX_TOKENS) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        "max_tokens": max_tokens,
        "stream": False,
    }


def image_payload(prompt: str, size: int = 1024, model_id: str = IMAGE_MODEL) -> Dict[str, Any]:
    return {
        "model_id": model_id,
        "prompt": prompt,
        "width": size,
        "height": size,
    }


def headers_for(call_type: str) -> Dict[str, str]:
    return dict(LLM_HEADERS if call_type == "llm" else JSON_HEADERS)
