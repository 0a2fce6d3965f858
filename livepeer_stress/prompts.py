from __future__ import annotations
import os
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from livepeer_stress.errors import ConfigurationError, MissingPromptError

LLM_PROMPT_KEY = "llm_prompt"
IMAGE_PROMPT_KEY = "img_prompt"
PROMPT_KEYS = (LLM_PROMPT_KEY, IMAGE_PROMPT_KEY)

_KEY_LINE = re.compile(r"^\s*(%s)\s*=\s?(.*)$" % "|".join(PROMPT_KEYS))


@dataclass(frozen=True)
class PromptSet:
    llm_prompt: Optional[str] = None
    img_prompt: Optional[str] = None


def parse_prompts(text: str) -> Dict[str, str]:
    """Split prompts file content into {key: trimmed value}.

    A value starts after ``key=``. ``img_prompt`` ends with its line; ``llm_prompt``
    keeps collecting the following lines until the next recognised key line.
    Lines before the first key are ignored.
    """
    values: Dict[str, list] = {}
    current = None
    for line in text.splitlines():
        m = _KEY_LINE.match(line)
        if m:
            key = m.group(1)
            values[key] = [m.group(2)]
            current = key if key == LLM_PROMPT_KEY else None
        elif current is not None:
            values[current].append(line)
    return {key: "\n".join(lines).strip() for key, lines in values.items()}


def read_prompts(path: str, required: Iterable[str] = PROMPT_KEYS) -> PromptSet:
    """Read the prompts file at ``path`` and check the ``required`` keys are present."""
    if not os.path.exists(path):
        raise ConfigurationError(f"Could not find prompts file at {path}")
    with open(path, "r", encoding="utf-8") as f:
        values = parse_prompts(f.read())

    for key in required:
        if not values.get(key):
            raise MissingPromptError(key, path)

    return PromptSet(
        llm_prompt=values.get(LLM_PROMPT_KEY),
        img_prompt=values.get(IMAGE_PROMPT_KEY),
    )
