# universe_terminal/classifier.py

import re
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import ollama

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You judge whether a line of text is a valid POSIX shell command. "
    "Answer with a single number between 0 and 1, where 1 means certainly a valid command "
    "and 0 means certainly not a command. Output only the number."
)

_SCORE_PATTERN = re.compile(r"\d*\.?\d+")


class CommandClassifier(Protocol):
    async def classify(self, text: str) -> Optional[float]: ...


def parse_score(response_text: str) -> Optional[float]:
    """Extracts the first number from a model response and clamps it to [0, 1]."""
    # Reasoning models may wrap their answer; ignore anything inside <think> tags.
    cleaned = re.sub(r"<think>.*?</think>", "", response_text, flags=re.DOTALL)
    match = _SCORE_PATTERN.search(cleaned)
    if not match:
        return None
    return min(max(float(match.group(0)), 0.0), 1.0)


class OllamaCommandClassifier:
    """Scores input with a local Ollama model. Returns None when the model is unavailable."""

    def __init__(self, model: str, host: Optional[str] = None,
                 system_prompt: str = DEFAULT_SYSTEM_PROMPT, timeout_seconds: float = 5.0):
        self.model = model
        self.system_prompt = system_prompt
        self.timeout_seconds = timeout_seconds
        self.client = ollama.Client(host=host) if host else ollama.Client()
        logger.info(f"OllamaCommandClassifier using model '{model}' at {host or 'default host'}")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> Optional["OllamaCommandClassifier"]:
        section = config.get("classifier", {})
        if not section.get("enabled", False):
            logger.info("Command classifier disabled in configuration.")
            return None
        return cls(
            model=section.get("model", "llama3.2:3b"),
            host=section.get("host"),
            system_prompt=section.get("system_prompt", DEFAULT_SYSTEM_PROMPT),
            timeout_seconds=float(section.get("timeout_seconds", 5.0)),
        )

    async def classify(self, text: str) -> Optional[float]:
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self.client.generate, model=self.model, system=self.system_prompt, prompt=text),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Classifier timed out after {self.timeout_seconds}s for '{text}'")
            return None
        except (ollama.ResponseError, ollama.RequestError, ConnectionError) as e:
            logger.info(f"Classifier unavailable: {e}")
            return None

        try:
            raw = response["response"]
        except (KeyError, TypeError):
            logger.error(f"Unexpected classifier response shape: {response!r}")
            return None

        score = parse_score(raw)
        if score is None:
            logger.warning(f"Classifier response had no score: '{raw}'")
        else:
            logger.debug(f"Classifier score for '{text}': {score:.2f}")
        return score
