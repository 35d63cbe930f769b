"""
Text-understanding backend built on the OpenAI chat completions API.

Used by deep requirement extraction to infer implicit requirements. Calls are
throttled by a FIFO limiter and retried with bounded exponential backoff;
persistent failure surfaces as BackendUnavailable.
"""

import json
import time
import logging
from typing import Any, Callable, Dict, Optional

import openai
from openai import OpenAI

from grant_engine.core.config import EngineConfig
from grant_engine.core.errors import BackendUnavailable
from .limiter import FifoLimiter

logger = logging.getLogger(__name__)


# Failures worth retrying: timeouts, dropped connections, throttling, 5xx
TRANSIENT_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    TimeoutError,
    ConnectionError,
)


class TextBackend:
    """
    JSON-mode chat client with throttling and retries.

    Usage:
        backend = TextBackend.from_config(config)
        data = backend.complete_json(system_prompt, user_prompt)
    """

    def __init__(
        self,
        client: Any,
        model: str = "gpt-4o-mini",
        limiter: Optional[FifoLimiter] = None,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize backend.

        Args:
            client: OpenAI client (or any object exposing chat.completions.create)
            model: Chat model name
            limiter: Shared concurrency limiter; defaults to 4 concurrent calls
            max_retries: Retries after the first attempt
            base_delay: First backoff delay in seconds (doubles per retry)
            max_delay: Backoff ceiling in seconds
            sleep: Sleep function (injectable for tests)
        """
        self.client = client
        self.model = model
        self.limiter = limiter or FifoLimiter(4)
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: EngineConfig,
                    limiter: Optional[FifoLimiter] = None) -> Optional["TextBackend"]:
        """
        Build a backend from configuration.

        Returns None when no API key is configured; deep extraction then
        relies on the built-in implication rules only.
        """
        if not config.openai_api_key:
            logger.info("OPENAI_API_KEY not set - text backend disabled")
            return None

        client = OpenAI(
            api_key=config.openai_api_key,
            timeout=config.backend_timeout_seconds,
            max_retries=0,  # retries handled here
        )
        logger.info(f"Text backend initialized with model: {config.openai_model}")
        return cls(
            client=client,
            model=config.openai_model,
            limiter=limiter or FifoLimiter(config.max_concurrent_requests),
            max_retries=config.backend_max_retries,
        )

    def _backoff(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    def _call(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        with self.limiter.slot():
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0,
                response_format={"type": "json_object"},
            )
        content = response.choices[0].message.content or "{}"
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError("backend returned non-object JSON")
        return data

    def complete_json(self, system_prompt: str, user_prompt: str,
                      operation: str = "analyze_grant_requirements") -> Dict[str, Any]:
        """
        Run one JSON-mode completion.

        Raises:
            BackendUnavailable: after the retry ceiling is reached
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                return self._call(system_prompt, user_prompt)
            except TRANSIENT_ERRORS as e:
                last_error = e
            except (json.JSONDecodeError, ValueError) as e:
                # Malformed output is treated like a transient failure
                last_error = e

            if attempt < self.max_retries:
                delay = self._backoff(attempt)
                logger.warning(
                    f"Backend call failed ({type(last_error).__name__}: {last_error}); "
                    f"retry {attempt + 1}/{self.max_retries} in {delay:.1f}s"
                )
                self._sleep(delay)

        logger.error(f"Backend unavailable after {self.max_retries + 1} attempts: {last_error}")
        raise BackendUnavailable(
            f"text backend failed after {self.max_retries + 1} attempts: {last_error}",
            operation=operation,
        )
