"""AI Resilience Layer — Retry and Circuit Breaker around the Gemini call.

resilient_chat() is the single entry point the AI helper uses. Transient
provider errors are retried with exponential backoff; repeated failures open
a circuit so a struggling provider is not hammered by a whole classroom.
Any failure surfaces as AIProviderError.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

PROVIDER = "gemini"


class AIProviderError(Exception):
    """The AI provider could not produce a reply."""


class TransientLLMError(Exception):
    """Wrapper for transient LLM errors that should be retried."""


# ── Circuit Breaker ─────────────────────────────────────────

@dataclass
class _ProviderState:
    failures: int = 0
    state: str = "closed"  # closed | open | half_open
    last_failure_time: float = 0.0


class CircuitBreaker:
    """Per-provider state machine: closed -> open -> half_open -> closed."""

    FAILURE_THRESHOLD = 3
    RECOVERY_TIMEOUT = 60  # seconds

    def __init__(self, clock=time.time) -> None:
        self._providers: dict[str, _ProviderState] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _get_state(self, provider: str) -> _ProviderState:
        return self._providers.setdefault(provider, _ProviderState())

    def record_success(self, provider: str) -> None:
        with self._lock:
            state = self._get_state(provider)
            state.failures = 0
            state.state = "closed"

    def record_failure(self, provider: str) -> None:
        with self._lock:
            state = self._get_state(provider)
            state.failures += 1
            state.last_failure_time = self._clock()
            if state.failures >= self.FAILURE_THRESHOLD:
                state.state = "open"

    def is_open(self, provider: str) -> bool:
        with self._lock:
            state = self._get_state(provider)
            if state.state == "open":
                if self._clock() - state.last_failure_time >= self.RECOVERY_TIMEOUT:
                    state.state = "half_open"
                    return False  # allow one attempt
                return True
            return False

    def get_state(self, provider: str) -> str:
        with self._lock:
            return self._get_state(provider).state


_circuit_breaker = CircuitBreaker()


def get_circuit_breaker() -> CircuitBreaker:
    return _circuit_breaker


# ── Transient error detection ───────────────────────────────

_TRANSIENT_ERRORS = (ConnectionError, TimeoutError)

_TRANSIENT_PATTERNS = (
    "rate limit", "429", "500", "502", "503",
    "overloaded", "temporarily unavailable", "timeout", "deadline",
)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    msg = str(exc).lower()
    return any(p in msg for p in _TRANSIENT_PATTERNS)


# ── Provider call ───────────────────────────────────────────

def _do_call(api_key: str, model: str, system: str, messages: list[dict]) -> str:
    """One Gemini request (no retry). ``messages`` use roles user/assistant."""
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    m = genai.GenerativeModel(model, system_instruction=system or None)
    contents = [
        {"role": "model" if msg["role"] == "assistant" else "user", "parts": [msg["content"]]}
        for msg in messages
    ]
    response = m.generate_content(contents)
    return (response.text or "").strip()


@retry(
    retry=retry_if_exception_type(TransientLLMError),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _call_with_retry(api_key: str, model: str, system: str, messages: list[dict]) -> str:
    try:
        return _do_call(api_key, model, system, messages)
    except Exception as exc:
        if _is_transient(exc):
            raise TransientLLMError(str(exc)) from exc
        raise


def resilient_chat(api_key: str, model: str, system: str, messages: list[dict]) -> str:
    """Reply text for the conversation, or AIProviderError."""
    if _circuit_breaker.is_open(PROVIDER):
        raise AIProviderError("The AI helper is temporarily unavailable.")

    start = time.time()
    try:
        reply = _call_with_retry(api_key, model, system, messages)
    except Exception as exc:
        _circuit_breaker.record_failure(PROVIDER)
        logger.error("AI provider call failed: %s", exc)
        raise AIProviderError("The AI helper could not answer right now.") from exc

    _circuit_breaker.record_success(PROVIDER)
    logger.info("AI reply in %dms (model=%s)", int((time.time() - start) * 1000), model)
    if not reply:
        raise AIProviderError("The AI helper returned an empty answer.")
    return reply
