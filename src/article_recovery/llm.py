"""Structured LLM transport: AG2 calls, output parsing, retry, cancellation.

Every model call in the recovery loop goes through a ``StructuredLLM``: an
async callable that takes a Pydantic schema plus prompts and returns a
validated object with its token usage. ``AutogenStructuredLLM`` is the
production implementation; tests swap in a fake.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

import autogen
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .config import build_role_llm_config
from .models import ProjectConfig, RetrySettings, TokenUsage

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StructuredOutputError(ValueError):
    """Model output could not be parsed into the requested schema."""


class OperationCancelled(Exception):
    """The caller's cancel event fired while an LLM call was pending."""


class ReviewerError(RuntimeError):
    """The reviewer call failed after its retries were exhausted."""


# ---------------------------------------------------------------------------
# Call contract
# ---------------------------------------------------------------------------


@dataclass
class StructuredResponse(Generic[T]):
    object: T
    usage: TokenUsage = field(default_factory=TokenUsage)


class StructuredLLM(Protocol):
    """``(schema, system, prompt, temperature, max_tokens) -> {object, usage}``."""

    async def __call__(
        self,
        schema: type[T],
        *,
        system: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        cancel_event: asyncio.Event | None = None,
    ) -> StructuredResponse[T]: ...


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------


def extract_text(response: Any) -> str:
    """Extract the reply text from an AG2 chat response."""
    if hasattr(response, "summary") and response.summary:
        return str(response.summary).strip()
    if hasattr(response, "chat_history") and response.chat_history:
        last = response.chat_history[-1]
        return (last.get("content", "") if isinstance(last, dict) else str(last)).strip()
    return str(response).strip()


def strip_fences(raw: str) -> str:
    """Remove a wrapping markdown code fence, keeping the body."""
    text = raw.strip()
    m = re.match(r"^```[\w-]*[ \t]*\n(.*?)\n?```\s*$", text, re.DOTALL)
    if m:
        return m.group(1).strip()
    return text


def _attempt_repair(raw: str) -> str | None:
    """Lightweight repair for common LLM JSON mistakes."""
    txt = raw.strip()
    if not txt:
        return None
    if "{" in txt and "}" in txt:
        txt = txt[txt.find("{"):txt.rfind("}") + 1]
    txt = txt.replace("“", '"').replace("”", '"')
    txt = re.sub(r",\s*([}\]])", r"\1", txt)
    txt = re.sub(r'\\(?!["\\/bfnrtu])', r"\\\\", txt)
    return txt


def parse_structured(raw: str, schema: type[T]) -> T:
    """Parse model text into *schema*.

    Stages: the whole (fence-stripped) text, the outermost ``{...}``
    segment, then a repaired segment. Raises ``StructuredOutputError`` when
    none validates.
    """
    errors: list[str] = []
    stripped = strip_fences(raw)

    candidates = [("direct", stripped)]
    if "{" in stripped and "}" in stripped:
        candidates.append(("segment", stripped[stripped.find("{"):stripped.rfind("}") + 1]))
    repaired = _attempt_repair(stripped)
    if repaired:
        candidates.append(("repair", repaired))

    for stage, text in candidates:
        try:
            return schema.model_validate_json(text)
        except ValueError as e:
            errors.append(f"{stage}: {e}")

    raise StructuredOutputError(
        f"Failed to parse {schema.__name__} from model output: " + ("; ".join(errors) or "empty output")
    )


# ---------------------------------------------------------------------------
# Retry classification
# ---------------------------------------------------------------------------

_RETRYABLE_RE = re.compile(
    r"rate.?limit|too.?many.?requests|\b429\b|network|fetch.*fail|etimedout|econnreset"
    r"|econnrefused|socket.?hang.?up|\b5\d{2}\b|internal.?server.?error|service.?unavailable"
    r"|bad.?gateway|overloaded|capacity|temporarily|did not match schema|could not parse"
    r"|no object generated|failed to parse|invalid json",
    re.IGNORECASE,
)
_TIMEOUT_RE = re.compile(r"timed?.?out|timeout", re.IGNORECASE)


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable(exc: BaseException) -> bool:
    """Whether *exc* is a transient transport or format failure.

    Timeouts and cancellation are never retried.
    """
    if isinstance(exc, (OperationCancelled, asyncio.CancelledError)):
        return False
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return False
    if isinstance(exc, StructuredOutputError):
        return True

    status = _status_code(exc)
    if status is not None:
        return status == 429 or 500 <= status < 600

    message = str(exc)
    if _TIMEOUT_RE.search(message):
        return False
    return bool(_RETRYABLE_RE.search(message))


# ---------------------------------------------------------------------------
# Cancellation + retry wrappers
# ---------------------------------------------------------------------------


def check_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled("operation cancelled")


async def run_cancellable(aw: Awaitable[R], cancel_event: asyncio.Event | None) -> R:
    """Await *aw*, abandoning it as soon as *cancel_event* is set."""
    if cancel_event is None:
        return await aw
    task = asyncio.ensure_future(aw)
    if cancel_event.is_set():
        task.cancel()
        raise OperationCancelled("operation cancelled")

    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (task, waiter):
            if not pending.done():
                pending.cancel()

    if task in done:
        return task.result()
    raise OperationCancelled("operation cancelled")


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        wait = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            "%s attempt %d failed (%s), retrying in %.1fs",
            operation, state.attempt_number, exc, wait,
        )
    return _before_sleep


async def with_retry(
    fn: Callable[[], Awaitable[R]],
    settings: RetrySettings,
    *,
    operation: str = "llm call",
    cancel_event: asyncio.Event | None = None,
) -> R:
    """Run *fn* with bounded exponential backoff on transient failures.

    ``settings.max_retries`` extra attempts are made. Non-retryable errors and
    the final failure propagate unchanged.
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(settings.max_retries + 1),
        wait=wait_exponential(
            multiplier=settings.initial_delay,
            max=settings.max_delay,
            exp_base=settings.backoff_multiplier,
        ) + wait_random(0, settings.initial_delay),
        before_sleep=_log_retry(operation),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            check_cancelled(cancel_event)
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover


# ---------------------------------------------------------------------------
# AG2 implementation
# ---------------------------------------------------------------------------


def make_orchestrator() -> autogen.UserProxyAgent:
    """Create a standard orchestrator agent."""
    return autogen.UserProxyAgent(
        name="Orchestrator",
        human_input_mode="NEVER",
        code_execution_config=False,
    )


class AutogenStructuredLLM:
    """``StructuredLLM`` backed by a single-turn AG2 chat.

    A fresh ``AssistantAgent`` is created per call so the schema can be set
    as ``response_format`` and no history leaks between calls.
    """

    def __init__(self, config: ProjectConfig, role: str) -> None:
        self.config = config
        self.role = role

    def _make_agent(
        self,
        schema: type[BaseModel],
        system: str,
        temperature: float,
        max_tokens: int,
    ) -> autogen.AssistantAgent:
        llm_config = build_role_llm_config(self.role, self.config)
        llm_config["temperature"] = temperature
        llm_config["max_tokens"] = max_tokens
        agent = autogen.AssistantAgent(
            name=self.role.replace(" ", "_").title().replace("_", ""),
            llm_config=llm_config,
            system_message=system,
        )
        if isinstance(agent.llm_config, dict):
            agent.llm_config["response_format"] = schema
        return agent

    async def __call__(
        self,
        schema: type[T],
        *,
        system: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        cancel_event: asyncio.Event | None = None,
    ) -> StructuredResponse[T]:
        agent = self._make_agent(schema, system, temperature, max_tokens)
        orchestrator = make_orchestrator()
        response = await run_cancellable(
            orchestrator.a_initiate_chat(agent, message=prompt, max_turns=1, silent=True),
            cancel_event,
        )
        usage = TokenUsage.from_autogen_cost(getattr(response, "cost", None))
        obj = parse_structured(extract_text(response), schema)
        logger.debug("%s: %s parsed (%d in / %d out tokens)", self.role, schema.__name__, usage.input, usage.output)
        return StructuredResponse(object=obj, usage=usage)
