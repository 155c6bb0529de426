"""Timeouts, partial-failure handling and JSON repair for signal calls.

Each similarity signal is gathered under its own timeout and degrades into an
absent outcome instead of failing the match. Structured replies from the
vision model that arrive truncated are repaired before being given up on.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Generic, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SignalStatus(str, Enum):
    """Outcome of gathering one signal."""
    OK = "ok"
    ABSENT = "absent"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True)
class SignalOutcome(Generic[T]):
    """Immutable result of one signal call, consumed once by fusion."""
    signal: str
    status: SignalStatus
    value: T | None = None
    reason: str | None = None
    elapsed_ms: float = 0.0

    @property
    def available(self) -> bool:
        return self.status == SignalStatus.OK and self.value is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal": self.signal,
            "status": self.status.value,
            "reason": self.reason,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


@dataclass(frozen=True)
class Absent:
    """Expected "no signal" result, returned instead of raised."""
    reason: str


async def gather_signal(
    signal: str,
    call: Awaitable[T | Absent | None],
    timeout_s: float,
    expected_errors: tuple[type[BaseException], ...] = (),
) -> SignalOutcome[T]:
    """Await one signal call under its own timeout.

    A timeout, an Absent/None result or an exception becomes an outcome
    without a value plus a reason. Cancellation of the surrounding task is
    not intercepted.
    """
    started = time.perf_counter()

    def _elapsed() -> float:
        return (time.perf_counter() - started) * 1000.0

    try:
        async with asyncio.timeout(timeout_s):
            value = await call
    except TimeoutError:
        logger.warning(f"Signal '{signal}' timed out after {timeout_s:.1f}s")
        return SignalOutcome(
            signal, SignalStatus.TIMEOUT, reason=f"timed out after {timeout_s:.1f}s", elapsed_ms=_elapsed()
        )
    except expected_errors as e:
        logger.warning(f"Signal '{signal}' unavailable: {e}")
        return SignalOutcome(signal, SignalStatus.FAILED, reason=str(e), elapsed_ms=_elapsed())
    except Exception as e:
        logger.error(f"Signal '{signal}' failed unexpectedly: {e}", exc_info=True)
        return SignalOutcome(signal, SignalStatus.FAILED, reason=f"unexpected error: {e}", elapsed_ms=_elapsed())

    if value is None or isinstance(value, Absent):
        reason = value.reason if isinstance(value, Absent) else "no result"
        logger.warning(f"Signal '{signal}' absent: {reason}")
        return SignalOutcome(signal, SignalStatus.ABSENT, reason=reason, elapsed_ms=_elapsed())

    elapsed = _elapsed()
    logger.info(f"Signal '{signal}' ready in {elapsed:.0f}ms")
    return SignalOutcome(signal, SignalStatus.OK, value=value, elapsed_ms=elapsed)


def retry_policy(
    attempts: int,
    retry_on: tuple[type[BaseException], ...],
) -> AsyncRetrying:
    """Retry configuration shared by the service clients.

    One attempt (the default everywhere) means no retry.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
    )


# JSON repair

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_PARTIAL_UNICODE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")
_PAYLOAD_START = re.compile(r"[{\[]")
_MAX_PAYLOAD_STARTS = 8
_COMPLETE_PRIMITIVE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?|true|false|null")

# Container parse states
_KEY = "key"
_COLON = "colon"
_VALUE = "value"
_NEXT = "next"


@dataclass
class _Frame:
    closer: str
    state: str

    @property
    def is_object(self) -> bool:
        return self.closer == "}"


def _closers(stack: list[_Frame]) -> str:
    return "".join(frame.closer for frame in reversed(stack))


def _trim_partial_escape(head: str, escape_pending: bool) -> str:
    """Remove an escape sequence cut off by truncation."""
    if escape_pending:
        return head[:-1]
    match = _PARTIAL_UNICODE.search(head)
    if match:
        prefix = head[: match.start() + 1]
        run = len(prefix) - len(prefix.rstrip("\\"))
        if run % 2 == 1:
            return head[: match.start()]
    return head


def repair_json(text: str) -> str:
    """Best-effort repair of truncated or wrapped JSON.

    - strips control characters, markdown fences and text around the payload
    - closes an unterminated trailing string value
    - drops a dangling key, colon, comma or partial literal
    - appends missing closing brackets/braces in nesting order

    Wrapper text may itself contain brackets, so later `{`/`[` positions are
    tried when the first candidate does not parse. The result is not
    guaranteed to parse; callers must still validate it.
    """
    cleaned = _CODE_FENCE.sub("", _CONTROL_CHARS.sub("", text)).strip()
    first: str | None = None
    position = 0
    for _ in range(_MAX_PAYLOAD_STARTS):
        match = _PAYLOAD_START.search(cleaned, position)
        if match is None:
            break
        candidate, consumed = _repair_from(cleaned[match.start():])
        if first is None:
            first = candidate
        try:
            json.loads(candidate)
        except json.JSONDecodeError:
            position = match.start() + max(consumed, 1)
            continue
        return candidate
    return cleaned if first is None else first


def _repair_from(body: str) -> tuple[str, int]:
    """Repair the payload starting at body[0]; also return how much was consumed."""
    stack: list[_Frame] = []
    safe_end = 0
    safe_closers = ""
    in_string = False
    string_is_key = False
    escape = False
    primitive_start: int | None = None

    def value_done(end: int) -> None:
        nonlocal safe_end, safe_closers
        if stack:
            stack[-1].state = _NEXT
        safe_end = end
        safe_closers = _closers(stack)

    i = 0
    while i < len(body):
        ch = body[i]

        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                if string_is_key:
                    stack[-1].state = _COLON
                else:
                    value_done(i + 1)
            i += 1
            continue

        if primitive_start is not None:
            if ch not in ",]}" and not ch.isspace():
                i += 1
                continue
            primitive_start = None
            value_done(i)

        if ch.isspace():
            pass
        elif ch in "{[":
            stack.append(_Frame("}" if ch == "{" else "]", _KEY if ch == "{" else _VALUE))
            safe_end = i + 1
            safe_closers = _closers(stack)
        elif ch in "}]":
            if not stack or stack[-1].closer != ch:
                break
            stack.pop()
            if not stack:
                return body[: i + 1], i + 1
            value_done(i + 1)
        elif ch == '"':
            in_string = True
            string_is_key = bool(stack) and stack[-1].is_object and stack[-1].state == _KEY
        elif ch == ":":
            if stack:
                stack[-1].state = _VALUE
        elif ch == ",":
            if stack:
                stack[-1].state = _KEY if stack[-1].is_object else _VALUE
        else:
            primitive_start = i
        i += 1

    if in_string and not string_is_key:
        # Truncated inside a string value: keep what arrived and close it
        head = _trim_partial_escape(body, escape)
        if stack:
            stack[-1].state = _NEXT
        return head + '"' + _closers(stack), len(body)

    if primitive_start is not None and _COMPLETE_PRIMITIVE.fullmatch(body[primitive_start:]):
        return body + _closers(stack), len(body)

    return body[:safe_end] + safe_closers, i


def parse_json_with_repair(content: str | None) -> Any | None:
    """Parse JSON, attempting one bounded repair before giving up.

    Returns:
        Parsed value, or None if the content is empty or unrepairable
    """
    if content is None or not content.strip():
        return None

    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        logger.info(f"Strict JSON parse failed ({e}); attempting repair")

    repaired = repair_json(content)
    try:
        parsed = json.loads(repaired)
    except json.JSONDecodeError as e:
        logger.warning(
            f"JSON repair failed: {e}. Repaired preview: {repaired[:200]!r}"
        )
        return None

    logger.info("Successfully repaired truncated JSON response")
    return parsed
