"""
Resilient execution of a single analysis task.

``ResilientTaskExecutor.execute`` turns one prompt into one validated JSON
object. It never raises: every failure (transport, timeout, empty or
malformed output, output of the wrong shape) consumes an attempt, and once
the attempts are spent the task's static fallback payload is returned with
a reduced confidence score. Authorization failures skip the remaining
attempts.

Example:
    >>> executor = ResilientTaskExecutor(chat_service)
    >>> outcome = await executor.execute("categorizer", prompt, 0.8)
    >>> outcome.data["main_category"], outcome.degraded
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Optional

from product_insight.analyzers.prompts import SYSTEM_INSTRUCTION
from product_insight.analyzers.task_registry import (
    CONFIDENCE_FIELD,
    TASK_REGISTRY,
    TaskSpec,
    fallback_confidence,
)
from product_insight.config.settings import Settings, get_settings
from product_insight.models.schemas import TaskOutcome
from product_insight.services.llm_service import ChatService
from product_insight.utils.logger import get_logger
from product_insight.utils.retry import (
    ErrorHandler,
    RetriesExhaustedError,
    StructuralError,
    compute_backoff,
)

logger = get_logger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class EmptyResponseError(StructuralError):
    pass


class ResponseParseError(StructuralError):
    """Output was not JSON even after repairs."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


class ResponseValidationError(StructuralError):
    """Output parsed but lacks the task's required fields."""

    def __init__(self, task_id: str, errors: list[str]):
        super().__init__(f"{task_id} output failed validation: {'; '.join(errors[:5])}")
        self.task_id = task_id
        self.errors = errors


# =============================================================================
# JSON Cleaning and Repair
# =============================================================================

CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")

JSON_REPAIRS: list[tuple[re.Pattern, str]] = [
    (re.compile(r",\s*}"), "}"),
    (re.compile(r",\s*]"), "]"),
    (re.compile(r"([{,]\s*)([A-Za-z_]\w*)\s*:"), r'\1"\2":'),
    (re.compile(r":\s*'([^']*?)'"), r': "\1"'),
]


def clean_json_response(raw: str) -> str:
    """Strip code fences and any prose around the outermost ``{...}`` span."""
    cleaned = CODE_FENCE.sub("", raw).strip()
    match = OBJECT_SPAN.search(cleaned)
    return match.group(0) if match else cleaned


def repair_json(text: str) -> str:
    """Apply the bounded set of syntactic repairs."""
    for pattern, replacement in JSON_REPAIRS:
        text = pattern.sub(replacement, text)
    return text


def parse_json_safely(text: str) -> dict[str, Any]:
    """
    Parse a JSON object, repairing common model mistakes once.

    Raises:
        ResponseParseError: Unparseable after repairs, or not an object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(repair_json(text))
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"Invalid JSON after repair: {e}", raw_response=text) from e
    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}", raw_response=text)
    return data


def apply_confidence(data: dict[str, Any], default_confidence: float) -> dict[str, Any]:
    """Inject the default confidence when missing; clamp into [0, 1]."""
    value = data.get(CONFIDENCE_FIELD)
    if isinstance(value, bool) or value is None:
        score = default_confidence
    else:
        try:
            score = float(value)
        except (TypeError, ValueError):
            score = default_confidence
    data[CONFIDENCE_FIELD] = min(max(score, 0.0), 1.0)
    return data


GENERIC_FALLBACK = {"analysis": "unavailable", "details": {}}


# =============================================================================
# Executor
# =============================================================================

class ResilientTaskExecutor:
    """
    Runs one task against the generative backend with retry and fallback.

    Attributes:
        chat_service: Backend used for every attempt
        registry: task_id -> TaskSpec used for validation and fallbacks
        model: Model name passed to the backend
        timeout_seconds: Bound on a single backend call
    """

    def __init__(
        self,
        chat_service: ChatService,
        settings: Optional[Settings] = None,
        registry: Optional[dict[str, TaskSpec]] = None,
        model: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        self.chat_service = chat_service
        self.registry = registry if registry is not None else TASK_REGISTRY
        self.model = model or self.settings.active_model
        self.timeout_seconds = float(self.settings.request_timeout_seconds)
        self.backoff_cap_seconds = self.settings.backoff_cap_seconds

    async def execute(
        self,
        task_id: str,
        prompt: str,
        default_confidence: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> TaskOutcome:
        """
        Execute a task prompt until it yields valid output or attempts run out.

        Args:
            task_id: Registry key; unknown ids accept any JSON object.
            prompt: Fully rendered task prompt.
            default_confidence: Used when the output has no confidence score.
            max_retries: Number of attempts, settings default when omitted.

        Returns:
            TaskOutcome, ``degraded=True`` when it carries the fallback.
        """
        spec = self.registry.get(task_id)
        if default_confidence is None:
            default_confidence = spec.default_confidence if spec else 0.5
        max_retries = max(1, max_retries or self.settings.max_retries)

        messages = [
            {"role": "system", "content": SYSTEM_INSTRUCTION},
            {"role": "user", "content": prompt},
        ]

        last_error: Optional[Exception] = None
        attempts = 0
        for attempt in range(1, max_retries + 1):
            attempts = attempt
            try:
                data = await self._attempt(task_id, spec, messages)
                data = apply_confidence(data, default_confidence)
                logger.info("Task succeeded", task_id=task_id, attempt=attempt)
                return TaskOutcome(
                    data=data,
                    confidence_score=data[CONFIDENCE_FIELD],
                    attempts=attempt,
                )
            except Exception as e:
                last_error = e
                category = ErrorHandler.categorize_error(e)
                logger.warning(
                    "Task attempt failed",
                    task_id=task_id,
                    attempt=attempt,
                    max_retries=max_retries,
                    category=category.value,
                    error=ErrorHandler.describe(e),
                )
                if not ErrorHandler.is_retryable(e):
                    logger.error("Non-retryable failure, skipping retries", task_id=task_id, category=category.value)
                    break
                if attempt < max_retries:
                    await self._sleep(compute_backoff(attempt, cap_seconds=self.backoff_cap_seconds))
                else:
                    last_error = RetriesExhaustedError(
                        f"{task_id} gave up after {attempt} attempts: {ErrorHandler.describe(e)}"
                    )

        return self._fallback(task_id, spec, default_confidence, attempts, last_error)

    async def _attempt(
        self,
        task_id: str,
        spec: Optional[TaskSpec],
        messages: list[dict[str, str]],
    ) -> dict[str, Any]:
        raw = await asyncio.wait_for(
            self.chat_service.chat(self.model, messages),
            timeout=self.timeout_seconds,
        )
        if not raw or not raw.strip():
            raise EmptyResponseError("Empty response from backend")

        data = parse_json_safely(clean_json_response(raw))
        if spec is not None and not spec.validate(data):
            raise ResponseValidationError(task_id, spec.validation_errors(data))
        return data

    def _fallback(
        self,
        task_id: str,
        spec: Optional[TaskSpec],
        default_confidence: float,
        attempts: int,
        last_error: Optional[Exception],
    ) -> TaskOutcome:
        if spec is not None:
            data = spec.fallback()
        else:
            data = dict(GENERIC_FALLBACK)
            data[CONFIDENCE_FIELD] = fallback_confidence(default_confidence)

        logger.warning(
            "Task fell back to static payload",
            task_id=task_id,
            attempts=attempts,
            last_error=ErrorHandler.describe(last_error) if last_error else None,
        )
        return TaskOutcome(
            data=data,
            confidence_score=data[CONFIDENCE_FIELD],
            degraded=True,
            attempts=attempts,
            last_error=ErrorHandler.describe(last_error) if last_error else None,
        )

    async def _sleep(self, seconds: float) -> None:
        """Backoff pause; separate method so tests can skip the wait."""
        await asyncio.sleep(seconds)


__all__ = [
    "ResilientTaskExecutor",
    "clean_json_response",
    "repair_json",
    "parse_json_safely",
    "apply_confidence",
    "EmptyResponseError",
    "ResponseParseError",
    "ResponseValidationError",
]
