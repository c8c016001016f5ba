"""Analyzers module: task prompts, the task registry and the resilient executor."""

from product_insight.analyzers.prompts import (
    SYSTEM_INSTRUCTION,
    TaskPrompt,
    render_prompt,
)
from product_insight.analyzers.task_registry import (
    TaskSpec,
    TASK_REGISTRY,
    TASK_IDS,
    UnknownTaskError,
    get_task_spec,
    get_task_name,
    fallback_confidence,
)
from product_insight.analyzers.task_executor import (
    ResilientTaskExecutor,
    clean_json_response,
    parse_json_safely,
    EmptyResponseError,
    ResponseParseError,
    ResponseValidationError,
)

__all__ = [
    # Prompts
    "SYSTEM_INSTRUCTION",
    "TaskPrompt",
    "render_prompt",
    # Registry
    "TaskSpec",
    "TASK_REGISTRY",
    "TASK_IDS",
    "UnknownTaskError",
    "get_task_spec",
    "get_task_name",
    "fallback_confidence",
    # Executor
    "ResilientTaskExecutor",
    "clean_json_response",
    "parse_json_safely",
    "EmptyResponseError",
    "ResponseParseError",
    "ResponseValidationError",
]
