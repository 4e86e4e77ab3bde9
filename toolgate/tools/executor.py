"""Tool executor: the single gate every tool call passes through."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import yaml
from pydantic import BaseModel, ValidationError

from toolgate.tools.registry import ToolRegistry
from toolgate.tools.schema import (
    OUTCOME_TYPES,
    CapabilityDescriptor,
    ConfirmPayload,
    ErrorKind,
    ExecutionContext,
    Failure,
    NeedsConfirmation,
    Outcome,
    Success,
    ToolError,
)

logger = logging.getLogger(__name__)


def describe_validation_error(exc: ValidationError) -> str:
    """Render pydantic errors as ``field: reason; field: reason``."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "(arguments)"
        parts.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


def default_confirm_payload(descriptor: CapabilityDescriptor, arguments: Dict[str, Any]) -> ConfirmPayload:
    target = arguments.get("table") or arguments.get("filePath") or arguments.get("target")
    data = arguments.get("data")
    affected = sorted(data.keys()) if isinstance(data, dict) else sorted(
        k for k in arguments if k != "confirm"
    )
    return ConfirmPayload(
        kind=descriptor.name,
        title=f"Confirm {descriptor.name}" + (f' on "{target}"' if target else ""),
        details={"target": target, "affectedKeys": affected},
    )


class ToolExecutor:
    """
    Runs tool calls through lookup, validation, permission, confirmation and
    a timeout-supervised handler invocation, in that order.

    Every step is a hard gate: a failure returns an outcome without invoking
    the handler. Handler exceptions never escape; they are normalised into a
    :class:`Failure` with a ``retryable`` flag.

    The executor holds no state across calls. When ``results_dir`` is given,
    each outcome is also journaled to ``{results_dir}/{call_id}.yaml``.
    """

    def __init__(self, registry: ToolRegistry, results_dir: Optional[Path] = None):
        self._registry = registry
        self._results_dir = Path(results_dir) if results_dir else None
        if self._results_dir:
            self._results_dir.mkdir(parents=True, exist_ok=True)

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    # ── Execution ─────────────────────────────────────────────────────────

    async def invoke(
        self,
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
        context: ExecutionContext,
    ) -> Outcome:
        """
        Execute one tool call.

        Parameters
        ----------
        tool_name : registered descriptor name, e.g. ``db_write``
        arguments : raw argument payload from the model
        context : caller state (document, identity, granted permissions)
        """
        arguments = arguments or {}
        outcome = await self._run(tool_name, arguments, context)
        self._save_result(tool_name, arguments, outcome)
        return outcome

    async def _run(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        context: ExecutionContext,
    ) -> Outcome:
        descriptor = self._registry.lookup(tool_name)
        if descriptor is None:
            logger.warning("Unknown tool requested: %s", tool_name)
            return Failure(
                error_kind=ErrorKind.NOT_FOUND,
                message=f"Tool not found: {tool_name}",
                retryable=False,
            )

        try:
            args = descriptor.parameters.model_validate(arguments)
        except ValidationError as exc:
            message = f"Invalid arguments for {tool_name}: {describe_validation_error(exc)}"
            logger.warning(message)
            return Failure(error_kind=ErrorKind.VALIDATION, message=message, retryable=False)

        missing = descriptor.permissions - context.permissions
        if missing:
            logger.warning("Permission denied for %s: missing %s", tool_name, sorted(missing))
            return Failure(
                error_kind=ErrorKind.PERMISSION_DENIED,
                message=f"Permission denied for {tool_name}: requires {', '.join(sorted(missing))}",
                retryable=False,
            )

        if descriptor.metadata.requires_confirm and arguments.get("confirm") is not True:
            if descriptor.confirm_builder:
                payload = descriptor.confirm_builder(args)
            else:
                payload = default_confirm_payload(descriptor, arguments)
            logger.info("Tool %s awaiting confirmation", tool_name)
            return NeedsConfirmation(confirm_payload=payload)

        return await self._supervise(descriptor, args, context)

    async def _supervise(
        self,
        descriptor: CapabilityDescriptor,
        args: BaseModel,
        context: ExecutionContext,
    ) -> Outcome:
        timeout_s = descriptor.metadata.timeout_ms / 1000
        t0 = time.perf_counter()
        try:
            result = await asyncio.wait_for(descriptor.handler(args, context), timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %dms", descriptor.name, descriptor.metadata.timeout_ms)
            return Failure(
                error_kind=ErrorKind.TIMEOUT,
                message=f"Tool {descriptor.name} timed out after {descriptor.metadata.timeout_ms}ms",
                retryable=True,
            )
        except ToolError as exc:
            logger.warning("Tool %s failed (%s): %s", descriptor.name, exc.kind.value, exc.message)
            return Failure(error_kind=exc.kind, message=exc.message, retryable=exc.retryable)
        except (httpx.TransportError, httpx.HTTPStatusError) as exc:
            logger.warning("Tool %s upstream error: %s", descriptor.name, exc)
            return Failure(
                error_kind=ErrorKind.TRANSIENT,
                message=f"Upstream request failed: {exc}",
                retryable=True,
            )
        except Exception as exc:
            logger.exception("Tool %s failed", descriptor.name)
            return Failure(
                error_kind=ErrorKind.INTERNAL,
                message=f"{type(exc).__name__}: {exc}",
                retryable=False,
            )

        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        logger.info("Tool %s executed in %dms", descriptor.name, elapsed_ms)

        if isinstance(result, OUTCOME_TYPES):
            return result
        return Success(output=result)

    # ── Result Persistence ────────────────────────────────────────────────

    @staticmethod
    def make_call_id(tool_name: str, arguments: Dict[str, Any]) -> str:
        raw = f"{tool_name}:{arguments}:{datetime.now(timezone.utc).isoformat()}"
        return hashlib.sha256(raw.encode()).hexdigest()[:12]

    def _save_result(self, tool_name: str, arguments: Dict[str, Any], outcome: Outcome) -> None:
        if not self._results_dir:
            return
        call_id = self.make_call_id(tool_name, arguments)
        path = self._results_dir / f"{call_id}.yaml"
        # The outcome is returned to the caller whether or not it was journaled.
        try:
            record = {
                "call_id": call_id,
                "tool_name": tool_name,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "outcome": outcome.model_dump(mode="json"),
                "summary": self.summarize(outcome.to_tool_message()),
            }
            with open(path, "w") as f:
                yaml.dump(record, f, default_flow_style=False, sort_keys=False)
        except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
            logger.error("Failed to journal result of %s to %s: %s", tool_name, path, e)

    def get_result(self, call_id: str) -> Optional[Dict[str, Any]]:
        """Read a previously journaled outcome record."""
        if not self._results_dir:
            return None
        path = self._results_dir / f"{call_id}.yaml"
        if not path.exists():
            return None
        with open(path) as f:
            return yaml.safe_load(f)

    # ── Summarization ─────────────────────────────────────────────────────

    @staticmethod
    def summarize(output: str, max_chars: int = 500) -> str:
        """Shorten tool output for display, keeping its head and tail."""
        if not output:
            return "(empty output)"
        if len(output) <= max_chars:
            return output
        head = output[: max_chars // 2]
        tail = output[-(max_chars // 2) :]
        omitted = len(output) - max_chars
        return f"{head}\n... [{omitted} chars omitted] ...\n{tail}"


async def invoke_with_retries(
    executor: ToolExecutor,
    tool_name: str,
    arguments: Optional[Dict[str, Any]],
    context: ExecutionContext,
    delay: float = 0.0,
) -> Outcome:
    """
    Caller-side retry loop.

    Re-submits up to ``metadata.max_retries`` times while the outcome is a
    retryable :class:`Failure`. The executor itself keeps no retry state.
    """
    outcome = await executor.invoke(tool_name, arguments, context)
    descriptor = executor.registry.lookup(tool_name)
    if descriptor is None:
        return outcome

    attempts = 0
    while (
        isinstance(outcome, Failure)
        and outcome.retryable
        and attempts < descriptor.metadata.max_retries
    ):
        attempts += 1
        logger.info(
            "Retrying %s (%d/%d) after %s",
            tool_name, attempts, descriptor.metadata.max_retries, outcome.error_kind.value,
        )
        if delay:
            await asyncio.sleep(delay)
        outcome = await executor.invoke(tool_name, arguments, context)
    return outcome
