"""
Wide-event logging for the click pipelines.

Each decorated run owns one ``WideEventContext``. The pipeline code fills it
while it works (steps, metrics, recovered errors) and the decorator turns it
into a single JSON line on stdout when the run ends, whatever the outcome.
"""

import functools
import time
import traceback
from contextlib import contextmanager
from typing import Any, Callable

import orjson
import psutil
import structlog


structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        # orjson devuelve bytes, por eso el logger escribe en stdout binario
        structlog.processors.JSONRenderer(serializer=orjson.dumps),
    ],
    logger_factory=structlog.BytesLoggerFactory(),
)

logger = structlog.get_logger("clickstats")

_PROCESS = psutil.Process()
_MB = 1024 * 1024


def rss_mb() -> float:
    """Resident set size of this process, in MB."""
    return round(_PROCESS.memory_info().rss / _MB, 2)


def elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 4)


class WideEventContext:
    """Everything one pipeline run wants to report, gathered until the run ends."""

    def __init__(self):
        self.steps: dict[str, dict] = {}
        self.metrics: dict[str, Any] = {}
        self.extra_context: dict[str, Any] = {}
        self.errors: list[dict] = []
        self.opened_at = time.perf_counter()
        self.rss_at_open = rss_mb()

    def add_context(self, **fields):
        self.extra_context.update(fields)

    def add_metric(self, name: str, value: Any):
        self.metrics[name] = value

    def add_step(self, name: str, duration_ms: float, **metadata):
        self.steps[name] = dict(metadata, duration_ms=duration_ms, memory_mb=rss_mb())

    @contextmanager
    def step(self, name: str, **metadata):
        """Records the enclosed block as step ``name``; a block that raises is still recorded."""
        t0 = time.perf_counter()
        try:
            yield self
        finally:
            self.add_step(name, elapsed_ms(t0), **metadata)

    def register_error(self, error_type: str, message: str, **details):
        """Notes a condition the run recovered from (skipped row, join miss)."""
        self.errors.append(dict(details, type=error_type, message=message, timestamp=time.time()))

    def as_event(self, function: str, failure: BaseException | None = None, stack_trace: str | None = None) -> dict:
        rss_now = rss_mb()
        event = {
            "status": "success" if failure is None else "failure",
            "total_duration_ms": elapsed_ms(self.opened_at),
            "memory_usage": {
                "start_mb": self.rss_at_open,
                "end_mb": rss_now,
                "delta_mb": round(rss_now - self.rss_at_open, 2),
            },
            "context": {"function": function, **self.extra_context},
            "metrics": self.metrics,
            "steps": self.steps,
        }
        if self.errors:
            event["non_fatal_errors"] = self.errors
        if failure is not None:
            event.update(
                failure_type=type(failure).__name__,
                failure_reason=str(failure),
                stack_trace=stack_trace,
            )
        return event


def canonical_logger(event_name: str):
    """
    Wraps a pipeline so that each call emits exactly one ``event_name`` line.

    The function gets a fresh ``ctx`` keyword unless the caller supplies its
    own. Success logs at info level; an exception logs at error level with
    its type, message and traceback, and then propagates unchanged.
    """

    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, ctx: WideEventContext | None = None, **kwargs):
            if ctx is None:
                ctx = WideEventContext()
            try:
                result = func(*args, ctx=ctx, **kwargs)
            except Exception as e:
                logger.error(event_name, **ctx.as_event(func.__name__, e, traceback.format_exc()))
                raise
            logger.info(event_name, **ctx.as_event(func.__name__))
            return result

        return wrapper

    return decorator
