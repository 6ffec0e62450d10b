"""Structured logging for Conduit, context-aware and configurable per process.

Uses structlog's ProcessorFormatter to transparently upgrade all existing
``logging.getLogger(__name__)`` call sites. Zero changes needed at call sites.

Two output formats:
- ``text``: Colored, human-readable console output (dev default)
- ``json``: Machine-parseable JSON lines (production / log aggregation)

Service identity, the active workflow/execution ids, and OTel trace context
are injected automatically via processors that read from ContextVars and the
current OTel span.

Log directory layout (when ``log_root`` is set)::

    logs/
      conduit/          # Application logs (JSON)
        conduit.log
      http/             # httpx/httpcore transport logs (JSON)
        conduit.log
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# Execution context (asyncio-safe via ContextVar)
# ---------------------------------------------------------------------------

_service_context: ContextVar[str | None] = ContextVar("service_name", default=None)
_workflow_context: ContextVar[str | None] = ContextVar("workflow_id", default=None)
_execution_context: ContextVar[str | None] = ContextVar("execution_id", default=None)


def set_service_context(name: str) -> None:
    """Set the service name for the current async context."""
    _service_context.set(name)


def get_service_context() -> str | None:
    """Get the service name for the current async context."""
    return _service_context.get()


@contextmanager
def execution_log_context(workflow_id: str, execution_id: str) -> Iterator[None]:
    """Bind workflow/execution ids to every log record emitted inside the block."""
    workflow_token = _workflow_context.set(workflow_id)
    execution_token = _execution_context.set(execution_id)
    try:
        yield
    finally:
        _execution_context.reset(execution_token)
        _workflow_context.reset(workflow_token)


def get_execution_context() -> tuple[str | None, str | None]:
    """Return ``(workflow_id, execution_id)`` bound to the current context."""
    return _workflow_context.get(), _execution_context.get()


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_service_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``service`` key from the ContextVar into the event dict."""
    event_dict["service"] = _service_context.get()
    return event_dict


def add_execution_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``workflow_id``/``execution_id`` when a workflow run is active."""
    workflow_id = _workflow_context.get()
    execution_id = _execution_context.get()
    if workflow_id is not None:
        event_dict["workflow_id"] = workflow_id
    if execution_id is not None:
        event_dict["execution_id"] = execution_id
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


# ---------------------------------------------------------------------------
# Noise suppression
# ---------------------------------------------------------------------------

_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
    "asyncio",
)

# Subdirectory names under log_root
_DIR_APP = "conduit"
_DIR_HTTP = "http"


def _build_processors(
    time_fmt: str,
) -> list[structlog.types.Processor]:
    """Build the pre-chain processor list with the given timestamp format."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_service_context,
        add_execution_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _make_file_handler(path: Path, processors: list) -> logging.FileHandler:
    """Create a JSON file handler at *path*."""
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=processors,
    )
    handler = logging.FileHandler(path)
    handler.setFormatter(formatter)
    handler.setLevel(logging.DEBUG)
    return handler


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    service_name: str | None = None,
) -> None:
    """Configure structured logging for the process.

    Parameters
    ----------
    level:
        Root log level (e.g. "DEBUG", "INFO", "WARNING").
    fmt:
        Output format: ``"text"`` for colored console, ``"json"`` for JSON lines.
    log_root:
        Root directory for structured log files.  When set, creates::

            {log_root}/conduit/{service_name}.log   (application logs)
            {log_root}/http/{service_name}.log      (HTTP transport logs)

    service_name:
        Service identity. Set in the ContextVar and used for file naming.
    """
    if service_name:
        set_service_context(service_name)

    if fmt == "json":
        console_processors = _build_processors(time_fmt="iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        # Console: compact HH:MM:SS, no microseconds
        console_processors = _build_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=console_processors,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    # Remove existing handlers to avoid duplicate output on reconfiguration
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        file_processors = _build_processors(time_fmt="iso")
        log_name = service_name or "conduit"

        for subdir in (_DIR_APP, _DIR_HTTP):
            (log_root / subdir).mkdir(parents=True, exist_ok=True)

        root.addHandler(
            _make_file_handler(log_root / _DIR_APP / f"{log_name}.log", file_processors)
        )

        http_handler = _make_file_handler(log_root / _DIR_HTTP / f"{log_name}.log", file_processors)
        for name in _NOISE_LOGGERS:
            logging.getLogger(name).addHandler(http_handler)

    # Configure structlog itself (for direct structlog.get_logger() usage)
    structlog.configure(
        processors=[
            *console_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
