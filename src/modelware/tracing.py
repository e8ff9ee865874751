"""OpenTelemetry instrumentation.

Spans are emitted for:

- ``modelware.generate``: one non-streaming call through a wrapped model
- ``modelware.stream``: setting up one streaming call through a wrapped
  model; the span ends when the stream is handed back, not when it is drained
- ``modelware.state``: a state snapshot or restoration pass

Without a configured SDK the global tracer is a no-op, so callers never
need to check.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace

_tracer: trace.Tracer = trace.get_tracer("modelware")


@contextmanager
def span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Any, None, None]:
    """Context manager that opens a span on the ``modelware`` tracer.

    Parameters
    ----------
    name:
        Span name (e.g. ``"modelware.generate"``).
    attributes:
        Initial span attributes.  ``None`` values are skipped.

    Yields
    ------
    The active span.  Callers can set additional attributes on it::

        with span("modelware.generate", {"modelware.model_id": "gpt-4.1"}) as s:
            ...
            s.set_attribute("modelware.finish_reason", "stop")
    """
    with _tracer.start_as_current_span(name) as s:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    s.set_attribute(key, value)
        yield s
