"""
Observability helpers: run context propagation and structured logging.

- Run context carried in a ContextVar (run_id, graph_id, node_id, wave)
- Structured JSON logging for production
- Human-readable logging for development
"""

from wavegraph.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
