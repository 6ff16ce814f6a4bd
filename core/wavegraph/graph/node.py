"""
Node Protocol - the capability contract every node implements.

A capability takes the incoming Message and returns one of:
- a Message (its payload and wave are kept)
- any other value (used as the payload of the output message)
- a NodeFailure (typed failure, same as raising)

process() may be a plain method or a coroutine. Capabilities may perform
arbitrary I/O but must not touch the executor's queue or join state; an
orchestrator node may grow the graph through Graph.register_node/add_edge.
"""

import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from wavegraph.graph.message import Message


class NodeProtocol(ABC):
    """
    Interface for node capabilities.

    Example:
        class Upper(NodeProtocol):
            def process(self, message: Message) -> Any:
                return message.payload.upper()
    """

    @abstractmethod
    def process(self, message: Message) -> Any:
        """Process one message (may be sync or async)."""

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.process)


class FunctionNode(NodeProtocol):
    """Wraps a plain (sync or async) callable as a node capability."""

    def __init__(self, func: Callable[[Message], Any]):
        self.func = func

    def process(self, message: Message) -> Any:
        return self.func(message)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)

    def __repr__(self) -> str:
        name = getattr(self.func, "__qualname__", type(self.func).__name__)
        return f"FunctionNode({name})"


def as_capability(obj: Any) -> NodeProtocol:
    """Normalise a NodeProtocol or callable into a NodeProtocol."""
    if isinstance(obj, NodeProtocol):
        return obj
    if callable(obj):
        return FunctionNode(obj)
    raise TypeError(f"Node capability must be a NodeProtocol or callable, got {type(obj).__name__}")
