"""Handler registry mapping node types to the callables that execute them."""

import inspect
from typing import Callable, Dict, List, Optional

from .exceptions import HandlerRegistryError
from .logging import get_logger

logger = get_logger(__name__)


class HandlerRegistry:
    """Registry of node handlers used by the interpreter for dispatch.

    A handler is called as ``handler(node, context, runtime)`` and may be a
    plain function or a coroutine function.
    """

    def __init__(self):
        self._handlers: Dict[str, Callable] = {}
        self._descriptions: Dict[str, str] = {}

    def register(
        self,
        node_type: str,
        handler: Callable,
        description: str = "",
        replace: bool = False
    ) -> None:
        """Register a handler for a node type.

        Args:
            node_type: Node type the handler executes
            handler: Callable accepting (node, context, runtime)
            description: Optional description of the handler
            replace: Allow overriding an existing registration

        Raises:
            HandlerRegistryError: If the type is empty, already registered or
                the handler is not callable
        """
        node_type = getattr(node_type, "value", node_type)
        if not node_type or not str(node_type).strip():
            raise HandlerRegistryError("Node type cannot be empty", operation="register")

        node_type = str(node_type).strip()

        if not callable(handler):
            raise HandlerRegistryError(
                f"Handler for '{node_type}' must be callable",
                node_type=node_type,
                operation="register"
            )

        try:
            sig = inspect.signature(handler)
            if len(sig.parameters) < 3 and not any(
                p.kind == inspect.Parameter.VAR_POSITIONAL for p in sig.parameters.values()
            ):
                logger.warning(
                    f"Handler for '{node_type}' accepts fewer than 3 parameters "
                    f"(node, context, runtime)"
                )
        except (ValueError, TypeError) as e:
            raise HandlerRegistryError(
                f"Cannot inspect handler signature for '{node_type}': {e}",
                node_type=node_type,
                operation="register"
            )

        if node_type in self._handlers and not replace:
            raise HandlerRegistryError(
                f"Handler for '{node_type}' is already registered",
                node_type=node_type,
                operation="register"
            )

        self._handlers[node_type] = handler
        self._descriptions[node_type] = description.strip() if description else ""
        logger.debug(f"Registered handler for '{node_type}'")

    def get(self, node_type: str) -> Callable:
        """Retrieve the handler for a node type.

        Raises:
            HandlerRegistryError: If no handler is registered for the type
        """
        node_type = str(getattr(node_type, "value", node_type)).strip()
        handler = self._handlers.get(node_type)
        if handler is None:
            raise HandlerRegistryError(
                f"No handler registered for node type '{node_type}'",
                node_type=node_type,
                operation="get"
            )
        return handler

    def has(self, node_type: str) -> bool:
        """Check whether a handler is registered for a node type."""
        return str(getattr(node_type, "value", node_type)).strip() in self._handlers

    def unregister(self, node_type: str) -> bool:
        """Remove a handler.

        Returns:
            True if a handler was removed, False if none was registered
        """
        node_type = str(getattr(node_type, "value", node_type)).strip()
        if node_type not in self._handlers:
            return False
        del self._handlers[node_type]
        self._descriptions.pop(node_type, None)
        logger.debug(f"Unregistered handler for '{node_type}'")
        return True

    def list_handlers(self) -> Dict[str, str]:
        """Map registered node types to their descriptions."""
        return dict(sorted(self._descriptions.items()))

    def node_types(self) -> List[str]:
        return sorted(self._handlers)


def build_default_registry(registry: Optional[HandlerRegistry] = None) -> HandlerRegistry:
    """Create a registry holding every built-in node handler."""
    from ..handlers import register_builtin_handlers

    registry = registry or HandlerRegistry()
    register_builtin_handlers(registry)
    return registry
