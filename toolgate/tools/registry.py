"""Tool registry: the process-wide, name-keyed catalog of capability descriptors."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from toolgate.tools.schema import CapabilityDescriptor

logger = logging.getLogger(__name__)


class DuplicateNameError(Exception):
    """Raised when a descriptor name is already registered."""


class RegistryFrozenError(Exception):
    """Raised when registering after the registration phase has ended."""


class ToolRegistry:
    """
    Append-only catalog of :class:`CapabilityDescriptor` objects.

    Built once at process start (``register`` calls, then ``freeze()``) and
    read-only afterwards. The registry is passed by reference to the
    :class:`~toolgate.tools.executor.ToolExecutor`; there is no global
    instance.

    Lookups are plain dict reads and safe while the single registration pass
    runs; registrations are serialised by a lock.
    """

    def __init__(self):
        self._tools: Dict[str, CapabilityDescriptor] = {}
        self._lock = threading.Lock()
        self._frozen = False

    # ── Registration ──────────────────────────────────────────────────────

    def register(self, descriptor: CapabilityDescriptor) -> None:
        """Add a descriptor. Names are unique for the lifetime of the registry."""
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register '{descriptor.name}': registry is frozen"
                )
            if descriptor.name in self._tools:
                raise DuplicateNameError(f"Tool already registered: {descriptor.name}")
            self._tools[descriptor.name] = descriptor
        logger.info("Registered tool: %s v%s", descriptor.name, descriptor.version)

    def register_all(self, descriptors: Iterable[CapabilityDescriptor]) -> None:
        for descriptor in descriptors:
            self.register(descriptor)

    def freeze(self) -> None:
        """End the registration phase."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ── Lookup ────────────────────────────────────────────────────────────

    def lookup(self, name: str) -> Optional[CapabilityDescriptor]:
        """Return the descriptor registered under ``name``, or ``None``."""
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def count(self) -> int:
        return len(self._tools)

    def list(
        self,
        category: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
    ) -> List[CapabilityDescriptor]:
        """
        Return descriptors in registration order.

        Parameters
        ----------
        category : keep only descriptors in this category
        permissions : keep descriptors requiring at least one of these tags
        """
        tools = list(self._tools.values())
        if category:
            tools = [t for t in tools if t.metadata.category == category]
        if permissions is not None:
            wanted = set(permissions)
            tools = [t for t in tools if t.permissions & wanted]
        return tools

    # ── External listing ──────────────────────────────────────────────────

    def list_for_external_tool_format(self) -> List[Dict[str, Any]]:
        """
        Capability listing for the orchestrating agent.

        Returns ``[{name, description, parameterSchema}, ...]``. Handlers are
        never exposed; execution always goes through the executor.
        """
        return [t.external_format() for t in self._tools.values()]
