"""
Domain adapters.

One adapter per effect domain. Adapters own their persistence and must be
idempotent under retry; the gate only dispatches to them and propagates
their failures.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .models import Effect

logger = logging.getLogger(__name__)


class DomainAdapter:
    """Base adapter. Subclasses implement apply() and revert()."""

    domain: str = ""

    def apply(self, effect: Effect) -> None:
        raise NotImplementedError

    def revert(self, effect: Effect) -> Dict[str, Any]:
        """Inverse operation. Returns {"reverted": bool, ...}."""
        raise NotImplementedError


class CallableAdapter(DomainAdapter):
    """Adapter built from two plain callables."""

    def __init__(
        self,
        domain: str,
        apply: Callable[[Effect], None],
        revert: Optional[Callable[[Effect], Dict[str, Any]]] = None,
    ):
        self.domain = domain
        self._apply = apply
        self._revert = revert

    def apply(self, effect: Effect) -> None:
        self._apply(effect)

    def revert(self, effect: Effect) -> Dict[str, Any]:
        if self._revert is None:
            return {"reverted": False, "reason": "revert not supported"}
        return self._revert(effect)


class AdapterRegistry:
    """Domain name -> adapter."""

    def __init__(self, adapters: Optional[List[DomainAdapter]] = None):
        self._adapters: Dict[str, DomainAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: DomainAdapter) -> None:
        if not adapter.domain:
            raise ValueError("Adapter must declare a domain")
        if adapter.domain in self._adapters:
            logger.warning(f"Replacing adapter for domain '{adapter.domain}'")
        self._adapters[adapter.domain] = adapter

    def get(self, domain: str) -> Optional[DomainAdapter]:
        return self._adapters.get(domain)

    def domains(self) -> List[str]:
        return sorted(self._adapters)
