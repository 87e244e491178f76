"""Outbound ports — interfaces that provider-facing adapters must implement.

The resilience core depends only on these abstractions; the HTTP probes in
``adapters.outbound.probes`` are one implementation, test doubles another.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from llm_resilience.shared.providers.types import ProbeResult


# ═══════════════════════════════════════════════════════════════
#  Health probing
# ═══════════════════════════════════════════════════════════════
class Prober(ABC):
    """Active health check for one provider.

    Implementations must not raise for ordinary failures; they report them
    through ``ProbeResult.success``.  The caller bounds the call with its own
    timeout.
    """

    @abstractmethod
    async def probe(self) -> ProbeResult: ...


# ═══════════════════════════════════════════════════════════════
#  Model listing
# ═══════════════════════════════════════════════════════════════
class ModelLister(ABC):
    """Fetches the models a provider currently serves."""

    @abstractmethod
    async def list_models(self) -> list[str]: ...
