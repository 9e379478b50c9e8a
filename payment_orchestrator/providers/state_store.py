"""
Virtual provider-side state for the mock adapters.

The mock adapters keep the provider's view of each transaction (authorized,
captured, refunded amount, ...) in a ``VirtualStateStore``. Each adapter
receives its store at construction, so tests can hand every adapter a fresh
store or share one between adapters.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple


@dataclass
class VirtualTransaction:
    """Provider-side record of a mock transaction."""

    status: str
    amount: int
    currency: str
    refunded_amount: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def remaining_amount(self) -> int:
        return self.amount - self.refunded_amount


class VirtualStateStore(ABC):
    """Storage for virtual transactions, namespaced per provider."""

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[VirtualTransaction]:
        ...

    @abstractmethod
    def put(self, namespace: str, key: str, state: VirtualTransaction) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class InMemoryStateStore(VirtualStateStore):
    """Process-local store backed by a dict."""

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], VirtualTransaction] = {}

    def get(self, namespace: str, key: str) -> Optional[VirtualTransaction]:
        return self._items.get((namespace, key))

    def put(self, namespace: str, key: str, state: VirtualTransaction) -> None:
        self._items[(namespace, key)] = state

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
