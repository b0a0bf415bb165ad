"""Payment reference resolution.

Payments are processed elsewhere; enrollment only needs to know that a
supplied reference is real before storing it for audit.
"""

from __future__ import annotations

from typing import Protocol

MAX_REFERENCE_LENGTH = 128


class PaymentReferenceLookup(Protocol):
    async def exists(self, payment_id: str) -> bool: ...


class FormatCheckingPaymentLookup:
    """Accepts any well-formed reference.

    Used when no payment provider is wired in: the reference is kept for
    audit but cannot be confirmed against the provider.
    """

    async def exists(self, payment_id: str) -> bool:
        reference = payment_id.strip()
        return bool(reference) and len(reference) <= MAX_REFERENCE_LENGTH


class InMemoryPaymentLookup:
    def __init__(self) -> None:
        self._known: set[str] = set()

    def register(self, payment_id: str) -> None:
        self._known.add(payment_id)

    def clear(self) -> None:
        self._known.clear()

    async def exists(self, payment_id: str) -> bool:
        return payment_id in self._known
