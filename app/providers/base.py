# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional, Protocol

TransferStatus = Literal["PENDING", "SUCCEEDED", "FAILED", "NOT_FOUND"]


@dataclass(frozen=True)
class ProviderResponse:
    """Raw provider answer, before classification."""

    http_status: int
    provider_ref: Optional[str] = None
    status: Optional[str] = None
    error_code: Optional[str] = None
    body: Optional[dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.http_status < 300 and self.error_code is None


class ProviderCallError(Exception):
    """
    The request never produced a provider answer (timeout, connection reset).
    The provider may still have accepted it.
    """

    def __init__(self, code: str, message: str = ""):
        super().__init__(message or code)
        self.code = code


class TransferProvider(Protocol):
    def create_transfer(
        self,
        *,
        destination: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str],
    ) -> ProviderResponse: ...

    def get_transfer(self, provider_ref: str) -> ProviderResponse: ...
