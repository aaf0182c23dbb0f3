from __future__ import annotations

import itertools
import threading
from collections import deque
from typing import Optional

from app.providers.base import ProviderCallError, ProviderResponse


class MockTransferProvider:
    """
    Sandbox/test provider.

    Behaves like an idempotency-key-aware transfer API: a second create
    with a key it has already accepted returns the original transfer and
    never creates another one. Failures are scripted per call.
    """

    def __init__(self, *, initial_status: str = "paid") -> None:
        # status a newly created transfer starts in; "pending" models async settlement
        self.initial_status = initial_status
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self.transfers: dict[str, dict] = {}
        self._by_key: dict[str, str] = {}
        self._script: deque = deque()
        self._sticky: Optional[tuple] = None
        self.create_calls = 0
        self.status_calls = 0

    # --- scripting -----------------------------------------------------

    def fail_next(self, code: str, *, http_status: int = 400, times: int = 1) -> None:
        for _ in range(times):
            self._script.append(("error", code, http_status))

    def timeout_next(self, *, accepted: bool = False, times: int = 1) -> None:
        """accepted=True: the transfer is created but the caller never hears back."""
        for _ in range(times):
            self._script.append(("timeout", accepted))

    def always_fail(self, code: str, *, http_status: int = 503) -> None:
        self._sticky = ("error", code, http_status)

    def recover(self) -> None:
        self._sticky = None
        self._script.clear()

    def set_transfer_status(self, provider_ref: str, status: str, *, failure_code: Optional[str] = None) -> None:
        with self._lock:
            transfer = self.transfers[provider_ref]
            transfer["status"] = status
            if failure_code:
                transfer["failure_code"] = failure_code

    @property
    def transfers_created(self) -> int:
        return len(self.transfers)

    # --- TransferProvider ----------------------------------------------

    def create_transfer(
        self,
        *,
        destination: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str],
    ) -> ProviderResponse:
        with self._lock:
            self.create_calls += 1
            existing = self._by_key.get(idempotency_key)
            if existing:
                return self._ok(self.transfers[existing])

            step = self._script.popleft() if self._script else self._sticky
            if step and step[0] == "timeout":
                if step[1]:
                    self._create(destination, amount_cents, currency, idempotency_key, metadata)
                raise ProviderCallError("timeout", "mock provider timeout")
            if step and step[0] == "error":
                _, code, http_status = step
                return ProviderResponse(
                    http_status=http_status,
                    error_code=code,
                    body={"error": {"code": code}},
                )

            transfer = self._create(destination, amount_cents, currency, idempotency_key, metadata)
            return self._ok(transfer)

    def get_transfer(self, provider_ref: str) -> ProviderResponse:
        with self._lock:
            self.status_calls += 1
            transfer = self.transfers.get(provider_ref)
            if transfer is None:
                return ProviderResponse(
                    http_status=404,
                    error_code="resource_missing",
                    body={"error": {"code": "resource_missing"}},
                )
            return self._ok(transfer)

    # ------------------------------------------------------------------

    def _create(self, destination, amount_cents, currency, idempotency_key, metadata) -> dict:
        ref = f"tr_mock_{next(self._seq):06d}"
        transfer = {
            "id": ref,
            "status": self.initial_status,
            "amount": int(amount_cents),
            "currency": currency,
            "destination": destination,
            "metadata": dict(metadata),
            "idempotency_key": idempotency_key,
        }
        self.transfers[ref] = transfer
        self._by_key[idempotency_key] = ref
        return transfer

    @staticmethod
    def _ok(transfer: dict) -> ProviderResponse:
        return ProviderResponse(
            http_status=200,
            provider_ref=transfer["id"],
            status=transfer["status"],
            body=dict(transfer),
        )
