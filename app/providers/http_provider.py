from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from app.providers.base import ProviderCallError, ProviderResponse
from app.providers.http import HttpClient, HttpResponse

logger = logging.getLogger("payouts.provider")


def _error_code(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    err = payload.get("error")
    if isinstance(err, dict):
        raw = err.get("code") or err.get("type")
    else:
        raw = err or payload.get("code")
    return str(raw).strip().lower() if raw else None


def _to_response(resp: HttpResponse) -> ProviderResponse:
    payload = resp.json if isinstance(resp.json, dict) else None
    ok = 200 <= resp.status_code < 300
    status = None
    ref = None
    if payload:
        status = payload.get("status")
        ref = payload.get("id") or payload.get("transfer_id")
        if ok and payload.get("reversed") is True:
            status = "reversed"
    code = None if ok else (_error_code(payload) or f"http_{resp.status_code}")
    return ProviderResponse(
        http_status=resp.status_code,
        provider_ref=str(ref) if ref else None,
        status=str(status).lower() if status else None,
        error_code=code,
        body=payload,
    )


class HttpTransferProvider:
    """
    REST transfer API:
      POST {base}/v1/transfers            (Idempotency-Key header)
      GET  {base}/v1/transfers/{ref}
    Transport failures become ProviderCallError so the client can classify them.
    """

    def __init__(self, *, base_url: str, api_key: str, http: Optional[HttpClient] = None, timeout_s: float = 20.0):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.api_key = (api_key or "").strip()
        self.http = http or HttpClient(timeout_s=timeout_s)

    def _headers(self, idempotency_key: Optional[str] = None) -> dict[str, str]:
        h = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            h["Idempotency-Key"] = idempotency_key
        return h

    def create_transfer(
        self,
        *,
        destination: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str],
    ) -> ProviderResponse:
        body = {
            "amount": int(amount_cents),
            "currency": currency,
            "destination": destination,
            "metadata": metadata,
        }
        try:
            resp = self.http.post(
                f"{self.base_url}/v1/transfers",
                headers=self._headers(idempotency_key),
                json_body=body,
            )
        except httpx.TimeoutException as exc:
            logger.warning("transfer create timeout idempotency_key=%s err=%s", idempotency_key, exc)
            raise ProviderCallError("timeout", str(exc)) from exc
        except httpx.TransportError as exc:
            logger.warning("transfer create transport error idempotency_key=%s err=%s", idempotency_key, exc)
            raise ProviderCallError("network_error", str(exc)) from exc

        logger.info("transfer create status=%s idempotency_key=%s", resp.status_code, idempotency_key)
        return _to_response(resp)

    def get_transfer(self, provider_ref: str) -> ProviderResponse:
        try:
            resp = self.http.get(
                f"{self.base_url}/v1/transfers/{provider_ref}",
                headers=self._headers(),
            )
        except httpx.TimeoutException as exc:
            raise ProviderCallError("timeout", str(exc)) from exc
        except httpx.TransportError as exc:
            raise ProviderCallError("network_error", str(exc)) from exc

        logger.info("transfer status status=%s provider_ref=%s", resp.status_code, provider_ref)
        return _to_response(resp)
