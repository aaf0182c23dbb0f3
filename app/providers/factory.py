from __future__ import annotations

from typing import Any, Dict

from app.providers.base import TransferProvider

_PROVIDER_CACHE: Dict[str, Any] = {}


def get_provider(s) -> TransferProvider:
    key = (s.PAYOUT_PROVIDER or "mock").strip().lower()
    if key in _PROVIDER_CACHE:
        return _PROVIDER_CACHE[key]

    if key == "mock":
        from app.providers.mock import MockTransferProvider

        provider = MockTransferProvider()
    elif key == "http":
        from app.providers.http_provider import HttpTransferProvider

        provider = HttpTransferProvider(
            base_url=s.PAYOUT_PROVIDER_BASE_URL,
            api_key=s.PAYOUT_PROVIDER_API_KEY,
            timeout_s=s.PAYOUT_PROVIDER_TIMEOUT_S,
        )
    else:
        raise ValueError(f"Unknown payout provider: {s.PAYOUT_PROVIDER}")

    _PROVIDER_CACHE[key] = provider
    return provider


def reset_provider_cache() -> None:
    _PROVIDER_CACHE.clear()
