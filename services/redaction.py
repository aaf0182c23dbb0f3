# services/redaction.py
from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

# destination references: acct_..., ba_..., card_..., bank_...
_ACCOUNT_REF_RE = re.compile(r"\b(acct|ba|card|bank)_([A-Za-z0-9]{4,})\b")
_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
_CREDENTIAL_RE = re.compile(r"(bearer\s+\S+|sk_(live|test)_\w+)", re.IGNORECASE)

# keys whose values are never logged, whatever they hold
_SECRET_KEYS = ("token", "authorization", "secret", "api_key", "apikey", "password")
# keys whose values are shortened to the last four characters
_LAST4_KEYS = ("account_number", "routing_number", "iban")


def mask_account_ref(ref: str | None) -> str | None:
    if not ref:
        return ref
    match = _ACCOUNT_REF_RE.fullmatch(ref)
    if match:
        return f"{match.group(1)}_****{match.group(2)[-4:]}"
    return "****" + ref[-4:] if len(ref) > 4 else "****"


def redact_text(value: str) -> str:
    value = _CREDENTIAL_RE.sub(REDACTED, value)
    value = _EMAIL_RE.sub(lambda m: f"{m.group(1)}***{m.group(2)}", value)
    return _ACCOUNT_REF_RE.sub(lambda m: mask_account_ref(m.group(0)), value)


def _normalized(key: str) -> str:
    return (key or "").lower().replace("-", "_")


def redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_payload(value)
    if isinstance(value, (list, tuple)):
        return [redact_value(v) for v in value]
    return value


def redact_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy of a provider request/response body that is safe to log."""
    out: dict[str, Any] = {}
    for key, value in payload.items():
        k = _normalized(key)
        if any(marker in k for marker in _SECRET_KEYS):
            out[key] = REDACTED
        elif any(marker in k for marker in _LAST4_KEYS) and value is not None:
            out[key] = mask_account_ref(str(value))
        else:
            out[key] = redact_value(value)
    return out
