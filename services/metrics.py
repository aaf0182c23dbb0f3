# services/metrics.py
from __future__ import annotations

from collections import defaultdict
from threading import Lock

CONTENT_TYPE = "text/plain; version=0.0.4"

LabelKey = tuple[tuple[str, str], ...]

_HELP = {
    "http_requests_total": "HTTP requests by route template and status.",
    "payout_requests_total": "Payout requests by result (reserved, replayed or the rejection code).",
    "payout_attempts_total": "Provider transfer attempts by outcome.",
    "payout_terminal_total": "Payouts reaching a terminal status.",
    "reconcile_corrections_total": "Payouts corrected by the reconciliation sweeper.",
}

_lock = Lock()
_counters: dict[str, dict[LabelKey, int]] = defaultdict(dict)


def _key(labels: dict[str, str] | None) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = _key(labels)
    with _lock:
        series = _counters[name]
        series[key] = series.get(key, 0) + int(value)


def get_counter(name: str, labels: dict[str, str] | None = None) -> int:
    with _lock:
        return _counters.get(name, {}).get(_key(labels), 0)


def reset() -> None:
    with _lock:
        _counters.clear()


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_payout_request(result: str) -> None:
    _inc("payout_requests_total", {"result": result})


def increment_payout_attempt(outcome: str) -> None:
    _inc("payout_attempts_total", {"outcome": outcome})


def increment_payout_terminal(status: str) -> None:
    _inc("payout_terminal_total", {"status": status})


def increment_reconcile_correction(result: str) -> None:
    _inc("reconcile_corrections_total", {"result": result})


def _sample(name: str, labels: LabelKey, value: int) -> str:
    if not labels:
        return f"{name} {value}"
    rendered = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{name}{{{rendered}}} {value}"


def render_prometheus() -> str:
    """Prometheus text exposition of every counter seen so far."""
    with _lock:
        snapshot = {name: dict(series) for name, series in _counters.items() if series}

    lines: list[str] = []
    for name in sorted(snapshot):
        if name in _HELP:
            lines.append(f"# HELP {name} {_HELP[name]}")
        lines.append(f"# TYPE {name} counter")
        lines.extend(_sample(name, labels, value) for labels, value in sorted(snapshot[name].items()))
    return "\n".join(lines) + "\n" if lines else ""
