from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable
from uuid import UUID

from app.payouts.errors import PayoutError
from app.payouts.model import RoyaltyStatement
from app.payouts.orchestrator import PayoutOrchestrator

logger = logging.getLogger("payouts.orchestrator")


@dataclass
class ScheduledRunResult:
    requested: dict[str, UUID] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def summary(self) -> dict[str, int]:
        return {
            "requested": len(self.requested),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
        }


def select_statements_within(statements: Iterable[RoyaltyStatement], available_cents: int) -> list[RoyaltyStatement]:
    """
    Oldest-first greedy pick of unpaid statements whose sum stays within the
    available balance. Statements come from the source already oldest first.
    """
    picked: list[RoyaltyStatement] = []
    total = 0
    for statement in statements:
        amount = int(statement.net_payable_cents)
        if statement.paid or statement.disputed or amount <= 0:
            continue
        if total + amount > available_cents:
            continue
        picked.append(statement)
        total += amount
    return picked


def run_scheduled_payouts(
    orchestrator: PayoutOrchestrator,
    creator_ids: Iterable[str],
    *,
    requested_by: str = "scheduler",
) -> ScheduledRunResult:
    """
    Automatic payout run. Each eligible creator is paid the statements that
    fit inside their available balance (the reserve hold stays back).
    Ineligible creators and creators under the minimum are skipped; errors
    for one creator never stop the run.
    """
    result = ScheduledRunResult()
    eligibility = orchestrator.eligibility.check_eligibility_batch(creator_ids)

    for creator_id, verdict in eligibility.items():
        if not verdict.eligible:
            result.skipped[creator_id] = ",".join(verdict.reason_codes)
            continue
        try:
            balance = orchestrator.get_balance(creator_id)
            if balance.available_cents <= 0 or not balance.meets_minimum:
                result.skipped[creator_id] = "BELOW_MINIMUM_THRESHOLD"
                continue
            selected = select_statements_within(
                orchestrator.statements.get_unpaid_statements(creator_id),
                balance.available_cents,
            )
            amount = sum(int(s.net_payable_cents) for s in selected)
            if amount < balance.minimum_threshold_cents:
                logger.info(
                    "no statement set fits available balance creator=%s available=%s",
                    creator_id,
                    balance.available_cents,
                )
                result.skipped[creator_id] = "BELOW_MINIMUM_THRESHOLD"
                continue
            payout = orchestrator.request_payout(
                creator_id,
                [s.id for s in selected],
                requested_by=requested_by,
            )
        except PayoutError as exc:
            result.errors[creator_id] = exc.code
            continue
        except Exception as exc:
            logger.exception("scheduled payout failed creator=%s", creator_id)
            result.errors[creator_id] = type(exc).__name__
            continue
        result.requested[creator_id] = payout.id

    logger.info("scheduled payout run %s", result.summary())
    return result
