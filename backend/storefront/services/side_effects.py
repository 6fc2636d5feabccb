from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core import metrics
from storefront.core.clock import utcnow
from storefront.core.config import settings
from storefront.models.ops import PendingSideEffect, SideEffectKind
from storefront.services.inventory import InventoryAdjuster, SqlInventory

logger = logging.getLogger(__name__)


def enqueue(
    session: AsyncSession,
    *,
    kind: SideEffectKind,
    order_id: UUID | None,
    payload: dict,
    error: str,
    now: datetime | None = None,
) -> PendingSideEffect:
    """Stage a failed side effect for retry; the caller commits."""
    now = now or utcnow()
    entry = PendingSideEffect(
        kind=kind,
        order_id=order_id,
        payload=payload,
        attempts=1,
        last_error=error[:2000],
        last_attempt_at=now,
    )
    session.add(entry)
    metrics.record_side_effect_failure()
    logger.warning(
        "side_effect_queued",
        extra={"kind": kind.value, "order_id": order_id, "payload": payload, "error": error},
    )
    return entry


@dataclass(frozen=True)
class RetryReport:
    attempted: int
    resolved: int
    failed: int
    abandoned: int


async def _run(inventory: InventoryAdjuster, entry: PendingSideEffect) -> None:
    if entry.kind == SideEffectKind.increment_sold:
        await inventory.increment_sold(UUID(str(entry.payload["product_id"])), int(entry.payload["quantity"]))
        return
    raise ValueError(f"Unknown side effect kind: {entry.kind}")


async def retry_pending_side_effects(
    session: AsyncSession,
    *,
    inventory_factory: Callable[[AsyncSession], InventoryAdjuster] = SqlInventory,
    max_attempts: int | None = None,
    now: datetime | None = None,
) -> RetryReport:
    """Replay unresolved side effects, one transaction per entry."""
    now = now or utcnow()
    max_attempts = max_attempts or settings.side_effect_max_attempts
    entries = (
        await session.execute(
            select(PendingSideEffect)
            .where(PendingSideEffect.resolved_at.is_(None), PendingSideEffect.attempts < max_attempts)
            .order_by(PendingSideEffect.created_at)
        )
    ).scalars().all()
    pending = [(entry.id, entry.attempts) for entry in entries]

    inventory = inventory_factory(session)
    resolved = failed = abandoned = 0
    for entry_id, attempts in pending:
        entry = await session.get(PendingSideEffect, entry_id)
        try:
            await _run(inventory, entry)
        except Exception as exc:
            await session.rollback()
            entry = await session.get(PendingSideEffect, entry_id)
            entry.attempts = attempts + 1
            entry.last_error = str(exc)[:2000]
            entry.last_attempt_at = now
            failed += 1
            if entry.attempts >= max_attempts:
                abandoned += 1
                logger.error("side_effect_abandoned", extra={"side_effect_id": entry_id, "kind": entry.kind.value})
            await session.commit()
            continue
        entry.attempts = attempts + 1
        entry.last_attempt_at = now
        entry.resolved_at = now
        await session.commit()
        resolved += 1
        logger.info("side_effect_resolved", extra={"side_effect_id": entry_id, "kind": entry.kind.value})

    return RetryReport(attempted=len(pending), resolved=resolved, failed=failed, abandoned=abandoned)
