"""
Immutable audit trail for webhook and payment decisions.

Every pipeline decision gets an append-only audit log entry with:
  - Provider (which rail)
  - Reference (which payment, when known)
  - Action (what happened)
  - Details (context, error codes, dedupe keys)
  - needs_review (payloads acknowledged without being applied)
  - Timestamp (UTC)

These records are never modified or deleted.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paygate.models.records import AuditLog

logger = logging.getLogger("paygate.audit")


async def log_event(
    session: AsyncSession,
    action: str,
    provider: Optional[str] = None,
    reference: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    needs_review: bool = False,
) -> AuditLog:
    """
    Create an immutable audit log entry.

    Args:
        session: Database session.
        action: What happened (e.g. "webhook_applied", "webhook_rejected", "payment_initiated").
        provider: Provider name the event relates to.
        reference: Internal payment reference, when known.
        details: Arbitrary context (serialized to JSON).
        needs_review: Flag the entry for manual follow-up.

    Returns:
        The created AuditLog record.
    """
    entry = AuditLog(
        provider=provider,
        reference=reference,
        action=action,
        details=json.dumps(details, default=str) if details else None,
        needs_review=needs_review,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info(
        "AUDIT | provider=%s ref=%s action=%s%s | %s",
        provider or "-",
        reference or "-",
        action,
        " REVIEW" if needs_review else "",
        json.dumps(details, default=str)[:200] if details else "",
    )
    return entry


class AuditTrail:
    """Writes each entry in its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        action: str,
        provider: Optional[str] = None,
        reference: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        needs_review: bool = False,
    ) -> None:
        # An audit write failure never changes the outcome of the request it describes.
        try:
            async with self.session_factory() as session:
                await log_event(session, action, provider, reference, details, needs_review)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to write audit entry %s for %s %s", action, provider, reference)
