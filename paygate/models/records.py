"""SQLAlchemy models for the payment gateway."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessedWebhook(Base):
    """
    One applied ledger-affecting webhook event.

    The unique dedupe_key is the synchronization boundary of the whole
    pipeline: inserting a row is the claim, and a second insert for the
    same key fails at the database, never in application code.
    """

    __tablename__ = "processed_webhooks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dedupe_key = Column(String(255), nullable=False, unique=True)
    provider = Column(String(20), nullable=False, index=True)
    reference = Column(String(120), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)
    status = Column(String(10), nullable=False)
    event_id = Column(String(120), nullable=True)  # provider-native id, when sent
    applied_at = Column(DateTime(timezone=True), default=_utcnow)


class AuditLog(Base):
    """
    Immutable audit trail entry for webhook and routing decisions.

    Append-only. Entries with needs_review set are payloads that could not
    be parsed and were acknowledged anyway.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(20), nullable=True, index=True)
    reference = Column(String(120), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    needs_review = Column(Boolean, nullable=False, default=False)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)
