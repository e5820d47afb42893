"""Append-only credit ledger."""
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.subscription_models import CreditAction, CreditHistory


class CreditLedger:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        *,
        user_id: int,
        subscription_id: int | None,
        action: CreditAction,
        description: str,
        credits_added: int = 0,
        credits_used: int = 0,
        listing_id: int | None = None,
        transaction_id: str | None = None,
    ) -> CreditHistory:
        """Stage a ledger row in the caller's transaction."""
        entry = CreditHistory(
            user_id=user_id,
            subscription_id=subscription_id,
            listing_id=listing_id,
            transaction_id=transaction_id,
            credits_added=credits_added,
            credits_used=credits_used,
            action_type=action,
            description=description,
        )
        self.db.add(entry)
        return entry

    def has_listing_debit(self, user_id: int, listing_id: int) -> bool:
        stmt = select(CreditHistory.id).where(
            CreditHistory.user_id == user_id,
            CreditHistory.listing_id == listing_id,
            CreditHistory.action_type == CreditAction.LISTING_CREATION,
        )
        return self.db.scalar(stmt.limit(1)) is not None

    def history(self, user_id: int, limit: int = 50, offset: int = 0) -> tuple[list[CreditHistory], int]:
        total = self.db.scalar(
            select(func.count()).select_from(CreditHistory).where(CreditHistory.user_id == user_id)
        ) or 0
        stmt = (
            select(CreditHistory)
            .where(CreditHistory.user_id == user_id)
            .order_by(CreditHistory.created_at.desc(), CreditHistory.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.db.scalars(stmt)), total
