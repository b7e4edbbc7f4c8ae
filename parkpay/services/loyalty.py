# -*- coding: utf-8 -*-
"""
Loyalty Ledger.

Append-only point operations run after a payment is confirmed. Each write is
its own transaction; a failure is logged and never undoes the confirmed
order. Entries are unique per (entry_type, reference, reference_id), so a
redelivered event cannot deduct or award twice.
"""

from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parkpay.models.points import PointsLedgerEntry
from parkpay.services.pricing import round_yen
from parkpay.services.structured_logging import get_logger

logger = get_logger('parkpay.loyalty')


def parse_points(value: Any) -> int:
    """Parse a metadata points value, clamped non-negative."""
    try:
        return max(0, int(str(value or '0').strip() or '0'))
    except ValueError:
        return 0


class LoyaltyLedger:

    def __init__(self, session: Session, earn_rate: Decimal = Decimal('0.10')):
        self.db = session
        self.earn_rate = Decimal(str(earn_rate))

    def balance(self, user_id: str) -> int:
        return PointsLedgerEntry.balance_for(user_id)

    def points_for(self, amount_total: int) -> int:
        return round_yen(Decimal(amount_total or 0) * self.earn_rate)

    def deduct_reserved(self, user_id: str, metadata: Optional[Mapping[str, Any]],
                        reference_id: str) -> Optional[PointsLedgerEntry]:
        """Record the points the customer chose to redeem at checkout."""
        used = parse_points((metadata or {}).get('points_use'))
        if used <= 0:
            return None
        return self._append(
            user_id=user_id,
            entry_type='use',
            amount=used,
            source='shop',
            description='Points used for order',
            reference='order',
            reference_id=reference_id,
        )

    def award(self, user_id: str, amount_total: int, reference_id: str) -> Optional[PointsLedgerEntry]:
        """Credit POINTS_EARN_RATE of the paid total as new points."""
        points = self.points_for(amount_total)
        if points <= 0:
            return None
        return self._append(
            user_id=user_id,
            entry_type='earn',
            amount=points,
            source='shop',
            description='Shop purchase reward',
            reference='stripe_checkout',
            reference_id=reference_id,
        )

    def _append(self, **fields) -> Optional[PointsLedgerEntry]:
        existing = PointsLedgerEntry.query.filter_by(
            entry_type=fields['entry_type'],
            reference=fields['reference'],
            reference_id=fields['reference_id'],
        ).first()
        if existing:
            logger.info("Points entry already recorded, skipping",
                        entry_type=fields['entry_type'], reference_id=fields['reference_id'])
            return existing

        entry = PointsLedgerEntry(**fields)
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record {fields['entry_type']} points: {e}",
                         user_id=fields['user_id'], reference_id=fields['reference_id'])
            return None

        logger.info(f"Recorded {entry.entry_type} of {entry.amount} points",
                    user_id=entry.user_id, reference_id=entry.reference_id)
        return entry
