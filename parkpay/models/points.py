# -*- coding: utf-8 -*-
"""
Points Ledger Model.

Append-only record of loyalty point grants and redemptions. The balance is
always the derived sum of entries and is never stored.
"""
import datetime as dt
from sqlalchemy import case, func
from parkpay.database import db


class PointsLedgerEntry(db.Model):
    __tablename__ = 'points_ledger'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    entry_type = db.Column(db.String(8), nullable=False)  # earn | use
    amount = db.Column(db.Integer, nullable=False)
    source = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=dt.datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('entry_type', 'reference', 'reference_id',
                            name='uq_points_ledger_reference'),
        db.CheckConstraint('amount > 0', name='ck_points_ledger_amount_positive'),
    )

    @classmethod
    def balance_for(cls, user_id: str) -> int:
        """Sum of earn entries minus sum of use entries."""
        signed = case((cls.entry_type == 'use', -cls.amount), else_=cls.amount)
        total = db.session.query(func.coalesce(func.sum(signed), 0)).filter(
            cls.user_id == user_id
        ).scalar()
        return int(total or 0)

    def __repr__(self) -> str:
        return f"<PointsLedgerEntry {self.entry_type} {self.amount} user={self.user_id}>"
