from rxfinancials.extensions import db
from rxfinancials.models.base import PKType, SoftDeleteMixin, TimestampMixin


class EarningEntry(TimestampMixin, SoftDeleteMixin, db.Model):
    __tablename__ = "earning_entries"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    business_id = db.Column(db.String(64), nullable=False, index=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)
    line_item_id = db.Column(db.String(64), nullable=True)
    consultation_id = db.Column(db.String(64), nullable=True, index=True)
    type = db.Column(db.String(24), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False, default="")

    # Minor currency units.
    gross_amount = db.Column(db.BigInteger, nullable=False)
    platform_fee = db.Column(db.BigInteger, nullable=False, default=0)
    payment_processing_fee = db.Column(db.BigInteger, nullable=False, default=0)
    net_amount = db.Column(db.BigInteger, nullable=False)
    clinician_fee = db.Column(db.BigInteger, nullable=True)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    available_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payout_id = db.Column(PKType, db.ForeignKey("payouts.id", ondelete="SET NULL"), nullable=True, index=True)

    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    payout = db.relationship("Payout", back_populates="earnings")

    __table_args__ = (
        db.Index("ix_earning_entries_business_status", "business_id", "status"),
        db.CheckConstraint("gross_amount >= 0", name="ck_earning_gross_non_negative"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "business_id": self.business_id,
            "order_id": self.order_id,
            "line_item_id": self.line_item_id,
            "consultation_id": self.consultation_id,
            "type": self.type,
            "description": self.description,
            "gross_amount": self.gross_amount,
            "platform_fee": self.platform_fee,
            "payment_processing_fee": self.payment_processing_fee,
            "net_amount": self.net_amount,
            "clinician_fee": self.clinician_fee,
            "status": self.status,
            "available_at": self.available_at.isoformat() if self.available_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "payout_id": self.payout_id,
            "metadata": self.meta or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }
