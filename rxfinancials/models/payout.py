from rxfinancials.extensions import db
from rxfinancials.models.base import PKType, SoftDeleteMixin, TimestampMixin


class Payout(TimestampMixin, SoftDeleteMixin, db.Model):
    __tablename__ = "payouts"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    business_id = db.Column(db.String(64), nullable=False, index=True)

    total_amount = db.Column(db.BigInteger, nullable=False)
    fee_amount = db.Column(db.BigInteger, nullable=False)
    net_amount = db.Column(db.BigInteger, nullable=False)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    method = db.Column(db.String(24), nullable=False, default="stripe_connect")
    destination_account = db.Column(db.String(255), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    transaction_id = db.Column(db.String(128), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    earning_entries = db.Column(db.JSON, nullable=False, default=list)
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    earnings = db.relationship("EarningEntry", back_populates="payout", lazy="dynamic")

    __table_args__ = (
        db.Index("ix_payouts_business_status", "business_id", "status"),
        db.UniqueConstraint("business_id", "idempotency_key", name="uq_payout_business_idempotency_key"),
        db.CheckConstraint("net_amount >= 0", name="ck_payout_net_non_negative"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "business_id": self.business_id,
            "total_amount": self.total_amount,
            "fee_amount": self.fee_amount,
            "net_amount": self.net_amount,
            "status": self.status,
            "method": self.method,
            "destination_account": self.destination_account,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "transaction_id": self.transaction_id,
            "failure_reason": self.failure_reason,
            "idempotency_key": self.idempotency_key,
            "earning_entries": list(self.earning_entries or []),
            "metadata": self.meta or {},
        }
