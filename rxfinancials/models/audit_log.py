from rxfinancials.extensions import db
from rxfinancials.models.base import PKType, TimestampMixin


class AuditLog(TimestampMixin, db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    action = db.Column(db.String(32), nullable=False, index=True)
    actor = db.Column(db.String(128), nullable=True)
    changes = db.Column(db.JSON, nullable=False, default=dict)

    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )
