from rxfinancials.extensions import db
from rxfinancials.models import AuditLog


class AuditService:
    @staticmethod
    def record(entity_type, entity_id, action, actor=None, changes=None):
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            actor=actor,
            changes=changes or {},
        )
        db.session.add(entry)
        return entry

    @staticmethod
    def for_entity(entity_type, entity_id, limit=50):
        return (
            AuditLog.query.filter_by(entity_type=entity_type, entity_id=str(entity_id))
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
            .all()
        )
