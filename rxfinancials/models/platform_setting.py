from rxfinancials.extensions import db
from rxfinancials.models.base import TimestampMixin


class PlatformSetting(TimestampMixin, db.Model):
    """Runtime override for a fee rate or payout policy knob.

    Per-business keys are namespaced as ``<name>:<business_id>``.
    """

    __tablename__ = "platform_settings"

    key = db.Column(db.String(128), primary_key=True)
    value = db.Column(db.String(255), nullable=False)
