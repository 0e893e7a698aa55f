from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import func

from rxfinancials.errors import INVALID_INPUT, NOT_FOUND, AppError
from rxfinancials.extensions import db
from rxfinancials.models import EarningEntry, Payout
from rxfinancials.services.audit_service import AuditService
from rxfinancials.services.fees import consultation_split, line_fee, order_processor_fee, to_minor_units
from rxfinancials.services.inputs import PERIODS, EarningCriteria
from rxfinancials.services.ledger import (
    AVAILABLE,
    PAID,
    PAID_OUT,
    PAYOUT_COMPLETED,
    PAYOUT_PENDING,
    PAYOUT_PROCESSING,
    PENDING,
    REVERSED,
    transition_earning,
)
from rxfinancials.services.platform_service import PlatformService


class EarningsService:
    @staticmethod
    def query(criteria=None):
        criteria = criteria or EarningCriteria()
        query = EarningEntry.query
        if not criteria.include_deleted:
            query = query.filter(EarningEntry.deleted_at.is_(None))
        if criteria.business_id:
            query = query.filter(EarningEntry.business_id == criteria.business_id)
        if criteria.status:
            query = query.filter(EarningEntry.status == criteria.status)
        if criteria.statuses:
            query = query.filter(EarningEntry.status.in_(criteria.statuses))
        if criteria.type:
            query = query.filter(EarningEntry.type == criteria.type)
        if criteria.order_id:
            query = query.filter(EarningEntry.order_id == criteria.order_id)
        if criteria.consultation_id:
            query = query.filter(EarningEntry.consultation_id == criteria.consultation_id)
        if criteria.payout_id is not None:
            query = query.filter(EarningEntry.payout_id == criteria.payout_id)
        if criteria.date_from:
            query = query.filter(EarningEntry.created_at >= criteria.date_from)
        if criteria.date_to:
            query = query.filter(EarningEntry.created_at <= criteria.date_to)
        return query

    @staticmethod
    def list_earnings(criteria=None, page=None, per_page=20):
        query = EarningsService.query(criteria).order_by(EarningEntry.created_at.desc(), EarningEntry.id.desc())
        if page is None:
            return query.all()
        return query.paginate(page=page, per_page=per_page, error_out=False)

    @staticmethod
    def get_earning(earning_id, include_deleted=False):
        earning = db.session.get(EarningEntry, earning_id)
        if not earning or (earning.is_deleted and not include_deleted):
            raise AppError(f"Earning {earning_id} not found.", 404, NOT_FOUND)
        return earning

    @staticmethod
    def calculate_order_earnings(order, actor=None):
        """Create one pending earning per line item plus one for shipping.

        The processor fee is computed once for the whole order and prorated by
        each line's share of the order total.
        """
        existing = EarningsService.list_earnings(
            EarningCriteria(business_id=order.business_id, order_id=order.id)
        )
        if existing:
            current_app.logger.info("Earnings already calculated for order %s", order.id)
            return sorted(existing, key=lambda e: e.id)

        schedule = PlatformService.fee_schedule()
        currency = order.currency_code or current_app.config["DEFAULT_CURRENCY"]
        order_fee = order_processor_fee(order.total, schedule)

        earnings = []
        for item in order.items:
            fee = line_fee(item.total, order_fee, schedule)
            earnings.append(
                EarningEntry(
                    business_id=order.business_id,
                    order_id=order.id,
                    line_item_id=item.id,
                    type="product_sale",
                    description=item.title or f"Product sale for order {order.id}",
                    gross_amount=fee.gross,
                    platform_fee=fee.platform_fee,
                    payment_processing_fee=fee.processing_fee,
                    net_amount=fee.net,
                    status=PENDING,
                    meta={
                        "currency_code": currency,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                        "processor_fee_breakdown": fee.breakdown(),
                    },
                )
            )

        if order.shipping_total > 0:
            fee = line_fee(order.shipping_total, order_fee, schedule)
            earnings.append(
                EarningEntry(
                    business_id=order.business_id,
                    order_id=order.id,
                    type="shipping_fee",
                    description=f"Shipping for order {order.id}",
                    gross_amount=fee.gross,
                    platform_fee=fee.platform_fee,
                    payment_processing_fee=fee.processing_fee,
                    net_amount=fee.net,
                    status=PENDING,
                    meta={
                        "currency_code": currency,
                        "processor_fee_breakdown": fee.breakdown(),
                    },
                )
            )

        db.session.add_all(earnings)
        db.session.flush()
        AuditService.record(
            "order",
            order.id,
            "earnings_created",
            actor=actor,
            changes={
                "earning_ids": [e.id for e in earnings],
                "order_total": order.total,
                "processor_fee_total": order_fee.total,
            },
        )
        db.session.commit()
        current_app.logger.info(
            "Created %s earnings for order %s (total=%s, processor_fee=%s)",
            len(earnings),
            order.id,
            order.total,
            order_fee.total,
        )
        return earnings

    @staticmethod
    def calculate_consultation_earnings(consultation, actor=None):
        existing = EarningsService.list_earnings(EarningCriteria(consultation_id=consultation.id))
        if existing:
            current_app.logger.info("Earnings already calculated for consultation %s", consultation.id)
            return sorted(existing, key=lambda e: e.id)

        total = to_minor_units(consultation.fee)
        if total < 0:
            raise AppError("Consultation fee cannot be negative.", 400, INVALID_INPUT)

        schedule = PlatformService.fee_schedule()
        split = consultation_split(total, schedule, has_clinician=bool(consultation.clinician_id))
        currency = consultation.currency_code or current_app.config["DEFAULT_CURRENCY"]
        description = f"Consultation fee for consultation {consultation.id}"

        earnings = []
        if consultation.clinician_id:
            # Clinicians are paid directly, so the clinician is the recipient business.
            earnings.append(
                EarningEntry(
                    business_id=consultation.clinician_id,
                    consultation_id=consultation.id,
                    type="clinician_fee",
                    description=description,
                    gross_amount=split.clinician_share,
                    platform_fee=0,
                    payment_processing_fee=0,
                    net_amount=split.clinician_share,
                    status=PENDING,
                    meta={
                        "currency_code": currency,
                        "recipient_type": "clinician",
                        "original_consultation_fee": total,
                        "clinician_share_percent": float(schedule.clinician_share_percent),
                    },
                )
            )

        earnings.append(
            EarningEntry(
                business_id=consultation.business_id,
                consultation_id=consultation.id,
                type="consultation_fee",
                description=description,
                gross_amount=split.business_share,
                platform_fee=split.platform_fee,
                payment_processing_fee=0,
                net_amount=split.business_share,
                clinician_fee=split.clinician_share if consultation.clinician_id else None,
                status=PENDING,
                meta={
                    "currency_code": currency,
                    "recipient_type": "business",
                    "original_consultation_fee": total,
                },
            )
        )

        db.session.add_all(earnings)
        db.session.flush()
        AuditService.record(
            "consultation",
            consultation.id,
            "earnings_created",
            actor=actor,
            changes={"earning_ids": [e.id for e in earnings], "fee": total, "platform_fee": split.platform_fee},
        )
        db.session.commit()
        return earnings

    @staticmethod
    def _release(criteria, entity_type, entity_id, actor):
        now = datetime.now(timezone.utc)
        earnings = EarningsService.query(criteria).all()
        for earning in earnings:
            transition_earning(earning, AVAILABLE, now=now)
        if earnings:
            AuditService.record(
                entity_type,
                entity_id,
                "earnings_available",
                actor=actor,
                changes={"earning_ids": [e.id for e in earnings]},
            )
        db.session.commit()
        current_app.logger.info("Released %s earnings for %s %s", len(earnings), entity_type, entity_id)
        return earnings

    @staticmethod
    def make_earnings_available(order_id, actor=None):
        return EarningsService._release(
            EarningCriteria(order_id=order_id, status=PENDING), "order", order_id, actor
        )

    @staticmethod
    def make_consultation_earnings_available(consultation_id, actor=None):
        return EarningsService._release(
            EarningCriteria(consultation_id=consultation_id, status=PENDING), "consultation", consultation_id, actor
        )

    @staticmethod
    def cancel_earnings(order_id, actor=None):
        """Reverse the order's pending and available earnings.

        Earnings already locked to a payout or paid are left untouched.
        """
        reversible = EarningsService.query(EarningCriteria(order_id=order_id, statuses=[PENDING, AVAILABLE])).all()
        locked = EarningsService.query(EarningCriteria(order_id=order_id, statuses=[PAID_OUT, PAID])).all()
        reversed_ids = []
        for earning in reversible:
            transition_earning(earning, REVERSED)
            reversed_ids.append(earning.id)
        skipped_ids = [earning.id for earning in locked]

        if reversed_ids or skipped_ids:
            AuditService.record(
                "order",
                order_id,
                "earnings_reversed",
                actor=actor,
                changes={"reversed": reversed_ids, "skipped": skipped_ids},
            )
        db.session.commit()
        if skipped_ids:
            current_app.logger.warning(
                "Order %s cancelled with %s earnings already locked or paid: %s",
                order_id,
                len(skipped_ids),
                skipped_ids,
            )
        return reversed_ids

    @staticmethod
    def _sum(query, column):
        return int(query.with_entities(func.coalesce(func.sum(column), 0)).scalar() or 0)

    @staticmethod
    def get_earnings_summary(business_id):
        base = EarningsService.query(EarningCriteria(business_id=business_id))
        available = EarningsService._sum(base.filter(EarningEntry.status == AVAILABLE), EarningEntry.net_amount)
        pending = EarningsService._sum(base.filter(EarningEntry.status == PENDING), EarningEntry.net_amount)
        pending_payout = EarningsService._sum(base.filter(EarningEntry.status == PAID_OUT), EarningEntry.net_amount)
        lifetime = EarningsService._sum(base.filter(EarningEntry.status != REVERSED), EarningEntry.net_amount)

        now = datetime.now(timezone.utc)
        year_start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
        ytd_query = Payout.query.filter(
            Payout.deleted_at.is_(None),
            Payout.business_id == business_id,
            Payout.status == PAYOUT_COMPLETED,
            Payout.completed_at >= year_start,
        )
        ytd_payouts = EarningsService._sum(ytd_query, Payout.net_amount)

        next_payout_date = None
        if available > 0:
            next_payout_date = now + timedelta(days=current_app.config["NEXT_PAYOUT_DAYS"])

        return {
            "available": available,
            "pending": pending,
            "pending_payout": pending_payout,
            "lifetime": lifetime,
            "ytd_payouts": ytd_payouts,
            "next_payout_date": next_payout_date,
        }

    @staticmethod
    def get_platform_summary():
        valid = EarningsService.query().filter(EarningEntry.status != REVERSED)
        payouts = Payout.query.filter(Payout.deleted_at.is_(None))
        return {
            "total_gross": EarningsService._sum(valid, EarningEntry.gross_amount),
            "total_platform_fees": EarningsService._sum(valid, EarningEntry.platform_fee),
            "total_paid_out": EarningsService._sum(
                payouts.filter(Payout.status == PAYOUT_COMPLETED), Payout.net_amount
            ),
            "pending_payouts": EarningsService._sum(
                payouts.filter(Payout.status.in_([PAYOUT_PENDING, PAYOUT_PROCESSING])), Payout.net_amount
            ),
        }

    @staticmethod
    def _period_key(created_at, period):
        if period == "day":
            return created_at.strftime("%Y-%m-%d")
        if period == "week":
            # Weeks start on Sunday.
            week_start = created_at - timedelta(days=(created_at.weekday() + 1) % 7)
            return week_start.strftime("%Y-%m-%d")
        if period == "month":
            return created_at.strftime("%Y-%m")
        return created_at.strftime("%Y")

    @staticmethod
    def get_earnings_by_period(period, date_from=None, date_to=None):
        if period not in PERIODS:
            raise AppError(f"Invalid period: {period}.", 400, INVALID_INPUT)

        earnings = (
            EarningsService.query(EarningCriteria(date_from=date_from, date_to=date_to))
            .filter(EarningEntry.status != REVERSED)
            .all()
        )
        grouped = {}
        for earning in earnings:
            key = EarningsService._period_key(earning.created_at, period)
            bucket = grouped.setdefault(key, {"gross": 0, "net": 0})
            bucket["gross"] += int(earning.gross_amount)
            bucket["net"] += int(earning.net_amount)

        return [{"period": key, **grouped[key]} for key in sorted(grouped)]

    @staticmethod
    def delete_earning(earning_id, actor=None):
        earning = EarningsService.get_earning(earning_id)
        if earning.status in {PAID_OUT, PAID}:
            raise AppError(f"Earning {earning_id} is linked to a payout and cannot be deleted.", 409)
        earning.deleted_at = datetime.now(timezone.utc)
        AuditService.record("earning", earning.id, "delete", actor=actor)
        db.session.commit()
        return earning

    @staticmethod
    def restore_earning(earning_id, actor=None):
        earning = EarningsService.get_earning(earning_id, include_deleted=True)
        earning.deleted_at = None
        AuditService.record("earning", earning.id, "restore", actor=actor)
        db.session.commit()
        return earning
