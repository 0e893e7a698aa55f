import pytest

from rxfinancials import create_app
from rxfinancials.extensions import db
from rxfinancials.models import EarningEntry


@pytest.fixture()
def app():
    app = create_app("testing")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def auth_headers(app):
    return {"Authorization": f"Bearer {app.config['FINANCIALS_API_TOKEN']}"}


@pytest.fixture()
def make_earning(app):
    """Insert an earning directly; gross defaults to net plus fees."""

    def _make(
        business_id="biz_1",
        net=10000,
        gross=None,
        platform_fee=0,
        processing_fee=0,
        status="available",
        type="product_sale",
        payout_id=None,
        **extra,
    ):
        earning = EarningEntry(
            business_id=business_id,
            type=type,
            gross_amount=gross if gross is not None else net + platform_fee + processing_fee,
            platform_fee=platform_fee,
            payment_processing_fee=processing_fee,
            net_amount=net,
            status=status,
            payout_id=payout_id,
            **extra,
        )
        db.session.add(earning)
        db.session.commit()
        return earning

    return _make
