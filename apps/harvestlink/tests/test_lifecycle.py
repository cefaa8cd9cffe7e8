import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app import lifecycle
from app.database import engine, session_scope
from app.errors import AppError
from app.models import Base, User, Farmer, Buyer, Listing, Order


NOW = datetime(2024, 5, 1, 9, 0, 0)


def _order(status=lifecycle.PENDING, pickup_time=None) -> Order:
    return Order(quantity=1, price_per_unit=Decimal("1.00"), total_price=Decimal("1.00"), status=status, pickup_time=pickup_time)


def _seed_order(status=lifecycle.CONFIRMED, pickup_time=None):
    """Persist a farmer, buyer, listing and one order; returns (order_id, buyer_id)."""
    Base.metadata.create_all(bind=engine)
    tag = uuid.uuid4().hex[:10]
    with session_scope() as db:
        fu = User(email=f"lc-farmer-{tag}@example.com", password_hash="x", role="farmer")
        bu = User(email=f"lc-buyer-{tag}@example.com", password_hash="x", role="buyer")
        db.add_all([fu, bu])
        db.flush()
        f = Farmer(user_id=fu.id, farm_name="Lifecycle Farm")
        b = Buyer(user_id=bu.id, business_name="Lifecycle Cafe")
        db.add_all([f, b])
        db.flush()
        l = Listing(farmer_id=f.id, title="Okra", category="Vegetables", quantity=5, unit="kg", price_per_unit=Decimal("2.00"))
        db.add(l)
        db.flush()
        o = Order(
            buyer_id=b.id, listing_id=l.id, quantity=1, price_per_unit=Decimal("2.00"),
            total_price=Decimal("2.00"), status=status, pickup_time=pickup_time,
        )
        db.add(o)
        db.flush()
        return o.id, b.id


def _status(oid) -> str:
    with session_scope() as db:
        return db.get(Order, oid).status


def test_transition_table():
    assert lifecycle.can_transition("pending", "confirmed")
    assert lifecycle.can_transition("pending", "cancelled")
    assert lifecycle.can_transition("confirmed", "completed")
    assert not lifecycle.can_transition("pending", "completed")
    assert not lifecycle.can_transition("confirmed", "cancelled")
    assert not lifecycle.can_transition("completed", "pending")
    assert not lifecycle.can_transition("cancelled", "confirmed")


def test_is_due():
    assert lifecycle.is_due(_order(lifecycle.CONFIRMED, NOW - timedelta(seconds=1)), NOW)
    assert lifecycle.is_due(_order(lifecycle.CONFIRMED, NOW), NOW)
    assert not lifecycle.is_due(_order(lifecycle.CONFIRMED, NOW + timedelta(minutes=1)), NOW)
    assert not lifecycle.is_due(_order(lifecycle.PENDING, NOW - timedelta(minutes=1)), NOW)


def test_confirm_sets_flat_pickup():
    oid, _ = _seed_order(lifecycle.PENDING)
    with session_scope() as db:
        o = lifecycle.confirm(db, db.get(Order, oid), NOW)
        assert o.status == "confirmed"
        assert o.pickup_time == NOW + timedelta(minutes=30)
    assert _status(oid) == "confirmed"


def test_complete_requires_confirmed():
    oid, _ = _seed_order(lifecycle.PENDING)
    with session_scope() as db:
        with pytest.raises(AppError) as ei:
            lifecycle.complete(db, db.get(Order, oid), NOW)
    assert ei.value.code == "invalid_transition"
    assert ei.value.status_code == 409

    oid, _ = _seed_order(lifecycle.CONFIRMED, NOW + timedelta(minutes=30))
    with session_scope() as db:
        o = lifecycle.complete(db, db.get(Order, oid), NOW)
        assert o.status == "completed"
        assert o.pickup_time == NOW
        # second completion is a no-op
        assert lifecycle.complete(db, o, NOW + timedelta(hours=1)).pickup_time == NOW


def test_cancel_only_pending():
    oid, _ = _seed_order(lifecycle.PENDING)
    with session_scope() as db:
        assert lifecycle.cancel(db, db.get(Order, oid), NOW).status == "cancelled"

    oid, _ = _seed_order(lifecycle.CONFIRMED, NOW)
    with session_scope() as db:
        with pytest.raises(AppError):
            lifecycle.cancel(db, db.get(Order, oid), NOW)
    assert _status(oid) == "confirmed"


def test_stale_cancel_does_not_override_confirm():
    oid, _ = _seed_order(lifecycle.PENDING)
    with session_scope() as buyer_db:
        stale = buyer_db.get(Order, oid)
        assert stale.status == "pending"

        # The farmer confirms from another session while the buyer's copy is stale
        with session_scope() as farmer_db:
            lifecycle.confirm(farmer_db, farmer_db.get(Order, oid), NOW)

        with pytest.raises(AppError) as ei:
            lifecycle.cancel(buyer_db, stale, NOW)
        assert ei.value.code == "invalid_transition"
        assert ei.value.details == {"from": "confirmed", "to": "cancelled"}
    assert _status(oid) == "confirmed"


def test_stale_complete_after_auto_complete_is_a_no_op():
    oid, bid = _seed_order(lifecycle.CONFIRMED, NOW - timedelta(minutes=5))
    with session_scope() as farmer_db:
        stale = farmer_db.get(Order, oid)
        with session_scope() as other:
            assert lifecycle.auto_complete_due(other, NOW, buyer_id=bid) == 1
        assert lifecycle.complete(farmer_db, stale, NOW).status == "completed"
    assert _status(oid) == "completed"


def test_auto_complete_runs_once():
    oid, bid = _seed_order(lifecycle.CONFIRMED, NOW - timedelta(minutes=5))
    with session_scope() as db:
        assert lifecycle.auto_complete_due(db, NOW, buyer_id=bid) == 1
        assert lifecycle.auto_complete_due(db, NOW, buyer_id=bid) == 0
    with session_scope() as db:
        assert lifecycle.auto_complete_due(db, NOW, buyer_id=bid) == 0
        assert db.get(Order, oid).status == "completed"


def test_auto_complete_skips_future_pickups():
    oid, bid = _seed_order(lifecycle.CONFIRMED, NOW + timedelta(minutes=5))
    with session_scope() as db:
        assert lifecycle.auto_complete_due(db, NOW, buyer_id=bid) == 0
        assert db.get(Order, oid).status == "confirmed"
