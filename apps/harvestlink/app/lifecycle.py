import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .config import settings
from .errors import AppError
from .models import Order
from .utils import notify


log = logging.getLogger(__name__)

PENDING = "pending"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"

ACTIVE_STATUSES = (PENDING, CONFIRMED)

_ALLOWED = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {COMPLETED},
    COMPLETED: set(),
    CANCELLED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in _ALLOWED.get(current, set())


def _invalid(order: Order, target: str) -> AppError:
    return AppError(
        "invalid_transition",
        f"Cannot move order from {order.status} to {target}",
        409,
        {"from": order.status, "to": target},
    )


def _require(order: Order, target: str) -> None:
    if not can_transition(order.status, target):
        raise _invalid(order, target)


def _apply(db: Session, order: Order, target: str, now: datetime, **values) -> Order:
    """Move ``order`` to ``target`` only if the row still has the status it was checked against.

    A concurrent writer that got there first leaves no row to update; the
    order is reloaded and, unless it already reached ``target``, the caller
    gets ``invalid_transition``.
    """
    _require(order, target)
    expected = order.status
    res = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == expected)
        .values(status=target, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(order)
    if res.rowcount != 1 and order.status != target:
        raise _invalid(order, target)
    return order


def confirm(db: Session, order: Order, now: datetime) -> Order:
    # Flat farmer estimate; the distance-based one stays in estimated_minutes
    return _apply(db, order, CONFIRMED, now, pickup_time=now + timedelta(minutes=settings.CONFIRM_PICKUP_MINUTES))


def complete(db: Session, order: Order, now: datetime) -> Order:
    """Farmer's "mark delivered". Completing an already completed order is a no-op."""
    if order.status == COMPLETED:
        return order
    return _apply(db, order, COMPLETED, now, pickup_time=now)


def cancel(db: Session, order: Order, now: datetime) -> Order:
    return _apply(db, order, CANCELLED, now)


def is_due(order: Order, now: datetime) -> bool:
    return order.status == CONFIRMED and order.pickup_time is not None and order.pickup_time <= now


def auto_complete_due(db: Session, now: datetime, buyer_id=None) -> int:
    """Complete confirmed orders whose pickup estimate has passed.

    Each write is conditional on the order still being confirmed, so repeated
    or concurrent runs complete an order at most once. Returns the number of
    orders this call completed.
    """
    db.flush()
    q = select(Order.id).where(Order.status == CONFIRMED, Order.pickup_time.is_not(None), Order.pickup_time <= now)
    if buyer_id is not None:
        q = q.where(Order.buyer_id == buyer_id)
    due_ids = db.execute(q).scalars().all()
    done = 0
    for oid in due_ids:
        res = db.execute(
            update(Order)
            .where(Order.id == oid, Order.status == CONFIRMED)
            .values(status=COMPLETED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            done += 1
            notify("order.completed", {"order_id": str(oid), "auto": True})
    if done:
        db.expire_all()
        log.info("auto-completed %d order(s)", done)
    return done
