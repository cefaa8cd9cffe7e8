from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import get_session_context, require_buyer, SessionContext
from ..database import get_db
from ..errors import AppError
from .. import lifecycle
from ..models import Order, Rating, Message
from ..schemas import (
    OrderStatus,
    OrderOut,
    OrdersListOut,
    BuyerStatsOut,
    RatingCreateIn,
    RatingOut,
    MessageCreateIn,
    MessageOut,
    MessagesListOut,
)
from ..serializers import to_order_out, to_rating_out, to_message_out
from ..utils import as_uuid, notify, utcnow


router = APIRouter(prefix="/orders", tags=["orders"])


def _order_for_party(db: Session, order_id: str, ctx: SessionContext) -> Order:
    """The order, if the caller is its buyer or the farmer of its listing."""
    oid = as_uuid(order_id)
    o = db.get(Order, oid) if oid else None
    if o is not None:
        if ctx.buyer_id is not None and o.buyer_id == ctx.buyer_id:
            return o
        if ctx.farmer_id is not None and o.listing is not None and o.listing.farmer_id == ctx.farmer_id:
            return o
    raise AppError("order_not_found", "Order not found", 404)


@router.get("", response_model=OrdersListOut)
def my_orders(
    status: OrderStatus | None = Query(None),
    ctx: SessionContext = Depends(require_buyer),
    db: Session = Depends(get_db),
):
    # Deliveries whose estimate has passed complete on read, before listing
    lifecycle.auto_complete_due(db, utcnow(), buyer_id=ctx.buyer_id)
    q = db.query(Order).filter(Order.buyer_id == ctx.buyer_id)
    if status:
        q = q.filter(Order.status == status)
    rows = q.order_by(Order.created_at.desc()).all()
    return OrdersListOut(orders=[to_order_out(o) for o in rows])


@router.get("/stats", response_model=BuyerStatsOut)
def my_stats(ctx: SessionContext = Depends(require_buyer), db: Session = Depends(get_db)):
    lifecycle.auto_complete_due(db, utcnow(), buyer_id=ctx.buyer_id)
    rows = (
        db.query(Order.status, func.count(Order.id), func.sum(Order.total_price))
        .filter(Order.buyer_id == ctx.buyer_id)
        .group_by(Order.status)
        .all()
    )
    total = sum(int(c) for (_, c, _) in rows)
    active = sum(int(c) for (s, c, _) in rows if s in lifecycle.ACTIVE_STATUSES)
    completed = next((int(c) for (s, c, _) in rows if s == lifecycle.COMPLETED), 0)
    spent = sum(float(sm or 0) for (s, _, sm) in rows if s == lifecycle.COMPLETED)
    return BuyerStatsOut(total_orders=total, active_orders=active, completed_orders=completed, total_spent=spent)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    o = _order_for_party(db, order_id, ctx)
    if o.buyer_id == ctx.buyer_id and lifecycle.is_due(o, utcnow()):
        lifecycle.auto_complete_due(db, utcnow(), buyer_id=ctx.buyer_id)
        db.refresh(o)
    return to_order_out(o)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(order_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    o = _order_for_party(db, order_id, ctx)
    lifecycle.cancel(db, o, utcnow())
    notify("order.cancelled", {"order_id": str(o.id), "by": ctx.role})
    return to_order_out(o)


@router.post("/{order_id}/rating", response_model=RatingOut)
def rate_order(order_id: str, payload: RatingCreateIn, ctx: SessionContext = Depends(require_buyer), db: Session = Depends(get_db)):
    o = _order_for_party(db, order_id, ctx)
    if o.buyer_id != ctx.buyer_id:
        raise AppError("forbidden", "Only the buyer can rate this order", 403)
    if o.status != lifecycle.COMPLETED:
        raise AppError("order_not_completed", "Only completed orders can be rated", 409, {"status": o.status})
    if o.listing is None:
        raise AppError("listing_missing", "The listing for this order no longer exists", 409)
    if db.query(Rating.id).filter(Rating.order_id == o.id).first() is not None:
        raise AppError("already_rated", "This order has already been rated", 409)
    r = Rating(
        order_id=o.id,
        rater_id=ctx.user_id,
        rated_user_id=o.listing.farmer_id,
        rating=payload.rating,
        review=(payload.review or "").strip() or None,
    )
    db.add(r)
    try:
        db.flush()
    except IntegrityError:
        raise AppError("already_rated", "This order has already been rated", 409)
    notify("rating.created", {"rating_id": str(r.id), "order_id": str(o.id), "rating": r.rating})
    return to_rating_out(r)


@router.get("/{order_id}/rating", response_model=RatingOut | None)
def get_rating(order_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    o = _order_for_party(db, order_id, ctx)
    r = db.query(Rating).filter(Rating.order_id == o.id).one_or_none()
    return to_rating_out(r) if r else None


@router.get("/{order_id}/messages", response_model=MessagesListOut)
def list_messages(order_id: str, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    o = _order_for_party(db, order_id, ctx)
    rows = db.query(Message).filter(Message.order_id == o.id).order_by(Message.created_at.asc()).all()
    return MessagesListOut(messages=[to_message_out(m) for m in rows])


@router.post("/{order_id}/messages", response_model=MessageOut)
def post_message(order_id: str, payload: MessageCreateIn, ctx: SessionContext = Depends(get_session_context), db: Session = Depends(get_db)):
    o = _order_for_party(db, order_id, ctx)
    content = payload.content.strip()
    if not content:
        raise AppError("empty_message", "Message cannot be empty", 422)
    m = Message(order_id=o.id, sender_id=ctx.user_id, content=content)
    db.add(m)
    db.flush()
    notify("message.created", {"message_id": str(m.id), "order_id": str(o.id)})
    return to_message_out(m)
