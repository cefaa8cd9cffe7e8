from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ..auth import require_buyer, SessionContext
from ..database import get_db
from ..delivery import quote_order
from ..errors import AppError
from ..models import Buyer, Listing, Order, Rating
from ..schemas import ListingsListOut, ListingDetailOut, OrderCreateIn, OrderOut, QuoteOut
from ..serializers import to_listing_out, to_farmer_out, to_order_out, to_rating_out
from ..utils import as_uuid, notify, utcnow
from .. import lifecycle


router = APIRouter(prefix="/market", tags=["market"])


def _listing(db: Session, listing_id: str) -> Listing:
    lid = as_uuid(listing_id)
    l = db.get(Listing, lid) if lid else None
    if l is None:
        raise AppError("listing_not_found", "Listing not found", 404)
    return l


def _quote(l: Listing, payload: OrderCreateIn):
    if l.status != "available":
        raise AppError("listing_unavailable", "This listing is out of stock")
    return quote_order(
        origin_lat=l.location_lat,
        origin_lng=l.location_lng,
        delivery_address=payload.delivery_address,
        dest_lat=payload.lat,
        dest_lng=payload.lng,
        quantity=payload.quantity,
        available_quantity=l.quantity,
        price_per_unit=l.price_per_unit,
        now=utcnow(),
    )


@router.get("/listings", response_model=ListingsListOut)
def browse_listings(
    q: str | None = None,
    category: str | None = None,
    farmer_id: str | None = None,
    limit: int = Query(50, gt=0, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    query = db.query(Listing).options(joinedload(Listing.farmer)).filter(Listing.status == "available")
    if q:
        term = q.strip()
        query = query.filter(or_(Listing.title.icontains(term, autoescape=True), Listing.category.icontains(term, autoescape=True)))
    if category and category != "All":
        query = query.filter(Listing.category == category)
    if farmer_id:
        fid = as_uuid(farmer_id)
        if fid is None:
            return ListingsListOut(listings=[], total=0)
        query = query.filter(Listing.farmer_id == fid)
    total = query.count()
    rows = query.order_by(Listing.created_at.desc()).limit(limit).offset(offset).all()
    return ListingsListOut(listings=[to_listing_out(l) for l in rows], total=total)


@router.get("/categories", response_model=list[str])
def categories(db: Session = Depends(get_db)):
    rows = db.query(Listing.category).filter(Listing.status == "available").distinct().order_by(Listing.category).all()
    return [c for (c,) in rows]


@router.get("/listings/{listing_id}", response_model=ListingDetailOut)
def get_listing(listing_id: str, db: Session = Depends(get_db)):
    l = _listing(db, listing_id)
    ratings = (
        db.query(Rating)
        .filter(Rating.rated_user_id == l.farmer_id)
        .order_by(Rating.created_at.desc())
        .limit(10)
        .all()
    )
    avg = sum(r.rating for r in ratings) / len(ratings) if ratings else 0.0
    return ListingDetailOut(
        listing=to_listing_out(l),
        farmer=to_farmer_out(l.farmer) if l.farmer else None,
        ratings=[to_rating_out(r) for r in ratings],
        average_rating=avg,
    )


@router.post("/listings/{listing_id}/quote", response_model=QuoteOut)
def quote(listing_id: str, payload: OrderCreateIn, db: Session = Depends(get_db)):
    l = _listing(db, listing_id)
    qt = _quote(l, payload)
    return QuoteOut(
        listing_id=str(l.id), quantity=payload.quantity, distance_km=round(qt.distance_km, 3),
        estimated_minutes=qt.estimated_minutes, pickup_time=qt.pickup_time,
        total_price=float(qt.total_price), max_km=qt.max_km,
    )


@router.post("/listings/{listing_id}/order", response_model=OrderOut)
def place_order(listing_id: str, payload: OrderCreateIn, ctx: SessionContext = Depends(require_buyer), db: Session = Depends(get_db)):
    l = _listing(db, listing_id)
    qt = _quote(l, payload)
    o = Order(
        buyer_id=ctx.buyer_id,
        listing_id=l.id,
        quantity=payload.quantity,
        price_per_unit=l.price_per_unit,
        total_price=qt.total_price,
        delivery_address=payload.delivery_address.strip(),
        distance_km=round(qt.distance_km, 3),
        estimated_minutes=qt.estimated_minutes,
        pickup_time=qt.pickup_time,
        status=lifecycle.PENDING,
    )
    db.add(o)
    # Same transaction as the order: both land or neither does
    b = db.get(Buyer, ctx.buyer_id)
    b.location_address = o.delivery_address
    b.location_lat = payload.lat
    b.location_lng = payload.lng
    db.flush()
    notify("order.created", {
        "order_id": str(o.id),
        "listing_id": str(l.id),
        "distance_km": round(qt.distance_km, 1),
        "estimated_minutes": qt.estimated_minutes,
    })
    return to_order_out(o)
