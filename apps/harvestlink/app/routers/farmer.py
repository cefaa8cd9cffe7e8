from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import require_farmer, SessionContext
from ..config import settings
from ..database import get_db
from ..errors import AppError
from .. import lifecycle
from ..models import Farmer, Listing, Order
from ..schemas import (
    OrderStatus,
    ListingCreateIn,
    ListingUpdateIn,
    ListingOut,
    OrderOut,
    OrdersListOut,
    FarmerStatsOut,
)
from ..serializers import to_listing_out, to_order_out
from ..storage import photo_store
from ..utils import as_uuid, notify, utcnow


router = APIRouter(prefix="/farmer", tags=["farmer"])


def _owned_listing(db: Session, listing_id: str, ctx: SessionContext) -> Listing:
    lid = as_uuid(listing_id)
    l = db.get(Listing, lid) if lid else None
    if l is None:
        raise AppError("listing_not_found", "Listing not found", 404)
    if l.farmer_id != ctx.farmer_id:
        raise AppError("forbidden", "Listing belongs to another farmer", 403)
    return l


def _farmer_order(db: Session, order_id: str, ctx: SessionContext) -> Order:
    oid = as_uuid(order_id)
    o = db.get(Order, oid, with_for_update=True) if oid else None
    if o is None or o.listing is None or o.listing.farmer_id != ctx.farmer_id:
        raise AppError("order_not_found", "Order not found", 404)
    return o


@router.post("/listings", response_model=ListingOut)
def create_listing(payload: ListingCreateIn, ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    f = db.get(Farmer, ctx.farmer_id)
    lat, lng = payload.location_lat, payload.location_lng
    if lat is None or lng is None:
        # Fall back to the farm's own coordinates
        lat, lng = f.location_lat, f.location_lng
    l = Listing(
        farmer_id=f.id,
        title=payload.title.strip(),
        category=payload.category.strip(),
        quantity=payload.quantity,
        unit=payload.unit or "kg",
        price_per_unit=payload.price_per_unit,
        harvest_date=payload.harvest_date,
        pickup_location=payload.pickup_location or f.location_address,
        location_lat=lat,
        location_lng=lng,
        cosmetic_notes=payload.cosmetic_notes,
        photos=[],
        status="available",
    )
    db.add(l)
    db.flush()
    notify("listing.created", {"listing_id": str(l.id), "farmer_id": str(f.id)})
    return to_listing_out(l)


@router.get("/listings", response_model=list[ListingOut])
def list_my_listings(ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    rows = db.query(Listing).filter(Listing.farmer_id == ctx.farmer_id).order_by(Listing.created_at.desc()).all()
    return [to_listing_out(l) for l in rows]


@router.patch("/listings/{listing_id}", response_model=ListingOut)
def update_listing(listing_id: str, payload: ListingUpdateIn, ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    l = _owned_listing(db, listing_id, ctx)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field in ("title", "category", "quantity", "unit", "price_per_unit", "status"):
            continue
        setattr(l, field, value)
    db.flush()
    notify("listing.updated", {"listing_id": str(l.id)})
    return to_listing_out(l)


@router.post("/listings/{listing_id}/toggle_stock", response_model=ListingOut)
def toggle_stock(listing_id: str, ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    l = _owned_listing(db, listing_id, ctx)
    l.status = "out_of_stock" if l.status == "available" else "available"
    db.flush()
    notify("listing.stock_toggled", {"listing_id": str(l.id), "status": l.status})
    return to_listing_out(l)


@router.delete("/listings/{listing_id}")
def delete_listing(
    listing_id: str,
    confirm: bool = Query(False, description="must be true to delete"),
    ctx: SessionContext = Depends(require_farmer),
    db: Session = Depends(get_db),
):
    l = _owned_listing(db, listing_id, ctx)
    if not confirm:
        raise AppError("confirmation_required", "Pass confirm=true to delete this listing permanently")
    photos = list(l.photos or [])
    db.delete(l)
    db.flush()
    for url in photos:
        photo_store.delete_url(url)
    notify("listing.deleted", {"listing_id": listing_id})
    return {"detail": "deleted"}


@router.post("/listings/{listing_id}/photos", response_model=ListingOut)
def upload_photos(
    listing_id: str,
    files: list[UploadFile] = File(...),
    ctx: SessionContext = Depends(require_farmer),
    db: Session = Depends(get_db),
):
    l = _owned_listing(db, listing_id, ctx)
    current = list(l.photos or [])
    if len(current) + len(files) > settings.MAX_LISTING_PHOTOS:
        raise AppError(
            "too_many_photos",
            f"Maximum {settings.MAX_LISTING_PHOTOS} photos allowed",
            422,
            {"max": settings.MAX_LISTING_PHOTOS, "current": len(current)},
        )
    urls = photo_store.save_all(str(l.id), [(f.filename, f.file.read()) for f in files])
    l.photos = current + urls
    try:
        db.flush()
    except Exception:
        for url in urls:
            photo_store.delete_url(url)
        raise
    return to_listing_out(l)


@router.delete("/listings/{listing_id}/photos", response_model=ListingOut)
def remove_photo(listing_id: str, url: str, ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    l = _owned_listing(db, listing_id, ctx)
    current = list(l.photos or [])
    if url not in current:
        raise AppError("photo_not_found", "Photo not found on this listing", 404)
    current.remove(url)
    l.photos = current
    db.flush()
    photo_store.delete_url(url)
    return to_listing_out(l)


@router.get("/orders", response_model=OrdersListOut)
def list_orders(
    status: OrderStatus | None = Query(None),
    ctx: SessionContext = Depends(require_farmer),
    db: Session = Depends(get_db),
):
    q = db.query(Order).join(Listing, Order.listing_id == Listing.id).filter(Listing.farmer_id == ctx.farmer_id)
    if status:
        q = q.filter(Order.status == status)
    rows = q.order_by(Order.created_at.desc()).all()
    return OrdersListOut(orders=[to_order_out(o) for o in rows])


@router.post("/orders/{order_id}/confirm", response_model=OrderOut)
def confirm_order(order_id: str, ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    o = _farmer_order(db, order_id, ctx)
    lifecycle.confirm(db, o, utcnow())
    notify("order.confirmed", {"order_id": str(o.id), "pickup_time": o.pickup_time.isoformat()})
    return to_order_out(o)


@router.post("/orders/{order_id}/complete", response_model=OrderOut)
def complete_order(order_id: str, ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    o = _farmer_order(db, order_id, ctx)
    was_completed = o.status == lifecycle.COMPLETED
    lifecycle.complete(db, o, utcnow())
    if not was_completed:
        notify("order.completed", {"order_id": str(o.id), "auto": False})
    return to_order_out(o)


@router.get("/stats", response_model=FarmerStatsOut)
def stats(ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    total_listings = db.query(func.count(Listing.id)).filter(Listing.farmer_id == ctx.farmer_id).scalar() or 0
    available = (
        db.query(func.count(Listing.id))
        .filter(Listing.farmer_id == ctx.farmer_id, Listing.status == "available")
        .scalar()
        or 0
    )
    rows = (
        db.query(Order.status, func.count(Order.id), func.sum(Order.total_price))
        .join(Listing, Order.listing_id == Listing.id)
        .filter(Listing.farmer_id == ctx.farmer_id)
        .group_by(Order.status)
        .all()
    )
    counts = {s: (int(c), sm) for (s, c, sm) in rows}
    pending = counts.get(lifecycle.PENDING, (0, None))[0]
    confirmed = counts.get(lifecycle.CONFIRMED, (0, None))[0]
    completed, revenue = counts.get(lifecycle.COMPLETED, (0, None))
    return FarmerStatsOut(
        total_listings=int(total_listings),
        available_listings=int(available),
        pending_orders=pending,
        active_orders=pending + confirmed,
        completed_orders=completed,
        total_revenue=float(revenue or 0),
    )
