from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import AppError
from .. import lifecycle
from ..models import Farmer, Listing, Order, Rating
from ..schemas import FarmerPublicOut, RatingsListOut
from ..serializers import to_farmer_out, to_listing_out, to_rating_out
from ..utils import as_uuid


router = APIRouter(prefix="/farmers", tags=["farmers"])


def _farmer(db: Session, farmer_id: str) -> Farmer:
    fid = as_uuid(farmer_id)
    f = db.get(Farmer, fid) if fid else None
    if f is None:
        raise AppError("farmer_not_found", "Farmer not found", 404)
    return f


def _rating_summary(db: Session, farmer_id) -> tuple[float, int]:
    avg, cnt = (
        db.query(func.avg(Rating.rating), func.count(Rating.id))
        .filter(Rating.rated_user_id == farmer_id)
        .one()
    )
    return (float(avg) if avg is not None else 0.0), int(cnt or 0)


@router.get("/{farmer_id}", response_model=FarmerPublicOut)
def farmer_profile(farmer_id: str, db: Session = Depends(get_db)):
    f = _farmer(db, farmer_id)
    completed = (
        db.query(func.count(Order.id))
        .join(Listing, Order.listing_id == Listing.id)
        .filter(Listing.farmer_id == f.id, Order.status == lifecycle.COMPLETED)
        .scalar()
        or 0
    )
    avg, cnt = _rating_summary(db, f.id)
    listings = (
        db.query(Listing)
        .filter(Listing.farmer_id == f.id, Listing.status == "available")
        .order_by(Listing.created_at.desc())
        .all()
    )
    return FarmerPublicOut(
        farmer=to_farmer_out(f),
        completed_orders=int(completed),
        average_rating=avg,
        total_reviews=cnt,
        listings=[to_listing_out(l) for l in listings],
    )


@router.get("/{farmer_id}/ratings", response_model=RatingsListOut)
def farmer_ratings(
    farmer_id: str,
    limit: int = Query(50, gt=0, le=200),
    db: Session = Depends(get_db),
):
    f = _farmer(db, farmer_id)
    rows = (
        db.query(Rating)
        .filter(Rating.rated_user_id == f.id)
        .order_by(Rating.created_at.desc())
        .limit(limit)
        .all()
    )
    avg, cnt = _rating_summary(db, f.id)
    return RatingsListOut(ratings=[to_rating_out(r) for r in rows], average_rating=avg, total=cnt)
