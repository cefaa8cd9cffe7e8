from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from harvestlink_shared import normalize_phone_e164

from ..auth import get_current_user, require_farmer, require_buyer, SessionContext
from ..config import settings
from ..database import get_db
from ..errors import AppError
from ..models import User, Profile, Farmer, Buyer
from ..schemas import ProfileUpdateIn, ProfileOut, FarmerUpdateIn, FarmerOut, BuyerUpdateIn, BuyerOut
from ..serializers import to_profile_out, to_farmer_out, to_buyer_out


router = APIRouter(prefix="/me", tags=["profiles"])


@router.patch("/profile", response_model=ProfileOut)
def update_profile(payload: ProfileUpdateIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    p = db.get(Profile, user.id)
    if p is None:
        raise AppError("profile_not_found", "Profile not found", 404)
    if payload.full_name is not None:
        p.full_name = payload.full_name.strip()
    if payload.phone is not None:
        p.phone = normalize_phone_e164(payload.phone, settings.DEFAULT_PHONE_COUNTRY_CODE) or None
    if payload.avatar_url is not None:
        p.avatar_url = payload.avatar_url or None
    db.flush()
    return to_profile_out(p)


@router.patch("/farmer", response_model=FarmerOut)
def update_farmer(payload: FarmerUpdateIn, ctx: SessionContext = Depends(require_farmer), db: Session = Depends(get_db)):
    f = db.get(Farmer, ctx.farmer_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if field == "farm_name" and value is None:
            continue
        setattr(f, field, value)
    db.flush()
    return to_farmer_out(f)


@router.patch("/buyer", response_model=BuyerOut)
def update_buyer(payload: BuyerUpdateIn, ctx: SessionContext = Depends(require_buyer), db: Session = Depends(get_db)):
    b = db.get(Buyer, ctx.buyer_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if field == "business_name" and value is None:
            continue
        setattr(b, field, value)
    db.flush()
    return to_buyer_out(b)
