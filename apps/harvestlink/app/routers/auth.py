import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from harvestlink_shared import normalize_phone_e164, mask_phone

from ..auth import hash_password, verify_password, make_token, get_current_user
from ..config import settings
from ..database import get_db
from ..errors import AppError
from ..models import User, Profile, Farmer, Buyer
from ..schemas import SignupIn, LoginIn, TokenOut, MeOut
from ..serializers import to_profile_out, to_farmer_out, to_buyer_out
from ..utils import notify


log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=TokenOut)
def signup(payload: SignupIn, db: Session = Depends(get_db)):
    """Create the identity, its profile and the role record in one transaction."""
    email = payload.email.strip().lower()
    farm_name = (payload.farm_name or "").strip()
    business_name = (payload.business_name or "").strip()
    if payload.role == "farmer" and not farm_name:
        raise AppError("farm_name_required", "Farm name is required for farmers", 422)
    if payload.role == "buyer" and not business_name:
        raise AppError("business_name_required", "Business name is required for buyers", 422)
    if db.query(User).filter(User.email == email).one_or_none() is not None:
        raise AppError("email_taken", "An account with this email already exists", 409)

    u = User(email=email, password_hash=hash_password(payload.password), role=payload.role)
    db.add(u)
    db.flush()
    phone = normalize_phone_e164(payload.phone, settings.DEFAULT_PHONE_COUNTRY_CODE) or None
    db.add(Profile(id=u.id, full_name=payload.full_name.strip(), phone=phone))
    if payload.role == "farmer":
        db.add(Farmer(user_id=u.id, farm_name=farm_name))
    else:
        db.add(Buyer(user_id=u.id, business_name=business_name, business_type=payload.business_type))
    db.flush()
    log.info("signup user=%s role=%s phone=%s", u.id, u.role, mask_phone(phone))
    notify("user.signed_up", {"user_id": str(u.id), "role": u.role})
    return TokenOut(access_token=make_token(str(u.id), u.role), role=u.role)


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    u = db.query(User).filter(User.email == payload.email.strip().lower()).one_or_none()
    if u is None or not verify_password(payload.password, u.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_credentials")
    return TokenOut(access_token=make_token(str(u.id), u.role), role=u.role)


@router.get("/me", response_model=MeOut)
def me(user: User = Depends(get_current_user)):
    return MeOut(
        user_id=str(user.id),
        email=user.email,
        role=user.role,
        profile=to_profile_out(user.profile) if user.profile else None,
        farmer=to_farmer_out(user.farmer) if user.farmer else None,
        buyer=to_buyer_out(user.buyer) if user.buyer else None,
    )
