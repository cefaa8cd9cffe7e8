from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..auth import hash_password
from ..config import settings
from ..database import get_db
from ..models import User, Profile, Farmer, Buyer, Listing


router = APIRouter(prefix="/admin", tags=["admin"])

DEMO_PASSWORD = "harvest123"

_FARMS = [
    # farm name, address, lat, lng
    ("Green Valley Farm", "Hoskote, Bengaluru", 13.0700, 77.7980),
    ("Sunrise Orchards", "Devanahalli, Bengaluru", 13.2468, 77.7110),
]

_PRODUCE = [
    # title, category, quantity, unit, price
    ("Tomatoes", "Vegetables", 120, "kg", Decimal("1.50")),
    ("Mangoes", "Fruits", 80, "kg", Decimal("2.75")),
    ("Basmati Rice", "Grains", 300, "kg", Decimal("1.10")),
]


@router.post("/seed")
def seed(db: Session = Depends(get_db)):
    if not settings.DEV_MODE:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    # Idempotent seed: if any listings exist, assume seeded
    if db.query(Listing).count() > 0:
        return {"detail": "exists"}

    for i, (farm_name, address, lat, lng) in enumerate(_FARMS):
        u = User(email=f"farmer{i + 1}@harvestlink.dev", password_hash=hash_password(DEMO_PASSWORD), role="farmer")
        db.add(u)
        db.flush()
        db.add(Profile(id=u.id, full_name=f"Farmer {i + 1}"))
        f = Farmer(
            user_id=u.id, farm_name=farm_name, verified=(i == 0),
            location_address=address, location_lat=lat, location_lng=lng,
        )
        db.add(f)
        db.flush()
        for title, category, qty, unit, price in _PRODUCE:
            db.add(Listing(
                farmer_id=f.id, title=title, category=category, quantity=qty + i * 20, unit=unit,
                price_per_unit=price, pickup_location=address, location_lat=lat, location_lng=lng,
                photos=[], status="available",
            ))

    u = User(email="buyer@harvestlink.dev", password_hash=hash_password(DEMO_PASSWORD), role="buyer")
    db.add(u)
    db.flush()
    db.add(Profile(id=u.id, full_name="Buyer A"))
    db.add(Buyer(user_id=u.id, business_name="Corner Bistro", business_type="restaurant"))
    return {"detail": "seeded"}
