from .models import Farmer, Buyer, Listing, Order, Rating, Favorite, Message, Profile
from .schemas import (
    FarmerOut,
    BuyerOut,
    ProfileOut,
    ListingOut,
    OrderOut,
    RatingOut,
    FavoriteOut,
    MessageOut,
)


def _str(v):
    return str(v) if v is not None else None


def to_profile_out(p: Profile) -> ProfileOut:
    return ProfileOut(id=str(p.id), full_name=p.full_name, phone=p.phone, avatar_url=p.avatar_url)


def to_farmer_out(f: Farmer) -> FarmerOut:
    profile = f.user.profile if f.user is not None else None
    return FarmerOut(
        id=str(f.id), user_id=str(f.user_id), farm_name=f.farm_name, bio=f.bio, verified=bool(f.verified),
        location_address=f.location_address, location_lat=f.location_lat, location_lng=f.location_lng,
        cooperative_id=_str(f.cooperative_id), full_name=profile.full_name if profile else None,
    )


def to_buyer_out(b: Buyer) -> BuyerOut:
    return BuyerOut(
        id=str(b.id), user_id=str(b.user_id), business_name=b.business_name, business_type=b.business_type,
        location_address=b.location_address, location_lat=b.location_lat, location_lng=b.location_lng,
    )


def to_listing_out(l: Listing) -> ListingOut:
    return ListingOut(
        id=str(l.id), farmer_id=str(l.farmer_id), title=l.title, category=l.category,
        quantity=l.quantity, unit=l.unit, price_per_unit=float(l.price_per_unit),
        harvest_date=l.harvest_date, pickup_location=l.pickup_location,
        location_lat=l.location_lat, location_lng=l.location_lng, photos=list(l.photos or []),
        cosmetic_notes=l.cosmetic_notes, status=l.status,
        farm_name=l.farmer.farm_name if l.farmer else None,
        farmer_verified=bool(l.farmer.verified) if l.farmer else None,
        created_at=l.created_at,
    )


def to_order_out(o: Order) -> OrderOut:
    l = o.listing
    return OrderOut(
        id=str(o.id), buyer_id=str(o.buyer_id), listing_id=_str(o.listing_id),
        listing_title=l.title if l else None, unit=l.unit if l else None,
        quantity=o.quantity, price_per_unit=float(o.price_per_unit), total_price=float(o.total_price),
        delivery_address=o.delivery_address, distance_km=o.distance_km, estimated_minutes=o.estimated_minutes,
        pickup_time=o.pickup_time, status=o.status, created_at=o.created_at,
    )


def to_rating_out(r: Rating) -> RatingOut:
    profile = r.rater.profile if r.rater is not None else None
    return RatingOut(
        id=str(r.id), order_id=str(r.order_id), rater_id=str(r.rater_id), rated_user_id=str(r.rated_user_id),
        rating=r.rating, review=r.review, rater_name=profile.full_name if profile else None, created_at=r.created_at,
    )


def to_favorite_out(f: Favorite) -> FavoriteOut:
    return FavoriteOut(
        id=str(f.id),
        listing=to_listing_out(f.listing) if f.listing is not None else None,
        farmer=to_farmer_out(f.farmer) if f.farmer is not None else None,
        created_at=f.created_at,
    )


def to_message_out(m: Message) -> MessageOut:
    return MessageOut(id=str(m.id), order_id=str(m.order_id), sender_id=str(m.sender_id), content=m.content, created_at=m.created_at)
