from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, Field


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# Auth
class SignupIn(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)
    full_name: str = Field(..., min_length=1, max_length=128)
    phone: Optional[str] = None
    role: Literal["farmer", "buyer"]
    farm_name: Optional[str] = Field(None, max_length=128, description="required for farmers")
    business_name: Optional[str] = Field(None, max_length=128, description="required for buyers")
    business_type: Optional[str] = Field(None, max_length=64)


class LoginIn(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str


# Profiles
class ProfileOut(BaseModel):
    id: str
    full_name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None


class ProfileUpdateIn(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=128)
    phone: Optional[str] = None
    avatar_url: Optional[str] = Field(None, max_length=512)


class FarmerOut(BaseModel):
    id: str
    user_id: str
    farm_name: str
    bio: Optional[str] = None
    verified: bool
    location_address: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    cooperative_id: Optional[str] = None
    full_name: Optional[str] = None


class FarmerUpdateIn(BaseModel):
    farm_name: Optional[str] = Field(None, min_length=1, max_length=128)
    bio: Optional[str] = None
    location_address: Optional[str] = Field(None, max_length=255)
    location_lat: Optional[float] = Field(None, ge=-90, le=90)
    location_lng: Optional[float] = Field(None, ge=-180, le=180)


class BuyerOut(BaseModel):
    id: str
    user_id: str
    business_name: str
    business_type: Optional[str] = None
    location_address: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None


class BuyerUpdateIn(BaseModel):
    business_name: Optional[str] = Field(None, min_length=1, max_length=128)
    business_type: Optional[str] = Field(None, max_length=64)
    location_address: Optional[str] = Field(None, max_length=255)
    location_lat: Optional[float] = Field(None, ge=-90, le=90)
    location_lng: Optional[float] = Field(None, ge=-180, le=180)


class MeOut(BaseModel):
    user_id: str
    email: str
    role: str
    profile: Optional[ProfileOut] = None
    farmer: Optional[FarmerOut] = None
    buyer: Optional[BuyerOut] = None


# Listings
class ListingCreateIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=128)
    category: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0)
    unit: str = Field("kg", max_length=16)
    price_per_unit: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    harvest_date: Optional[date] = None
    pickup_location: Optional[str] = Field(None, max_length=255)
    location_lat: Optional[float] = Field(None, ge=-90, le=90)
    location_lng: Optional[float] = Field(None, ge=-180, le=180)
    cosmetic_notes: Optional[str] = None


class ListingUpdateIn(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=128)
    category: Optional[str] = Field(None, min_length=1, max_length=64)
    quantity: Optional[int] = Field(None, gt=0)
    unit: Optional[str] = Field(None, max_length=16)
    price_per_unit: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    harvest_date: Optional[date] = None
    pickup_location: Optional[str] = Field(None, max_length=255)
    location_lat: Optional[float] = Field(None, ge=-90, le=90)
    location_lng: Optional[float] = Field(None, ge=-180, le=180)
    cosmetic_notes: Optional[str] = None
    status: Optional[Literal["available", "out_of_stock"]] = None


class ListingOut(BaseModel):
    id: str
    farmer_id: str
    title: str
    category: str
    quantity: int
    unit: str
    price_per_unit: float
    harvest_date: Optional[date] = None
    pickup_location: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    photos: List[str] = []
    cosmetic_notes: Optional[str] = None
    status: str
    farm_name: Optional[str] = None
    farmer_verified: Optional[bool] = None
    created_at: datetime


class ListingsListOut(BaseModel):
    listings: List[ListingOut]
    total: int


# Ratings
class RatingCreateIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=2000)


class RatingOut(BaseModel):
    id: str
    order_id: str
    rater_id: str
    rated_user_id: str
    rating: int
    review: Optional[str] = None
    rater_name: Optional[str] = None
    created_at: datetime


class RatingsListOut(BaseModel):
    ratings: List[RatingOut]
    average_rating: float
    total: int


class ListingDetailOut(BaseModel):
    listing: ListingOut
    farmer: Optional[FarmerOut] = None
    ratings: List[RatingOut] = []
    average_rating: float = 0.0


# Orders
OrderStatus = Literal["pending", "confirmed", "completed", "cancelled"]


class OrderCreateIn(BaseModel):
    quantity: int
    delivery_address: Optional[str] = Field(None, max_length=512)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class QuoteOut(BaseModel):
    listing_id: str
    quantity: int
    distance_km: float
    estimated_minutes: int
    pickup_time: datetime
    total_price: float
    max_km: float


class OrderOut(BaseModel):
    id: str
    buyer_id: str
    listing_id: Optional[str] = None
    listing_title: Optional[str] = None
    unit: Optional[str] = None
    quantity: int
    price_per_unit: float
    total_price: float
    delivery_address: Optional[str] = None
    distance_km: Optional[float] = None
    estimated_minutes: Optional[int] = None
    pickup_time: Optional[datetime] = None
    status: OrderStatus
    created_at: datetime


class OrdersListOut(BaseModel):
    orders: List[OrderOut]


# Favorites
class FavoriteOut(BaseModel):
    id: str
    listing: Optional[ListingOut] = None
    farmer: Optional[FarmerOut] = None
    created_at: datetime


class FavoritesOut(BaseModel):
    listings: List[FavoriteOut]
    farmers: List[FavoriteOut]


class FavoriteStateOut(BaseModel):
    favorited: bool
    favorite_id: Optional[str] = None


# Messages
class MessageCreateIn(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class MessageOut(BaseModel):
    id: str
    order_id: str
    sender_id: str
    content: str
    created_at: datetime


class MessagesListOut(BaseModel):
    messages: List[MessageOut]


# Dashboards
class FarmerStatsOut(BaseModel):
    total_listings: int
    available_listings: int
    pending_orders: int
    active_orders: int
    completed_orders: int
    total_revenue: float


class BuyerStatsOut(BaseModel):
    total_orders: int
    active_orders: int
    completed_orders: int
    total_spent: float


class FarmerPublicOut(BaseModel):
    farmer: FarmerOut
    completed_orders: int
    average_rating: float
    total_reviews: int
    listings: List[ListingOut]
