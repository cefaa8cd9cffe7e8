import uuid
from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    Numeric,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Text,
    JSON,
    Uuid,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow


Base = declarative_base()


def default_uuid():
    return uuid.uuid4()


class User(Base):
    __tablename__ = "hl_users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False)  # farmer|buyer
    created_at = Column(DateTime, nullable=False, default=utcnow)

    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    farmer = relationship("Farmer", back_populates="user", uselist=False)
    buyer = relationship("Buyer", back_populates="user", uselist=False)


class Profile(Base):
    __tablename__ = "hl_profiles"

    id = Column(Uuid(as_uuid=True), ForeignKey("hl_users.id", ondelete="CASCADE"), primary_key=True)
    full_name = Column(String(128), nullable=False)
    phone = Column(String(32), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="profile")


class Farmer(Base):
    __tablename__ = "hl_farmers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("hl_users.id", ondelete="CASCADE"), nullable=False, unique=True)
    farm_name = Column(String(128), nullable=False)
    bio = Column(Text, nullable=True)
    verified = Column(Boolean, nullable=False, default=False)
    location_address = Column(String(255), nullable=True)
    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    cooperative_id = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="farmer")
    listings = relationship("Listing", back_populates="farmer")


class Buyer(Base):
    __tablename__ = "hl_buyers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("hl_users.id", ondelete="CASCADE"), nullable=False, unique=True)
    business_name = Column(String(128), nullable=False)
    business_type = Column(String(64), nullable=True)
    location_address = Column(String(255), nullable=True)
    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="buyer")
    orders = relationship("Order", back_populates="buyer")


class Listing(Base):
    __tablename__ = "hl_listings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    farmer_id = Column(Uuid(as_uuid=True), ForeignKey("hl_farmers.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(128), nullable=False)
    category = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit = Column(String(16), nullable=False, default="kg")
    price_per_unit = Column(Numeric(10, 2), nullable=False)
    harvest_date = Column(Date, nullable=True)
    pickup_location = Column(String(255), nullable=True)
    location_lat = Column(Float, nullable=True)
    location_lng = Column(Float, nullable=True)
    photos = Column(JSON, nullable=True)  # list of public URLs, at most MAX_LISTING_PHOTOS
    cosmetic_notes = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="available")  # available|out_of_stock
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    farmer = relationship("Farmer", back_populates="listings")
    orders = relationship("Order", back_populates="listing", passive_deletes=True)


class Order(Base):
    __tablename__ = "hl_orders"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    buyer_id = Column(Uuid(as_uuid=True), ForeignKey("hl_buyers.id", ondelete="CASCADE"), nullable=False, index=True)
    listing_id = Column(Uuid(as_uuid=True), ForeignKey("hl_listings.id", ondelete="SET NULL"), nullable=True, index=True)
    quantity = Column(Integer, nullable=False)
    price_per_unit = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    delivery_address = Column(String(512), nullable=True)
    distance_km = Column(Float, nullable=True)
    estimated_minutes = Column(Integer, nullable=True)
    pickup_time = Column(DateTime, nullable=True)
    status = Column(String(16), nullable=False, default="pending")  # pending|confirmed|completed|cancelled
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    buyer = relationship("Buyer", back_populates="orders")
    listing = relationship("Listing", back_populates="orders")
    rating = relationship("Rating", back_populates="order", uselist=False)
    messages = relationship("Message", back_populates="order", order_by="Message.created_at")


class Rating(Base):
    __tablename__ = "hl_ratings"
    __table_args__ = (CheckConstraint("rating >= 1 AND rating <= 5", name="ck_rating_range"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("hl_orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    rater_id = Column(Uuid(as_uuid=True), ForeignKey("hl_users.id", ondelete="CASCADE"), nullable=False)
    rated_user_id = Column(Uuid(as_uuid=True), ForeignKey("hl_farmers.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="rating")
    rater = relationship("User")


class Favorite(Base):
    __tablename__ = "hl_favorites"
    __table_args__ = (
        UniqueConstraint("user_id", "listing_id", name="uq_favorite_listing"),
        UniqueConstraint("user_id", "farmer_id", name="uq_favorite_farmer"),
        CheckConstraint(
            "(listing_id IS NULL) <> (farmer_id IS NULL)",
            name="ck_favorite_target",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("hl_users.id", ondelete="CASCADE"), nullable=False, index=True)
    listing_id = Column(Uuid(as_uuid=True), ForeignKey("hl_listings.id", ondelete="CASCADE"), nullable=True)
    farmer_id = Column(Uuid(as_uuid=True), ForeignKey("hl_farmers.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    listing = relationship("Listing")
    farmer = relationship("Farmer")


class Message(Base):
    __tablename__ = "hl_messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("hl_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("hl_users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="messages")
