# rentals/models.py
"""SQLAlchemy ORM models for persisted entities.

Listings (`posts`) are the marketplace offers; agencies, vehicles and users
are owned by the surrounding platform and only carry the columns the rental
flows read.
"""
from sqlalchemy import (
    Column, Integer, Text, Numeric, Boolean, TIMESTAMP, ForeignKey, JSON,
    UniqueConstraint, func, Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.associationproxy import association_proxy
from sqlalchemy.orm import relationship
from .db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

LISTING_STATUSES = ("draft", "published", "archived")
DELIVERY_OPTIONS = ("agency pickup", "home delivery", "airport delivery")
RESERVATION_STATUSES = ("pending", "confirmed", "paid", "active", "completed", "cancelled", "refunded")
OPEN_RESERVATION_STATUSES = ("pending", "confirmed", "active")
STARS = (5, 4, 3, 2, 1)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False, unique=True)
    role = Column(Text, nullable=False, default="client")
    api_token = Column(Text, unique=True, index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    agency = relationship("Agency", back_populates="manager", uselist=False)


class Agency(Base):
    __tablename__ = "agencies"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False)
    logo_path = Column(Text)
    agency_coordinates = Column(JSONType)
    is_active = Column(Boolean, nullable=False, default=True)
    manager_id = Column(Integer, ForeignKey("users.id"), index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    manager = relationship(User, back_populates="agency")
    vehicles = relationship("Vehicle", back_populates="agency")
    listings = relationship("Listing", back_populates="agency")


class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    brand = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    year = Column(Integer)
    mileage = Column(Integer)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    status = Column(Text, nullable=False, default="available")
    delivery_fee_per_km = Column(Numeric(10, 2), nullable=False, default=0)
    images = Column(JSONType)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    agency = relationship(Agency, back_populates="vehicles")
    listing = relationship("Listing", back_populates="vehicle", uselist=False)
    reservations = relationship("Reservation", back_populates="vehicle")


class ListingDeliveryOption(Base):
    __tablename__ = "post_delivery_options"
    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    option = Column(Text, nullable=False)


class Listing(Base):
    __tablename__ = "posts"
    id = Column(Integer, primary_key=True, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, unique=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="draft")
    min_driver_age = Column(Integer, nullable=False, default=21)
    min_license_years = Column(Integer, nullable=False, default=2)
    view_count = Column(Integer, nullable=False, default=0)
    rental_count = Column(Integer, nullable=False, default=0)
    average_rating = Column(Numeric(3, 2), nullable=False, default=0)
    total_reviews = Column(Integer, nullable=False, default=0)
    rating_distribution = Column(JSONType)
    slug = Column(Text, nullable=False, unique=True)
    meta_title = Column(Text)
    meta_description = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    agency = relationship(Agency, back_populates="listings")
    vehicle = relationship(Vehicle, back_populates="listing")
    reviews = relationship("Review", back_populates="listing", cascade="all, delete-orphan")
    delivery_option_rows = relationship(
        ListingDeliveryOption, cascade="all, delete-orphan", lazy="selectin",
        order_by=ListingDeliveryOption.id,
    )
    delivery_options = association_proxy(
        "delivery_option_rows", "option",
        creator=lambda option: ListingDeliveryOption(option=option),
    )

    @property
    def visible_reviews(self):
        return [r for r in self.reviews if r.deleted_at is None]

    @property
    def rating_breakdown(self):
        distribution = self.rating_distribution or {}
        total = self.total_reviews or 0
        stars = {star: int(distribution.get(str(star), 0)) for star in STARS}
        percentages = {
            star: round(count / total * 100, 1) if total else 0
            for star, count in stars.items()
        }
        return {
            "average": float(self.average_rating or 0),
            "total": total,
            "stars": stars,
            "percentages": percentages,
        }


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "post_id", name="unique_post_user"),)
    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text)
    rating = Column(Integer)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(TIMESTAMP(timezone=True))

    listing = relationship(Listing, back_populates="reviews")
    user = relationship(User)


class Reservation(Base):
    __tablename__ = "reservations"
    id = Column(Integer, primary_key=True, index=True)
    reservation_number = Column(Text, nullable=False, unique=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    agency_id = Column(Integer, ForeignKey("agencies.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    pickup_date = Column(TIMESTAMP(timezone=True), nullable=False)
    return_date = Column(TIMESTAMP(timezone=True), nullable=False)
    pickup_type = Column(Text, nullable=False, default="pickup")
    delivery_coordinates = Column(JSONType)
    delivery_distance_km = Column(Numeric(8, 1))
    status = Column(Text, nullable=False, default="pending")
    daily_rate = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    equipment_cost = Column(Numeric(10, 2), nullable=False, default=0)
    final_amount = Column(Numeric(10, 2), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    client = relationship(User)
    agency = relationship(Agency)
    vehicle = relationship(Vehicle, back_populates="reservations")
    payments = relationship("Payment", back_populates="reservation")


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)
    payment_method = Column(Text, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(Text, nullable=False, default="USD")
    status = Column(Text, nullable=False)
    transaction_id = Column(Text)
    details = Column(JSONType)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    reservation = relationship(Reservation, back_populates="payments")

Index("idx_posts_agency_status", Listing.agency_id, Listing.status)
Index("idx_posts_average_rating", Listing.average_rating)
Index("idx_vehicles_price", Vehicle.price_per_day)
Index("idx_vehicles_year", Vehicle.year)
