# rentals/crud.py
"""Lookups and simple writes for listings, reviews, reservations and payments.

Multi-row business operations (rating recomputation, payment transitions)
live in `services`; the helpers here only read or touch a single row.
"""
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload
from typing import Dict, Any

from .models import (
    Listing, Payment, Reservation, Review, User, Vehicle, OPEN_RESERVATION_STATUSES,
)
from .query import page_meta
from .utils import slugify

def get_user_by_token(db: Session, token: str):
    return db.query(User).filter(User.api_token == token).first()

def get_vehicle(db: Session, vehicle_id: int):
    return db.get(Vehicle, vehicle_id)

def get_listing(db: Session, listing_id: int):
    return (
        db.query(Listing)
        .options(joinedload(Listing.agency), joinedload(Listing.vehicle), selectinload(Listing.reviews))
        .filter(Listing.id == listing_id)
        .first()
    )

def list_agency_listings(db: Session, agency_id: int):
    return (
        db.query(Listing)
        .options(joinedload(Listing.agency), joinedload(Listing.vehicle))
        .filter(Listing.agency_id == agency_id)
        .order_by(Listing.created_at.desc(), Listing.id.desc())
        .all()
    )

def increment_view_count(db: Session, listing: Listing):
    listing.view_count = Listing.view_count + 1
    db.commit()
    db.refresh(listing)
    return listing

def unique_slug(db: Session, title: str, exclude_id: int = None):
    base = slugify(title)
    slug, n = base, 2
    while True:
        q = db.query(Listing.id).filter(Listing.slug == slug)
        if exclude_id is not None:
            q = q.filter(Listing.id != exclude_id)
        if q.first() is None:
            return slug
        slug = f"{base}-{n}"
        n += 1

def vehicle_listed(db: Session, vehicle_id: int, exclude_id: int = None):
    q = db.query(Listing.id).filter(Listing.vehicle_id == vehicle_id)
    if exclude_id is not None:
        q = q.filter(Listing.id != exclude_id)
    return q.first() is not None

def count_open_reservations(db: Session, vehicle_id: int):
    return (
        db.query(func.count(Reservation.id))
        .filter(Reservation.vehicle_id == vehicle_id, Reservation.status.in_(OPEN_RESERVATION_STATUSES))
        .scalar()
    )

def apply_updates(obj, updates: Dict[str, Any]):
    for k, v in updates.items():
        setattr(obj, k, v)
    return obj

def get_review(db: Session, review_id: int):
    return db.query(Review).filter(Review.id == review_id, Review.deleted_at.is_(None)).first()

def find_user_review(db: Session, listing_id: int, user_id: int):
    return db.query(Review).filter(Review.post_id == listing_id, Review.user_id == user_id).first()

def get_reservation(db: Session, reservation_id: int):
    return db.get(Reservation, reservation_id)

def reservation_number_taken(db: Session, number: str):
    return db.query(Reservation.id).filter(Reservation.reservation_number == number).first() is not None

def get_payment(db: Session, payment_id: int):
    return (
        db.query(Payment)
        .options(joinedload(Payment.reservation))
        .filter(Payment.id == payment_id)
        .first()
    )

def list_payments(db: Session, user: User, page: int = 1, per_page: int = 10):
    """Payments visible to `user`: their own, or their agency's."""
    q = db.query(Payment).join(Payment.reservation)
    if user.agency is not None:
        q = q.filter(Reservation.agency_id == user.agency.id)
    else:
        q = q.filter(Reservation.client_id == user.id)
    total = q.count()
    items = (
        q.options(joinedload(Payment.reservation))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {"items": items, **page_meta(total, page, per_page)}

def list_agency_payments(db: Session, agency_id: int):
    return (
        db.query(Payment)
        .join(Payment.reservation)
        .options(joinedload(Payment.reservation))
        .filter(Reservation.agency_id == agency_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
