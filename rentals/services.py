# rentals/services.py
"""Business operations behind the HTTP routes.

Each operation validates ownership and input, then writes inside a single
transaction; anything that fails rolls the session back and propagates.
"""
import random
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, schemas
from .db import SessionLocal
from .delivery import parse_coordinates
from .models import Listing, Payment, Reservation, Review, User, STARS
from .pricing import CENT, quote, rental_days, to_money
from .utils import logger


class ServiceError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = 404


class PermissionDeniedError(ServiceError):
    status_code = 403


class ConflictError(ServiceError):
    status_code = 422


class InvalidFieldError(ServiceError):
    """Rejected value for one request field."""
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


@contextmanager
def atomic(db: Session):
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def _utcnow():
    return datetime.now(timezone.utc)


def _require_agency(user: User):
    if user.agency is None:
        raise PermissionDeniedError("You do not have an agency")
    return user.agency


def _unique_options(options):
    return list(dict.fromkeys(options))


# listings

def _check_vehicle(db: Session, agency_id: int, vehicle_id: int, listing_id: int = None):
    vehicle = crud.get_vehicle(db, vehicle_id)
    if vehicle is None:
        raise InvalidFieldError("vehicle_id", "Vehicle not found")
    if vehicle.agency_id != agency_id:
        raise InvalidFieldError("vehicle_id", "Vehicle belongs to another agency")
    if crud.vehicle_listed(db, vehicle_id, exclude_id=listing_id):
        raise ConflictError("Each post must have a unique vehicle and title")
    return vehicle


def create_listing(db: Session, user: User, payload: schemas.ListingCreate):
    agency = _require_agency(user)
    _check_vehicle(db, agency.id, payload.vehicle_id)
    data = payload.model_dump(exclude_none=True)
    options = _unique_options(data.pop("delivery_options"))
    listing = Listing(agency_id=agency.id, slug=crud.unique_slug(db, payload.title), **data)
    listing.delivery_options = options
    try:
        with atomic(db):
            db.add(listing)
    except IntegrityError:
        raise ConflictError("Each post must have a unique vehicle and title")
    logger.info("Created post %s (vehicle %s) for agency %s", listing.id, listing.vehicle_id, agency.id)
    return crud.get_listing(db, listing.id)


def _owned_listing(db: Session, user: User, listing_id: int, action: str):
    listing = crud.get_listing(db, listing_id)
    if listing is None:
        raise NotFoundError("Post not found")
    agency = _require_agency(user)
    if listing.agency_id != agency.id:
        raise PermissionDeniedError(f"Unauthorized to {action} this post")
    return listing


def update_listing(db: Session, user: User, listing_id: int, payload: schemas.ListingUpdate):
    listing = _owned_listing(db, user, listing_id, "edit")
    updates = {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k in ("meta_title", "meta_description")
    }
    if "vehicle_id" in updates:
        _check_vehicle(db, listing.agency_id, updates["vehicle_id"], listing_id=listing.id)
    if "title" in updates:
        updates["slug"] = crud.unique_slug(db, updates["title"], exclude_id=listing.id)
    options = updates.pop("delivery_options", None)
    try:
        with atomic(db):
            if options is not None:
                listing.delivery_options = _unique_options(options)
            crud.apply_updates(listing, updates)
    except IntegrityError:
        raise ConflictError("Each post must have a unique vehicle and title")
    logger.info("Updated post %s: %s", listing_id, sorted(payload.model_dump(exclude_unset=True)))
    return crud.get_listing(db, listing_id)


def delete_listing(db: Session, user: User, listing_id: int):
    listing = _owned_listing(db, user, listing_id, "delete")
    if crud.count_open_reservations(db, listing.vehicle_id) > 0:
        raise ConflictError("Cannot delete post with active reservations")
    with atomic(db):
        db.delete(listing)
    logger.info("Deleted post %s", listing_id)


# reviews and rating summary

def refresh_rating_summary(db: Session, listing: Listing):
    """Recompute the cached rating columns from the listing's live reviews."""
    db.flush()
    rows = (
        db.query(Review.rating, func.count(Review.id))
        .filter(
            Review.post_id == listing.id,
            Review.deleted_at.is_(None),
            Review.rating.isnot(None),
        )
        .group_by(Review.rating)
        .all()
    )
    distribution = {str(star): 0 for star in STARS}
    for rating, count in rows:
        distribution[str(rating)] = count
    total = sum(distribution.values())
    if total == 0:
        listing.average_rating = Decimal("0.00")
        listing.total_reviews = 0
        listing.rating_distribution = None
        return listing
    weighted = sum(int(star) * count for star, count in distribution.items())
    listing.average_rating = to_money(Decimal(weighted) / total)
    listing.total_reviews = total
    listing.rating_distribution = distribution
    return listing


def refresh_all_rating_summaries(db: Session):
    listings = db.query(Listing).all()
    with atomic(db):
        for listing in listings:
            refresh_rating_summary(db, listing)
    return len(listings)


def _require_review_body(content, rating):
    if content is None and rating is None:
        raise InvalidFieldError("rating", "A review needs a rating or some content")


def create_review(db: Session, user: User, listing_id: int, payload: schemas.ReviewCreate):
    listing = db.get(Listing, listing_id)
    if listing is None:
        raise NotFoundError("Post not found")
    _require_review_body(payload.content, payload.rating)
    review = crud.find_user_review(db, listing_id, user.id)
    if review is not None and review.deleted_at is None:
        raise ConflictError("You have already reviewed this post")
    with atomic(db):
        if review is None:
            review = Review(post_id=listing_id, user_id=user.id)
            db.add(review)
        review.content = payload.content
        review.rating = payload.rating
        review.deleted_at = None
        refresh_rating_summary(db, listing)
    logger.info("User %s reviewed post %s", user.id, listing_id)
    return review


def _own_review(db: Session, user: User, review_id: int):
    review = crud.get_review(db, review_id)
    if review is None:
        raise NotFoundError("Review not found")
    if review.user_id != user.id:
        raise PermissionDeniedError("Unauthorized to change this review")
    return review


def update_review(db: Session, user: User, review_id: int, payload: schemas.ReviewUpdate):
    review = _own_review(db, user, review_id)
    updates = payload.model_dump(exclude_unset=True)
    _require_review_body(updates.get("content", review.content), updates.get("rating", review.rating))
    with atomic(db):
        crud.apply_updates(review, updates)
        refresh_rating_summary(db, review.listing)
    return review


def delete_review(db: Session, user: User, review_id: int):
    review = _own_review(db, user, review_id)
    with atomic(db):
        review.deleted_at = _utcnow()
        refresh_rating_summary(db, review.listing)


# reservations

def _new_reservation_number(db: Session):
    while True:
        number = f"RES-{random.randint(100000, 999999)}"
        if not crud.reservation_number_taken(db, number):
            return number


def _check_amount(field: str, supplied, expected):
    if abs(to_money(supplied) - expected) >= CENT:
        raise InvalidFieldError(field, f"{field} does not match the quoted price ({expected})")


def create_reservation(db: Session, user: User, payload: schemas.ReservationCreate):
    vehicle = crud.get_vehicle(db, payload.vehicle_id)
    if vehicle is None:
        raise InvalidFieldError("vehicle_id", "Vehicle not found")
    if vehicle.agency_id != payload.agency_id:
        raise InvalidFieldError("agency_id", "Vehicle does not belong to this agency")
    listing = vehicle.listing
    if listing is None or listing.status != "published":
        raise InvalidFieldError("vehicle_id", "Vehicle is not offered for rent")

    delivery = payload.pickup_type == "delivery"
    coordinates = None
    if delivery:
        if not any("delivery" in option for option in listing.delivery_options):
            raise InvalidFieldError("pickup_type", "This post does not offer delivery")
        coordinates = parse_coordinates(payload.delivery_coordinates)
        if coordinates is None:
            raise InvalidFieldError("delivery_coordinates", "Please select a delivery location")
        if payload.delivery_distance_km is None:
            raise InvalidFieldError("delivery_distance_km", "Delivery distance has not been calculated")

    expected = quote(
        rental_days(payload.pickup_date, payload.return_date),
        vehicle.price_per_day,
        distance_km=payload.delivery_distance_km,
        fee_per_km=vehicle.delivery_fee_per_km,
        delivery=delivery,
        discount=payload.discount_amount,
        equipment=payload.equipment_cost,
    )
    _check_amount("daily_rate", payload.daily_rate, expected.daily_rate)
    _check_amount("total_amount", payload.total_amount, expected.base)
    _check_amount("delivery_fee", payload.delivery_fee, expected.delivery_fee)
    _check_amount("final_amount", payload.final_amount, expected.total)

    reservation = Reservation(
        reservation_number=_new_reservation_number(db),
        client_id=user.id,
        agency_id=vehicle.agency_id,
        vehicle_id=vehicle.id,
        pickup_date=payload.pickup_date,
        return_date=payload.return_date,
        pickup_type=payload.pickup_type,
        delivery_coordinates=coordinates._asdict() if coordinates else None,
        delivery_distance_km=Decimal(str(round(payload.delivery_distance_km, 1))) if delivery else None,
        status="pending",
        daily_rate=expected.daily_rate,
        total_amount=expected.base,
        delivery_fee=expected.delivery_fee,
        discount_amount=expected.discount,
        equipment_cost=expected.equipment,
        final_amount=expected.total,
    )
    with atomic(db):
        db.add(reservation)
    logger.info("Reservation %s created for vehicle %s (%s days, %s)",
                reservation.reservation_number, vehicle.id, expected.days, expected.total)
    return reservation


# payments

def reservation_status_after(payment_method: str, payment_status: str):
    """Reservation status implied by a new payment, or None to leave it."""
    if payment_method == "cash":
        return "confirmed"
    if payment_status in ("COMPLETED", "APPROVED"):
        return "paid"
    return None


def _check_reservation_access(user: User, reservation: Reservation):
    if reservation.client_id == user.id:
        return
    if user.agency is not None and user.agency.id == reservation.agency_id:
        return
    raise PermissionDeniedError("Unauthorized to access this reservation")


def create_payment(db: Session, user: User, payload: schemas.PaymentCreate):
    reservation = crud.get_reservation(db, payload.reservation_id)
    if reservation is None:
        raise InvalidFieldError("reservation_id", "Reservation not found")
    _check_reservation_access(user, reservation)
    payment = Payment(**payload.model_dump())
    with atomic(db):
        db.add(payment)
        db.flush()
        new_status = reservation_status_after(payment.payment_method, payment.status)
        if new_status is not None:
            reservation.status = new_status
    logger.info("Payment %s (%s %s) recorded for reservation %s",
                payment.id, payment.payment_method, payment.status, reservation.id)
    return crud.get_payment(db, payment.id)


def _accessible_payment(db: Session, user: User, payment_id: int):
    payment = crud.get_payment(db, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")
    _check_reservation_access(user, payment.reservation)
    return payment


def get_payment(db: Session, user: User, payment_id: int):
    return _accessible_payment(db, user, payment_id)


def update_payment_status(db: Session, user: User, payment_id: int, payload: schemas.PaymentStatusUpdate):
    payment = _accessible_payment(db, user, payment_id)
    with atomic(db):
        payment.status = payload.status
        if payload.details is not None:
            payment.details = payload.details
        if payload.status in ("COMPLETED", "APPROVED"):
            payment.reservation.status = "paid"
    logger.info("Payment %s moved to %s", payment_id, payload.status)
    return crud.get_payment(db, payment_id)


def delete_payment(db: Session, user: User, payment_id: int):
    payment = _accessible_payment(db, user, payment_id)
    with atomic(db):
        db.delete(payment)


def run_rating_sweep():
    """Scheduled job: rebuild every cached rating summary."""
    db = SessionLocal()
    try:
        count = refresh_all_rating_summaries(db)
        logger.info("Rating sweep refreshed %s posts", count)
    except Exception as e:
        logger.exception("Rating sweep failed: %s", e)
    finally:
        db.close()
