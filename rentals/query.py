# rentals/query.py
"""Listing search.

Filters arrive as a `ListingFilters` bag; every supplied filter becomes one
predicate and the predicates are AND-ed. Predicates that reach into the
vehicle or agency use EXISTS sub-queries (`has`/`any`) and sorting on a
vehicle column uses a correlated scalar sub-query, so a listing row is never
duplicated by a join.
"""
import math
from datetime import date

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, joinedload

from .config import PAGE_SIZE, MAX_PAGE_SIZE, MAX_QUERY_INT
from .models import Agency, Listing, ListingDeliveryOption, Vehicle
from .schemas import ListingFilters

AGE_BUCKETS = {
    "new": lambda year: Vehicle.year >= year - 1,
    "young": lambda year: Vehicle.year.between(year - 3, year - 1),
    "mature": lambda year: Vehicle.year.between(year - 5, year - 3),
    "classic": lambda year: Vehicle.year < year - 5,
}
# codes sent by the listing page's age dropdown
AGE_CODES = {"1": "new", "3": "young", "5": "mature", "5+": "classic"}

LISTING_SORTS = {
    "created_at": Listing.created_at,
    "rating": Listing.average_rating,
    "popularity": Listing.view_count,
}
VEHICLE_SORTS = {
    "price": Vehicle.price_per_day,
    "year": Vehicle.year,
    "mileage": Vehicle.mileage,
}
DEFAULT_SORT = "created_at"
LIKE_ESCAPE = "\\"


def vehicle_age_clause(age: str, current_year: int):
    """Vehicle predicate for an age bucket, or an exact age in years.

    Returns None when `age` is neither a bucket nor an integer.
    """
    bucket = AGE_CODES.get(age, age.lower())
    if bucket in AGE_BUCKETS:
        return AGE_BUCKETS[bucket](current_year)
    try:
        years = int(age)
    except ValueError:
        return None
    if abs(years) > MAX_QUERY_INT:
        return None
    return Vehicle.year == current_year - years


def contains_pattern(text: str) -> str:
    """Case-insensitive substring pattern with LIKE wildcards taken literally."""
    escaped = text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
    for wildcard in ("%", "_"):
        escaped = escaped.replace(wildcard, LIKE_ESCAPE + wildcard)
    return f"%{escaped}%"


def filter_clauses(filters: ListingFilters, current_year: int = None):
    if current_year is None:
        current_year = date.today().year
    f = filters
    conds = []
    if f.vehicle_status is not None:
        conds.append(Listing.vehicle.has(Vehicle.status == f.vehicle_status))
    if f.popular is not None:
        conds.append(Listing.view_count >= f.popular)
    if f.agency_name is not None:
        pattern = contains_pattern(f.agency_name)
        conds.append(Listing.agency.has(Agency.name.ilike(pattern, escape=LIKE_ESCAPE)))
    if f.brand is not None:
        pattern = contains_pattern(f.brand)
        conds.append(Listing.vehicle.has(Vehicle.brand.ilike(pattern, escape=LIKE_ESCAPE)))
    if f.vehicle_age is not None:
        age_clause = vehicle_age_clause(f.vehicle_age, current_year)
        if age_clause is not None:
            conds.append(Listing.vehicle.has(age_clause))
    if f.license is not None:
        conds.append(Listing.min_license_years <= f.license)
    if f.driver_age is not None:
        conds.append(Listing.min_driver_age <= f.driver_age)
    if f.delivery is not None:
        conds.append(Listing.delivery_option_rows.any(ListingDeliveryOption.option == f.delivery))
    if f.search is not None:
        pattern = contains_pattern(f.search)
        conds.append(or_(
            Listing.title.ilike(pattern, escape=LIKE_ESCAPE),
            Listing.description.ilike(pattern, escape=LIKE_ESCAPE),
            Listing.vehicle.has(or_(
                Vehicle.brand.ilike(pattern, escape=LIKE_ESCAPE),
                Vehicle.model.ilike(pattern, escape=LIKE_ESCAPE),
            )),
        ))
    low, high = f.min, f.max
    if low is not None and high is not None:
        if low > high:
            low, high = high, low
        conds.append(Listing.vehicle.has(Vehicle.price_per_day.between(low, high)))
    elif low is not None:
        conds.append(Listing.vehicle.has(Vehicle.price_per_day >= low))
    elif high is not None:
        conds.append(Listing.vehicle.has(Vehicle.price_per_day <= high))
    if f.min_rating is not None:
        conds.append(Listing.average_rating >= f.min_rating)
        conds.append(Listing.total_reviews > 0)
    return conds


def sort_clauses(sort_by: str = DEFAULT_SORT, order: str = "desc", popular: bool = False):
    ascending = str(order).lower() == "asc"
    if sort_by in VEHICLE_SORTS:
        column = (
            select(VEHICLE_SORTS[sort_by])
            .where(Vehicle.id == Listing.vehicle_id)
            .correlate(Listing)
            .limit(1)
            .scalar_subquery()
        )
    else:
        column = LISTING_SORTS.get(sort_by, LISTING_SORTS[DEFAULT_SORT])
    clauses = [column.asc() if ascending else column.desc()]
    clauses.append(Listing.id.asc() if ascending else Listing.id.desc())
    if popular:
        clauses.insert(0, Listing.view_count.desc())
    return clauses


def int_param(value, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(-MAX_QUERY_INT, min(number, MAX_QUERY_INT))


def page_meta(total: int, page: int, per_page: int):
    last_page = max(1, math.ceil(total / per_page))
    offset = (page - 1) * per_page
    if offset < total:
        first, last = offset + 1, min(offset + per_page, total)
    else:
        first = last = None
    return {
        "total": total,
        "per_page": per_page,
        "current_page": page,
        "last_page": last_page,
        "from": first,
        "to": last,
    }


def search_listings(
    db: Session,
    filters: ListingFilters,
    sort_by: str = DEFAULT_SORT,
    order: str = "desc",
    page: int = 1,
    per_page: int = PAGE_SIZE,
    current_year: int = None,
):
    """Published listings matching `filters`, sorted and paginated."""
    page = max(1, page)
    per_page = min(max(1, per_page), MAX_PAGE_SIZE)
    q = db.query(Listing).filter(Listing.status == "published")
    conds = filter_clauses(filters, current_year)
    if conds:
        q = q.filter(and_(*conds))
    total = q.count()
    items = (
        q.order_by(*sort_clauses(sort_by, order, popular=filters.popular is not None))
        .options(joinedload(Listing.agency), joinedload(Listing.vehicle))
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {"items": items, **page_meta(total, page, per_page)}
