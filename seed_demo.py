import os
import random
import secrets
from datetime import datetime, timedelta, timezone
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Ensure SQLAlchemy uses the supported dialect name: convert `postgres://` to `postgresql://`
_pg = os.environ.get("POSTGRES_URL")
if _pg and _pg.startswith("postgres://"):
    os.environ["POSTGRES_URL"] = "postgresql://" + _pg[len("postgres://"):]

BRANDS = {
    "Toyota": ["Camry", "Corolla", "RAV4"],
    "Honda": ["Civic", "Accord"],
    "Ford": ["F-150", "Focus"],
    "BMW": ["X5", "320i"],
    "Mercedes": ["C-Class", "GLA"],
    "Tesla": ["Model 3", "Model Y"],
}
DELIVERY_CHOICES = ["agency pickup", "home delivery", "airport delivery"]
VEHICLE_STATUSES = ["available", "rented", "maintenance"]


def seed(session, agencies=3, vehicles_per_agency=6, clients=5):
    """Create agencies with vehicles and posts, clients with reviews, and a few reservations."""
    from rentals import services
    from rentals.models import Agency, Listing, Reservation, Review, User, Vehicle
    from rentals.utils import slugify

    this_year = datetime.now().year
    client_users = []
    for n in range(clients):
        user = User(name=f"Client {n + 1}", email=f"client{n + 1}@example.com", role="client",
                    api_token=secrets.token_hex(16))
        session.add(user)
        client_users.append(user)

    listings = []
    for a in range(agencies):
        manager = User(name=f"Manager {a + 1}", email=f"manager{a + 1}@example.com", role="agency",
                       api_token=secrets.token_hex(16))
        agency = Agency(
            name=f"{random.choice(['Atlas', 'Sahara', 'Coastal', 'Summit'])} Car Rentals {a + 1}",
            logo_path=f"https://placehold.co/600x400?text=Agency+{a + 1}",
            agency_coordinates=[round(random.uniform(30.0, 35.0), 4), round(random.uniform(-9.0, -5.0), 4)],
            manager=manager,
        )
        session.add(agency)
        for v in range(vehicles_per_agency):
            brand = random.choice(list(BRANDS))
            model = random.choice(BRANDS[brand])
            vehicle = Vehicle(
                agency=agency,
                brand=brand,
                model=model,
                year=random.randint(this_year - 12, this_year),
                mileage=random.randint(1000, 100000),
                price_per_day=round(random.uniform(30, 200), 2),
                status=random.choice(VEHICLE_STATUSES),
                delivery_fee_per_km=round(random.uniform(1, 5), 2),
                images=[],
            )
            title = f"{brand} {model} {a + 1}-{v + 1}"
            listing = Listing(
                agency=agency,
                vehicle=vehicle,
                title=title,
                description=f"Well kept {brand} {model}, ready for your next trip.",
                status=random.choice(["published", "published", "draft"]),
                min_driver_age=random.randint(21, 25),
                min_license_years=random.randint(1, 3),
                view_count=random.randint(0, 400),
                slug=slugify(title),
            )
            listing.delivery_options = random.sample(DELIVERY_CHOICES, random.randint(1, 3))
            session.add(listing)
            listings.append(listing)
    session.commit()

    for listing in listings:
        for user in random.sample(client_users, random.randint(0, len(client_users))):
            session.add(Review(post_id=listing.id, user_id=user.id, rating=random.randint(1, 5),
                               content="Great car, smooth pickup."))
    session.commit()
    services.refresh_all_rating_summaries(session)

    now = datetime.now(timezone.utc)
    for listing in random.sample(listings, min(4, len(listings))):
        vehicle = listing.vehicle
        days = random.randint(1, 7)
        total = round(float(vehicle.price_per_day) * days, 2)
        pickup = now + timedelta(days=random.randint(1, 7))
        session.add(Reservation(
            reservation_number=f"RES-{random.randint(100000, 999999)}",
            client_id=random.choice(client_users).id,
            agency_id=listing.agency_id,
            vehicle_id=vehicle.id,
            pickup_date=pickup,
            return_date=pickup + timedelta(days=days),
            pickup_type="pickup",
            status=random.choice(["pending", "confirmed", "completed"]),
            daily_rate=vehicle.price_per_day,
            total_amount=total,
            final_amount=total,
        ))
    session.commit()
    return {"listings": len(listings), "clients": [u.api_token for u in client_users]}


if __name__ == "__main__":
    try:
        from rentals.db import Base, SessionLocal, engine
        import rentals.models  # noqa: F401
    except Exception as e:
        raise SystemExit(f"Failed to import 'rentals': {e}")

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        result = seed(session)
    finally:
        session.close()
    print(f"Seeded {result['listings']} posts.")
    print("Client API tokens:")
    for token in result["clients"]:
        print(f"  {token}")
