import os

# in-memory database and no background jobs for the test run
os.environ["POSTGRES_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "0"

from datetime import date, datetime
from types import SimpleNamespace

import pytest
from apscheduler.jobstores.base import JobLookupError
from fastapi.testclient import TestClient

from rentals.db import Base, engine, SessionLocal
from rentals.main import app
from rentals.models import Agency, Listing, Reservation, User, Vehicle
from rentals.utils import slugify

THIS_YEAR = date.today().year


class FakeJob:
    def __init__(self, func, run_date, args):
        self.id = f"job-{id(self)}"
        self.func = func
        self.run_date = run_date
        self.args = args
        self.removed = False
        self.ran = False

    def remove(self):
        if self.removed or self.ran:
            raise JobLookupError(self.id)
        self.removed = True


class FakeScheduler:
    """Records date jobs and runs them only when the test says the time has come."""

    def __init__(self):
        self.jobs = []

    def add_job(self, func, trigger, run_date=None, args=None, **kwargs):
        job = FakeJob(func, run_date, list(args or []))
        self.jobs.append(job)
        return job

    def run_due(self, now):
        for job in list(self.jobs):
            if not job.removed and not job.ran and job.run_date <= now:
                job.ran = True
                job.func(*job.args)


@pytest.fixture()
def fake_scheduler():
    return FakeScheduler()


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


def _vehicle(agency, brand, model, age, price, status="available", fee=2):
    return Vehicle(agency=agency, brand=brand, model=model, year=THIS_YEAR - age,
                   mileage=10000 * (age + 1), price_per_day=price, status=status,
                   delivery_fee_per_km=fee, images=[])


def _listing(agency, vehicle, title, options, views, license_years, driver_age=21, status="published"):
    listing = Listing(agency=agency, vehicle=vehicle, title=title, description=f"{title} for rent",
                      status=status, view_count=views, min_license_years=license_years,
                      min_driver_age=driver_age, slug=slugify(title))
    listing.delivery_options = options
    return listing


@pytest.fixture()
def seed(db):
    """Two agencies, five listings (one draft), one unlisted vehicle and four users."""
    manager_a = User(name="Amina", email="amina@atlas.test", role="agency", api_token="agency-a")
    manager_b = User(name="Youssef", email="youssef@sahara.test", role="agency", api_token="agency-b")
    client_1 = User(name="Client One", email="one@example.com", api_token="client-1")
    client_2 = User(name="Client Two", email="two@example.com", api_token="client-2")
    atlas = Agency(name="Atlas Car Rentals", agency_coordinates=[33.5731, -7.5898], manager=manager_a)
    sahara = Agency(name="Sahara Motors", agency_coordinates={"lat": 31.6295, "lng": -7.9811},
                    manager=manager_b)

    corolla = _vehicle(atlas, "Toyota", "Corolla", 1, 45)
    camry = _vehicle(atlas, "Toyota", "Camry", 8, 75)
    civic = _vehicle(atlas, "Honda", "Civic", 4, 35, status="rented")
    focus = _vehicle(atlas, "Ford", "Focus", 2, 40)
    x5 = _vehicle(sahara, "BMW", "X5", 10, 150, status="maintenance", fee=3)
    rav4 = _vehicle(sahara, "Toyota", "RAV4", 2, 55)

    p1 = _listing(atlas, corolla, "Corolla city car", ["agency pickup", "home delivery"], 150, 1)
    p2 = _listing(atlas, camry, "Camry family sedan", ["agency pickup"], 20, 3, driver_age=25)
    p3 = _listing(atlas, civic, "Civic compact", ["agency pickup", "airport delivery"], 300, 2)
    p4 = _listing(sahara, x5, "BMW X5 luxury SUV", ["home delivery"], 5, 5, driver_age=23)
    p5 = _listing(sahara, rav4, "RAV4 weekend offer", ["agency pickup"], 999, 1, status="draft")

    db.add_all([manager_a, manager_b, client_1, client_2, atlas, sahara, focus, p1, p2, p3, p4, p5])
    db.commit()
    return SimpleNamespace(
        atlas=atlas.id, sahara=sahara.id,
        corolla=corolla.id, camry=camry.id, civic=civic.id, focus=focus.id, x5=x5.id, rav4=rav4.id,
        p1=p1.id, p2=p2.id, p3=p3.id, p4=p4.id, p5=p5.id,
        manager_a=manager_a.id, manager_b=manager_b.id, client_1=client_1.id, client_2=client_2.id,
    )


@pytest.fixture()
def make_reservation(db, seed):
    def _make(vehicle_id, status="pending", client_id=None, number="RES-000001"):
        vehicle = db.get(Vehicle, vehicle_id)
        reservation = Reservation(
            reservation_number=number,
            client_id=client_id or seed.client_1,
            agency_id=vehicle.agency_id,
            vehicle_id=vehicle_id,
            pickup_date=datetime(2030, 5, 1, 10, 0),
            return_date=datetime(2030, 5, 3, 10, 0),
            status=status,
            daily_rate=vehicle.price_per_day,
            total_amount=vehicle.price_per_day * 2,
            final_amount=vehicle.price_per_day * 2,
        )
        db.add(reservation)
        db.commit()
        return reservation.id
    return _make


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c
