from datetime import datetime, timedelta

import pytest

from rentals.delivery import (
    AGENCY_PICKUP, DEFAULT_POINT, HOME_DELIVERY, Coordinates, DeliveryDistanceResolver,
    DistanceLatch, LatchState, haversine_km, normalize_coordinates, parse_coordinates,
)

T0 = datetime(2030, 1, 1, 12, 0, 0)
AGENCY = [33.5731, -7.5898]
CLIENT = [33.6000, -7.5000]


def at(seconds):
    return T0 + timedelta(seconds=seconds)


class Locator:
    """Stands in for the device geolocation API."""

    def __init__(self, result=CLIENT, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    def __call__(self, on_success, on_error):
        self.calls += 1
        if self.error is not None:
            on_error(self.error)
        else:
            on_success(self.result)


def make_resolver(fake_scheduler, locator=None):
    return DeliveryDistanceResolver(AGENCY, locator or Locator(), scheduler=fake_scheduler,
                                    fallback_seconds=3, clock=lambda: T0)


def expected_fallback():
    return round(haversine_km(normalize_coordinates(AGENCY), normalize_coordinates(CLIENT)), 1)


@pytest.mark.parametrize("raw,expected", [
    ("[33.5731,-7.5898]", Coordinates(-7.5898, 33.5731)),
    ("33.5731, -7.5898", Coordinates(-7.5898, 33.5731)),
    ('{"lat": 33.5, "lng": -7.5}', Coordinates(-7.5, 33.5)),
    ([33.5, -7.5], Coordinates(-7.5, 33.5)),
    ((-120.5, 45.0), Coordinates(-120.5, 45.0)),
    ({"latitude": 1, "longitude": 2}, Coordinates(2, 1)),
    ({"lat": "48.85", "lon": "2.35"}, Coordinates(2.35, 48.85)),
])
def test_parse_coordinate_shapes(raw, expected):
    assert parse_coordinates(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "somewhere", [1, 2, 3], {"lat": 200, "lng": 0}, "[abc, 1]", True])
def test_unreadable_coordinates_use_default(raw):
    assert normalize_coordinates(raw) == DEFAULT_POINT
    assert DEFAULT_POINT == (-7.0926, 31.7917)


@pytest.mark.parametrize("raw", ["[33.5731,-7.5898]", {"lat": 33.5, "lng": -7.5}, (-120.5, 45.0), None])
def test_normalization_is_idempotent(raw):
    once = normalize_coordinates(raw)
    assert normalize_coordinates(once) == once
    assert normalize_coordinates(once._asdict()) == once


def test_haversine_symmetric_and_zero():
    a = normalize_coordinates(AGENCY)
    b = normalize_coordinates(CLIENT)
    assert haversine_km(a, b) == pytest.approx(haversine_km(b, a))
    assert haversine_km(a, a) == 0
    # one degree of latitude
    assert haversine_km(Coordinates(0, 0), Coordinates(0, 1)) == pytest.approx(111.19, abs=0.01)


def test_latch_commits_once():
    latch = DistanceLatch()
    assert latch.commit(1.0, "route") is False
    generation = latch.arm(9.7)
    assert latch.state is LatchState.PENDING
    assert latch.commit(12.4, "route", generation) is True
    assert latch.commit(9.7, "haversine", generation) is False
    assert (latch.value, latch.source) == (12.4, "route")


def test_latch_refuses_stale_generation():
    latch = DistanceLatch()
    old = latch.arm(5.0)
    latch.arm(6.0)
    assert latch.commit(5.0, "haversine", old) is False
    assert latch.state is LatchState.PENDING


def test_routed_distance_before_timer_wins(fake_scheduler):
    resolver = make_resolver(fake_scheduler)
    resolver.select_option(HOME_DELIVERY)
    assert resolver.calculating
    assert resolver.distance == 0
    job = fake_scheduler.jobs[-1]
    assert job.run_date == at(3)

    # routed distance at 2.9s
    assert resolver.route_computed(12.4) is True
    fake_scheduler.run_due(at(3.0))

    assert job.removed and not job.ran
    assert resolver.distance == 12.4
    assert resolver.latch.source == "route"
    assert not resolver.calculating


def test_timer_commits_haversine_fallback(fake_scheduler):
    resolver = make_resolver(fake_scheduler)
    resolver.select_option(HOME_DELIVERY)
    fake_scheduler.run_due(at(2.9))
    assert resolver.distance == 0

    fake_scheduler.run_due(at(3.0))
    assert resolver.distance == expected_fallback()
    assert resolver.latch.source == "haversine"

    # a late routed distance does not replace the committed value
    assert resolver.route_computed(12.4) is False
    assert resolver.distance == expected_fallback()


@pytest.mark.parametrize("bad", [0, -3, 10000, 25000.5, None, "far"])
def test_invalid_routed_distance_blocks(fake_scheduler, bad):
    resolver = make_resolver(fake_scheduler)
    resolver.select_option(HOME_DELIVERY)
    assert resolver.route_computed(bad) is False
    assert resolver.error.startswith("Could not calculate the delivery distance")
    assert resolver.distance == 0
    assert not resolver.calculating
    fake_scheduler.run_due(at(10))
    assert resolver.distance == 0


def test_latch_fail_refused_once_committed():
    latch = DistanceLatch()
    generation = latch.arm(9.7)
    assert latch.commit(9.7, "haversine", generation) is True
    assert latch.fail(generation) is False
    assert (latch.state, latch.value) == (LatchState.COMMITTED, 9.7)

    stale = latch.arm(5.0)
    latch.arm(6.0)
    assert latch.fail(stale) is False
    assert latch.state is LatchState.PENDING


def test_invalid_route_keeps_fallback_committed_meanwhile(fake_scheduler):
    resolver = make_resolver(fake_scheduler)
    resolver.select_option(HOME_DELIVERY)
    # the timer fires between the pending check and the invalid value being handled
    resolver._cancel_fallback = lambda: fake_scheduler.run_due(at(3))

    assert resolver.route_computed(-1) is False
    assert resolver.distance == expected_fallback()
    assert resolver.latch.source == "haversine"
    assert resolver.error is None


def test_routed_distance_rounded_to_one_decimal(fake_scheduler):
    resolver = make_resolver(fake_scheduler)
    resolver.select_option(HOME_DELIVERY)
    resolver.route_computed(12.4449)
    assert resolver.distance == 12.4


def test_geolocation_failure_is_retryable(fake_scheduler):
    locator = Locator(error="User denied Geolocation")
    resolver = make_resolver(fake_scheduler, locator)
    resolver.select_option(HOME_DELIVERY)
    assert resolver.error == "Unable to get your location: User denied Geolocation. Please try again."
    assert not resolver.calculating
    assert fake_scheduler.jobs == []

    locator.error = None
    resolver.retry_location()
    assert locator.calls == 2
    assert resolver.error is None
    assert resolver.calculating
    fake_scheduler.run_due(at(3))
    assert resolver.distance == expected_fallback()


def test_moving_pin_rearms(fake_scheduler):
    resolver = make_resolver(fake_scheduler)
    resolver.select_option(HOME_DELIVERY)
    first = fake_scheduler.jobs[-1]
    resolver.route_computed(12.4)

    resolver.delivery_location_changed({"lat": 33.7, "lng": -7.4})
    assert resolver.latch.state is LatchState.PENDING
    assert resolver.distance == 0
    # the first timer's generation can no longer commit
    first.func(*first.args)
    assert resolver.latch.state is LatchState.PENDING

    fake_scheduler.run_due(at(3))
    assert resolver.delivery_location == Coordinates(-7.4, 33.7)
    assert resolver.distance == round(
        haversine_km(resolver.agency_point, Coordinates(-7.4, 33.7)), 1
    )


def test_back_to_pickup_resets(fake_scheduler):
    resolver = make_resolver(fake_scheduler)
    resolver.select_option(HOME_DELIVERY)
    job = fake_scheduler.jobs[-1]
    resolver.select_option(AGENCY_PICKUP)
    assert job.removed
    assert resolver.distance == 0
    assert resolver.delivery_location is None
    assert not resolver.calculating

    # known location: choosing delivery again re-arms without asking the device
    resolver.select_option(HOME_DELIVERY)
    assert len(fake_scheduler.jobs) == 2
    assert resolver.calculating
