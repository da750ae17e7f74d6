from rentals import crud, models


def test_get_listing_and_token_lookup(db, seed):
    obj = crud.get_listing(db, seed.p1)
    assert obj is not None
    assert obj.title == "Corolla city car"
    assert sorted(obj.delivery_options) == ["agency pickup", "home delivery"]
    assert crud.get_user_by_token(db, "agency-a").agency.id == seed.atlas
    assert crud.get_user_by_token(db, "nope") is None


def test_unique_slug(db, seed):
    assert crud.unique_slug(db, "Corolla City Car!") == "corolla-city-car-2"
    assert crud.unique_slug(db, "Corolla city car", exclude_id=seed.p1) == "corolla-city-car"
    assert crud.unique_slug(db, "???") == "post"


def test_vehicle_listed(db, seed):
    assert crud.vehicle_listed(db, seed.corolla)
    assert not crud.vehicle_listed(db, seed.corolla, exclude_id=seed.p1)
    assert not crud.vehicle_listed(db, seed.focus)


def test_count_open_reservations(db, seed, make_reservation):
    make_reservation(seed.camry, status="pending", number="RES-100001")
    make_reservation(seed.camry, status="active", number="RES-100002")
    make_reservation(seed.camry, status="completed", number="RES-100003")
    assert crud.count_open_reservations(db, seed.camry) == 2
    assert crud.count_open_reservations(db, seed.corolla) == 0


def test_increment_view_count(db, seed):
    listing = crud.get_listing(db, seed.p2)
    crud.increment_view_count(db, listing)
    assert listing.view_count == 21


def test_list_payments_scoped_to_user(db, seed, make_reservation):
    mine = make_reservation(seed.camry, number="RES-200001")
    theirs = make_reservation(seed.x5, client_id=seed.client_2, number="RES-200002")
    db.add_all([
        models.Payment(reservation_id=mine, payment_method="cash", amount=150, status="CREATED"),
        models.Payment(reservation_id=theirs, payment_method="paypal", amount=300, status="COMPLETED"),
    ])
    db.commit()

    client_1 = crud.get_user_by_token(db, "client-1")
    res = crud.list_payments(db, client_1)
    assert [p.reservation_id for p in res["items"]] == [mine]
    assert res["total"] == 1

    agency_b = crud.get_user_by_token(db, "agency-b")
    assert [p.reservation_id for p in crud.list_payments(db, agency_b)["items"]] == [theirs]
    assert [p.reservation_id for p in crud.list_agency_payments(db, seed.atlas)] == [mine]
