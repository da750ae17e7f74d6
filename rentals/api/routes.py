# rentals/api/routes.py
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session
from typing import List
from .. import crud, query, schemas, services
from ..config import MAX_QUERY_INT, PAGE_SIZE, PAYMENTS_PAGE_SIZE
from ..db import get_db
from ..models import User

router = APIRouter()


def current_user(authorization: str | None = Header(None), db: Session = Depends(get_db)) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Unauthenticated")
    user = crud.get_user_by_token(db, authorization[7:].strip())
    if not user:
        raise HTTPException(status_code=401, detail="Unauthenticated")
    return user


@router.get("/health")
def health():
    return {"status": "ok"}

# posts

@router.get("/posts", response_model=schemas.ListingPage)
def list_posts(request: Request, db: Session = Depends(get_db)):
    params = request.query_params
    filters = schemas.ListingFilters.model_validate(dict(params))
    res = query.search_listings(
        db,
        filters,
        sort_by=params.get("sort_by", query.DEFAULT_SORT),
        order=params.get("order", "desc"),
        page=query.int_param(params.get("page"), 1),
        per_page=query.int_param(params.get("per_page"), PAGE_SIZE),
    )
    items = res.pop("items")
    return {"data": items, **res}


@router.get("/posts/{post_id}", response_model=schemas.ListingDetail)
def get_post(post_id: int, db: Session = Depends(get_db)):
    obj = crud.get_listing(db, post_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Post not found")
    crud.increment_view_count(db, obj)
    return schemas.ListingDetail.model_validate(obj)


@router.get("/agencies/{agency_id}/posts", response_model=List[schemas.ListingOut])
def agency_posts(agency_id: int, db: Session = Depends(get_db)):
    return crud.list_agency_listings(db, agency_id)


@router.post("/posts", response_model=schemas.ListingOut, status_code=201)
def create_post(payload: schemas.ListingCreate, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return services.create_listing(db, user, payload)


@router.patch("/posts/{post_id}", response_model=schemas.ListingOut)
def update_post(post_id: int, payload: schemas.ListingUpdate, user: User = Depends(current_user),
                db: Session = Depends(get_db)):
    return services.update_listing(db, user, post_id, payload)


@router.delete("/posts/{post_id}")
def delete_post(post_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    services.delete_listing(db, user, post_id)
    return {"status": "deleted"}

# reviews

@router.post("/posts/{post_id}/reviews", response_model=schemas.ReviewOut, status_code=201)
def create_review(post_id: int, payload: schemas.ReviewCreate, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    return services.create_review(db, user, post_id, payload)


@router.patch("/reviews/{review_id}", response_model=schemas.ReviewOut)
def update_review(review_id: int, payload: schemas.ReviewUpdate, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    return services.update_review(db, user, review_id, payload)


@router.delete("/reviews/{review_id}")
def delete_review(review_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    services.delete_review(db, user, review_id)
    return {"status": "deleted"}

# reservations

@router.post("/reservations", response_model=schemas.ReservationOut, status_code=201)
def create_reservation(payload: schemas.ReservationCreate, user: User = Depends(current_user),
                       db: Session = Depends(get_db)):
    return services.create_reservation(db, user, payload)

# payments

@router.get("/payments", response_model=schemas.PaymentPage)
def list_payments(page: int = 1, user: User = Depends(current_user), db: Session = Depends(get_db)):
    res = crud.list_payments(db, user, page=min(max(1, page), MAX_QUERY_INT), per_page=PAYMENTS_PAGE_SIZE)
    items = res.pop("items")
    return {"data": items, **res}


@router.post("/payments", response_model=schemas.PaymentOut, status_code=201)
def create_payment(payload: schemas.PaymentCreate, user: User = Depends(current_user),
                   db: Session = Depends(get_db)):
    return services.create_payment(db, user, payload)


@router.get("/payments/{payment_id}", response_model=schemas.PaymentOut)
def get_payment(payment_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return services.get_payment(db, user, payment_id)


@router.patch("/payments/{payment_id}/status", response_model=schemas.PaymentOut)
def update_payment_status(payment_id: int, payload: schemas.PaymentStatusUpdate,
                          user: User = Depends(current_user), db: Session = Depends(get_db)):
    return services.update_payment_status(db, user, payment_id, payload)


@router.delete("/payments/{payment_id}")
def delete_payment(payment_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    services.delete_payment(db, user, payment_id)
    return {"status": "deleted"}


@router.get("/agency/payments", response_model=List[schemas.PaymentOut])
def agency_payments(user: User = Depends(current_user), db: Session = Depends(get_db)):
    if user.agency is None:
        raise HTTPException(status_code=403, detail="You do not have an agency")
    return crud.list_agency_payments(db, user.agency.id)
