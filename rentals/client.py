# rentals/client.py
"""HTTP client for the rentals API plus the browse and checkout flows built on it."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import requests

from .config import API_BASE_URL
from .delivery import HOME_DELIVERY, DeliveryDistanceResolver
from .filters import FilterState
from .pricing import PriceQuote, quote, rental_days
from .utils import logger


class ApiError(RuntimeError):
    def __init__(self, status_code: int, message: str, payload: Any = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.payload = payload


class RentalsClient:
    def __init__(self, base_url: str = API_BASE_URL, token: Optional[str] = None,
                 session=None, timeout: float = 15.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self.session.request(
            method, f"{self.base_url}{path}", headers=self._headers(), timeout=self.timeout, **kwargs
        )
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            detail = payload.get("detail") if isinstance(payload, dict) else None
            if isinstance(detail, dict):
                message = detail.get("message") or str(detail)
            elif isinstance(detail, str):
                message = detail
            elif isinstance(detail, list):
                message = "; ".join(str(d.get("msg")) for d in detail if isinstance(d, dict))
            else:
                message = response.text or "Request failed"
            raise ApiError(response.status_code, message, payload)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def list_posts(self, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return self._request("GET", "/posts", params=params or {})

    def get_post(self, post_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/posts/{post_id}")

    def create_reservation(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/reservations", json=payload)

    def create_payment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/payments", json=payload)

    def update_payment_status(self, payment_id: int, status: str,
                              details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request("PATCH", f"/payments/{payment_id}/status",
                             json={"status": status, "details": details})


class ListingBrowser:
    """Keeps the current filter state and the page fetched for it."""

    def __init__(self, client: RentalsClient, state: Optional[FilterState] = None) -> None:
        self.client = client
        self.state = state or FilterState()
        self.posts = []
        self.total = 0
        self.current_page = 1
        self.last_page = 1
        self.error = None

    def apply(self, state: FilterState) -> FilterState:
        self.state = state
        self.refresh()
        return state

    def refresh(self) -> None:
        try:
            data = self.client.list_posts(self.state.to_params())
        except (ApiError, requests.RequestException) as e:
            self.error = str(e)
            logger.error("Error fetching posts: %s", e)
            return
        self.posts = data.get("data") or []
        self.total = data.get("total") or 0
        self.current_page = data.get("current_page") or 1
        self.last_page = data.get("last_page") or 1
        self.error = None


class ReservationCheckout:
    """Reservation form for one listing: dates, delivery, price and submission."""

    def __init__(self, client: RentalsClient, post: Dict[str, Any],
                 resolver: DeliveryDistanceResolver) -> None:
        self.client = client
        self.post = post
        self.vehicle = post.get("vehicle") or {}
        self.agency = post.get("agency") or {}
        self.resolver = resolver
        self.pickup_date: Optional[datetime] = None
        self.return_date: Optional[datetime] = None
        self.reservation: Optional[Dict[str, Any]] = None
        self.payment: Optional[Dict[str, Any]] = None
        self.submitting = False

    @property
    def home_delivery_available(self) -> bool:
        options = [str(o).strip().lower() for o in self.post.get("delivery_options") or []]
        return any("delivery" in o or "home" in o for o in options)

    @property
    def delivery(self) -> bool:
        return self.resolver.option == HOME_DELIVERY

    def select_dates(self, pickup: datetime, return_at: datetime) -> None:
        self.pickup_date = pickup
        self.return_date = return_at

    def select_option(self, option: str) -> None:
        self.resolver.select_option(option)

    def quote(self) -> PriceQuote:
        return quote(
            rental_days(self.pickup_date, self.return_date),
            self.vehicle.get("price_per_day") or 0,
            distance_km=self.resolver.distance,
            fee_per_km=self.vehicle.get("delivery_fee_per_km") or 0,
            delivery=self.delivery,
        )

    def validate(self) -> Tuple[bool, str]:
        if not self.pickup_date or not self.return_date:
            return False, "Please select rental dates"
        if rental_days(self.pickup_date, self.return_date) <= 0:
            return False, "End date must be after start date"
        if self.delivery:
            if self.resolver.error:
                return False, self.resolver.error
            if self.resolver.delivery_location is None:
                return False, "Please select a delivery location"
            if self.resolver.calculating or self.resolver.distance == 0:
                return False, "Calculating delivery distance..."
        return True, ""

    def reservation_payload(self) -> Dict[str, Any]:
        payload = {
            "agency_id": self.agency.get("id") or self.post.get("agency_id"),
            "vehicle_id": self.vehicle.get("id") or self.post.get("vehicle_id"),
            "pickup_date": self.pickup_date.isoformat(),
            "return_date": self.return_date.isoformat(),
            "pickup_type": "delivery" if self.delivery else "pickup",
        }
        if self.delivery:
            location = self.resolver.delivery_location
            payload["delivery_coordinates"] = {"lng": location.lng, "lat": location.lat}
            payload["delivery_distance_km"] = self.resolver.distance
        payload.update(self.quote().as_payload())
        return payload

    def submit(self) -> Optional[Dict[str, Any]]:
        """Create the reservation once; returns None while a submission is in flight."""
        if self.submitting:
            logger.warning("Reservation already being submitted")
            return None
        valid, message = self.validate()
        if not valid:
            raise ValueError(message)
        self.submitting = True
        try:
            self.reservation = self.client.create_reservation(self.reservation_payload())
        finally:
            self.submitting = False
        logger.info("Reservation %s created", self.reservation.get("reservation_number"))
        return self.reservation

    def pay(self, method: str, status: str, transaction_id: Optional[str] = None,
            details: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        if self.reservation is None:
            raise ValueError("Create the reservation before paying")
        if self.submitting:
            logger.warning("Payment already being submitted")
            return None
        self.submitting = True
        try:
            self.payment = self.client.create_payment({
                "reservation_id": self.reservation["id"],
                "payment_method": method,
                "amount": self.reservation["final_amount"],
                "status": status,
                "transaction_id": transaction_id,
                "details": details,
            })
        finally:
            self.submitting = False
        return self.payment
