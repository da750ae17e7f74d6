# rentals/schemas.py
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Annotated, Any, List, Literal, Optional

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, ValidationError, ValidationInfo,
    field_validator, model_validator,
)

from .config import MAX_QUERY_INT, POPULAR_MIN_VIEWS
from .utils import media_url, vehicle_image_urls

ListingStatus = Literal["draft", "published", "archived"]
DeliveryOption = Literal["agency pickup", "home delivery", "airport delivery"]
PickupType = Literal["pickup", "delivery"]
PaymentMethod = Literal["credit_card", "paypal", "cash"]
PaymentStatus = Literal["CREATED", "COMPLETED", "APPROVED", "FAILED", "REFUNDED"]

_TRUTHY = ("1", "true", "on", "yes")
_FALSY = ("0", "false", "off", "no")
# out-of-range values fail validation and are dropped like any unreadable value
FilterInt = Annotated[int, Field(ge=0, le=MAX_QUERY_INT)]


class ListingFilters(BaseModel):
    """Optional listing filters; a value that can't be read is dropped."""
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    popular: Optional[FilterInt] = None
    agency_name: Optional[str] = None
    brand: Optional[str] = None
    vehicle_status: Optional[str] = None
    vehicle_age: Optional[str] = None
    license: Optional[FilterInt] = None
    driver_age: Optional[FilterInt] = None
    delivery: Optional[str] = None
    search: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    min_rating: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        if not isinstance(data, Mapping):
            return {}
        data = dict(data)
        popular = data.get("popular")
        if isinstance(popular, str) and popular.strip().lower() in _TRUTHY + _FALSY:
            popular = popular.strip().lower() in _TRUTHY
        if popular is True:
            data["popular"] = POPULAR_MIN_VIEWS
        elif popular is False:
            data["popular"] = None
        age = data.get("vehicle_age")
        if isinstance(age, int) and not isinstance(age, bool):
            data["vehicle_age"] = str(age)
        return data

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_invalid(cls, value, handler):
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            return None
        try:
            return handler(value)
        except ValidationError:
            return None


class AgencyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    logo_path: Optional[str] = None
    agency_coordinates: Any = None

    @field_validator("logo_path")
    @classmethod
    def _logo_url(cls, value):
        return media_url(value)


class VehicleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    agency_id: int
    brand: str
    model: str
    year: Optional[int] = None
    mileage: Optional[int] = None
    price_per_day: float
    status: str
    delivery_fee_per_km: float
    images: List[str] = []

    @field_validator("images", mode="before")
    @classmethod
    def _images_list(cls, value):
        return [p for p in (value or []) if isinstance(p, str)]

    @model_validator(mode="after")
    def _resolve_images(self):
        self.images = vehicle_image_urls(self.images, self.brand, self.model)
        return self


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    post_id: int
    user_id: int
    content: Optional[str] = None
    rating: Optional[int] = None
    created_at: Optional[datetime] = None


class ListingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    agency_id: int
    vehicle_id: int
    title: str
    description: str
    status: str
    delivery_options: List[str] = []
    min_driver_age: int
    min_license_years: int
    view_count: int
    rental_count: int
    average_rating: float
    total_reviews: int
    rating_breakdown: dict
    slug: str
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    agency: Optional[AgencyOut] = None
    vehicle: Optional[VehicleOut] = None

    @field_validator("delivery_options", mode="before")
    @classmethod
    def _options_list(cls, value):
        return list(value or [])


class ListingDetail(ListingOut):
    reviews: List[ReviewOut] = Field(
        default=[], validation_alias=AliasChoices("visible_reviews", "reviews")
    )


class PageMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    per_page: int
    current_page: int
    last_page: int
    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None


class ListingPage(PageMeta):
    data: List[ListingOut]


class ListingCreate(BaseModel):
    vehicle_id: int
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    status: Optional[ListingStatus] = None
    delivery_options: List[DeliveryOption] = Field(..., min_length=1)
    min_driver_age: Optional[int] = Field(None, ge=18, le=99)
    min_license_years: Optional[int] = Field(None, ge=1, le=50)
    meta_title: Optional[str] = Field(None, max_length=255)
    meta_description: Optional[str] = Field(None, max_length=500)


class ListingUpdate(BaseModel):
    vehicle_id: Optional[int] = None
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    status: Optional[ListingStatus] = None
    delivery_options: Optional[List[DeliveryOption]] = Field(None, min_length=1)
    min_driver_age: Optional[int] = Field(None, ge=18, le=99)
    min_license_years: Optional[int] = Field(None, ge=1, le=50)
    meta_title: Optional[str] = Field(None, max_length=255)
    meta_description: Optional[str] = Field(None, max_length=500)


class ReviewCreate(BaseModel):
    content: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)


class ReviewUpdate(ReviewCreate):
    pass


class ReservationCreate(BaseModel):
    agency_id: int
    vehicle_id: int
    pickup_date: datetime
    return_date: datetime
    pickup_type: PickupType = "pickup"
    delivery_coordinates: Any = None
    delivery_distance_km: Optional[float] = Field(None, gt=0, lt=10000)
    daily_rate: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0)
    delivery_fee: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)
    equipment_cost: float = Field(0, ge=0)
    final_amount: float = Field(..., ge=0)

    @field_validator("pickup_date", "return_date")
    @classmethod
    def _as_utc(cls, value: datetime):
        # timestamps without an offset are read as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("return_date")
    @classmethod
    def _after_pickup(cls, value, info: ValidationInfo):
        pickup = info.data.get("pickup_date")
        if pickup is not None and value <= pickup:
            raise ValueError("return_date must be after pickup_date")
        return value


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reservation_number: str
    client_id: int
    agency_id: int
    vehicle_id: int
    pickup_date: datetime
    return_date: datetime
    pickup_type: str
    delivery_coordinates: Any = None
    delivery_distance_km: Optional[float] = None
    status: str
    daily_rate: float
    total_amount: float
    delivery_fee: float
    discount_amount: float
    equipment_cost: float
    final_amount: float
    created_at: Optional[datetime] = None


class PaymentCreate(BaseModel):
    reservation_id: int
    payment_method: PaymentMethod
    amount: float = Field(..., ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    status: PaymentStatus
    transaction_id: Optional[str] = None
    details: Optional[dict] = None


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus
    details: Optional[dict] = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reservation_id: int
    payment_method: str
    amount: float
    currency: str
    status: str
    transaction_id: Optional[str] = None
    details: Optional[dict] = None
    created_at: Optional[datetime] = None
    reservation: Optional[ReservationOut] = None


class PaymentPage(PageMeta):
    data: List[PaymentOut]
