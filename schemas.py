"""
Database Schemas for the Car Rental Marketplace

Each Pydantic model in the first half of this module represents a MongoDB
collection. The collection name is the snake_case of the class name
(e.g., Car -> "car", ParkingSpot -> "parking_spot"). The second half holds
the request payloads the API accepts.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from config import DEFAULT_LANGUAGE, MINIMUM_AGE

PHONE_RE = re.compile(r"^\+?[0-9][0-9 ().-]{5,19}$")


class Schema(BaseModel):
    model_config = ConfigDict(use_enum_values=True, populate_by_name=True)


class UserType(str, Enum):
    ADMIN = "admin"
    SUPPLIER = "supplier"
    USER = "user"


class CarType(str, Enum):
    DIESEL = "diesel"
    GASOLINE = "gasoline"
    ELECTRIC = "electric"
    HYBRID = "hybrid"
    PLUG_IN_HYBRID = "plugInHybrid"
    UNKNOWN = "unknown"


class GearboxType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class FuelPolicy(str, Enum):
    LIKE_FOR_LIKE = "likeForlike"
    FREE_TANK = "freeTank"


class CarRange(str, Enum):
    MINI = "mini"
    MIDI = "midi"
    MAXI = "maxi"
    SCOOTER = "scooter"


class CarMultimedia(str, Enum):
    TOUCHSCREEN = "touchscreen"
    BLUETOOTH = "bluetooth"
    ANDROID_AUTO = "androidAuto"
    APPLE_CAR_PLAY = "appleCarPlay"


class BookingStatus(str, Enum):
    VOID = "void"
    PENDING = "pending"
    DEPOSIT = "deposit"
    PAID = "paid"
    RESERVED = "reserved"
    CANCELLED = "cancelled"


class Mileage(str, Enum):
    LIMITED = "limited"
    UNLIMITED = "unlimited"


class Availability(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH = "cash"
    CHECK = "check"
    OTHER = "other"


def _check_phone(value: Optional[str], required: bool = False) -> Optional[str]:
    if value is None or value.strip() == "":
        if required:
            raise ValueError("phone can't be blank")
        return None
    value = value.strip()
    if not PHONE_RE.match(value):
        raise ValueError(f"{value} is not valid")
    return value


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class Country(Schema):
    name: str = Field(..., min_length=1, description="Country name")


class ParkingSpot(Schema):
    name: str = Field(..., min_length=1, description="Parking spot name")
    latitude: float = Field(..., description="Latitude")
    longitude: float = Field(..., description="Longitude")


class Location(Schema):
    country: str = Field(..., description="Referenced country id")
    name: str = Field(..., min_length=1, description="Location name")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image: Optional[str] = Field(None, description="Image filename in the locations CDN folder")
    parking_spots: List[str] = Field(default_factory=list, description="Referenced parking spot ids")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class Car(Schema):
    brand: str = Field(..., min_length=1)
    car_model: str = Field(..., min_length=1)
    plate_number: str = Field(..., min_length=1)
    year: int = Field(..., description="Manufacturing year")
    supplier: str = Field(..., description="Referenced supplier id")
    minimum_age: int = Field(..., ge=MINIMUM_AGE, le=99)
    locations: List[str] = Field(..., min_length=1, description="Referenced location ids")

    daily_price: float = Field(..., ge=0)
    discounted_daily_price: Optional[float] = Field(None, ge=0)
    bi_weekly_price: Optional[float] = Field(None, ge=0)
    discounted_bi_weekly_price: Optional[float] = Field(None, ge=0)
    weekly_price: Optional[float] = Field(None, ge=0)
    discounted_weekly_price: Optional[float] = Field(None, ge=0)
    monthly_price: Optional[float] = Field(None, ge=0)
    discounted_monthly_price: Optional[float] = Field(None, ge=0)

    deposit: float = Field(..., ge=0)
    available: bool = True
    type: CarType
    gearbox: GearboxType
    aircon: bool
    image: Optional[str] = None
    seats: int = Field(..., ge=1)
    doors: int = Field(..., ge=1)
    fuel_policy: FuelPolicy
    mileage: float = Field(..., description="-1 for unlimited mileage")

    # option prices, -1 means not available, 0 means included
    cancellation: float
    amendments: float
    theft_protection: float
    collision_damage_waiver: float
    full_insurance: float
    additional_driver: float

    range: CarRange
    multimedia: List[CarMultimedia] = Field(default_factory=list)
    rating: Optional[float] = Field(None, ge=1, le=5)
    trips: int = Field(0, ge=0)
    co2: Optional[float] = None

    @field_validator("brand", "car_model", "plate_number")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()


class UserDocuments(Schema):
    license_recto: Optional[str] = None
    license_verso: Optional[str] = None
    id_recto: Optional[str] = None
    id_verso: Optional[str] = None


class Contract(Schema):
    language: str = Field(..., min_length=2, max_length=2)
    file: Optional[str] = None


class User(Schema):
    email: EmailStr
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6, description="bcrypt hash once stored")
    birth_date: Optional[datetime] = None
    verified: bool = False
    verified_at: Optional[datetime] = None
    active: bool = False
    language: str = Field(DEFAULT_LANGUAGE, min_length=2, max_length=2)
    enable_email_notifications: bool = True
    avatar: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    type: UserType = UserType.USER
    blacklisted: bool = False
    pay_later: bool = True
    customer_id: Optional[str] = None
    license_required: bool = False
    minimum_rental_days: Optional[int] = Field(None, ge=1)
    contracts: List[Contract] = Field(default_factory=list)
    suppliers: List[str] = Field(default_factory=list, description="Suppliers the driver booked with")
    supplier: Optional[str] = None
    expire_at: Optional[datetime] = None
    national_id: Optional[str] = None
    national_id_expiry_date: Optional[datetime] = None
    license_id: Optional[str] = None
    license_delivery_date: Optional[datetime] = None
    license_expiry_date: Optional[datetime] = None
    documents: Optional[UserDocuments] = None
    signature: Optional[str] = None
    ice: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("language")
    @classmethod
    def lower_language(cls, v: str) -> str:
        return v.lower()

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class AdditionalDriver(Schema):
    full_name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: str
    birth_date: Optional[datetime] = None
    location: Optional[str] = None
    license_id: str = Field(..., min_length=1)
    license_delivery_date: datetime
    national_id: str = Field(..., min_length=1)
    national_id_expiry_date: datetime

    @field_validator("email", mode="before")
    @classmethod
    def empty_email(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v: str) -> str:
        return _check_phone(v, required=True)


class Booking(Schema):
    supplier: str
    car: str
    driver: Optional[str] = None
    pickup_location: str
    drop_off_location: str
    from_date: datetime
    to_date: datetime
    status: BookingStatus = BookingStatus.PENDING
    cancellation: bool = False
    amendments: bool = False
    theft_protection: bool = False
    collision_damage_waiver: bool = False
    full_insurance: bool = False
    additional_driver: bool = False
    additional_driver_id: Optional[str] = None
    cancel_request: bool = False
    price: Optional[float] = Field(None, ge=0)
    paid_amount: Optional[float] = Field(None, ge=0)
    deposit: Optional[float] = Field(None, ge=0)
    payment_method: Optional[PaymentMethod] = None
    session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    customer_id: Optional[str] = None
    expire_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_dates(self) -> "Booking":
        if self.to_date <= self.from_date:
            raise ValueError("Drop-off must be after pickup")
        return self


class Notification(Schema):
    user: str
    message: str
    booking: Optional[str] = None
    is_read: bool = False


class NotificationCounter(Schema):
    user: str
    count: int = Field(0, ge=0)


class PushToken(Schema):
    user: str
    token: str


class Token(Schema):
    user: str
    token: str
    expire_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class NamePayload(Schema):
    name: str = Field(..., min_length=1)


class ParkingSpotPayload(ParkingSpot):
    id: Optional[str] = Field(None, description="Existing parking spot id")


class UpsertLocationPayload(Schema):
    country: str
    name: str = Field(..., min_length=1)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image: Optional[str] = Field(None, description="Temporary image filename")
    parking_spots: List[ParkingSpotPayload] = Field(default_factory=list)


class CreateCarPayload(Car):
    pass


class UpdateCarPayload(Car):
    id: str


class CarSpecs(Schema):
    aircon: Optional[bool] = None
    more_than_four_doors: Optional[bool] = None
    more_than_five_seats: Optional[bool] = None


class GetCarsPayload(Schema):
    suppliers: Optional[List[str]] = None
    car_specs: Optional[CarSpecs] = None
    car_type: Optional[List[CarType]] = None
    gearbox: Optional[List[GearboxType]] = None
    mileage: Optional[List[Mileage]] = None
    fuel_policy: Optional[List[FuelPolicy]] = None
    deposit: Optional[float] = Field(None, description="-1 means any deposit")
    availability: Optional[List[Availability]] = None
    pickup_location: Optional[str] = None
    ranges: Optional[List[CarRange]] = None
    multimedia: Optional[List[CarMultimedia]] = None
    rating: Optional[float] = None
    seats: Optional[int] = None
    days: Optional[int] = None


class GetBookingCarsPayload(Schema):
    supplier: str
    pickup_location: str


class SignUpPayload(Schema):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    language: str = Field(DEFAULT_LANGUAGE, min_length=2, max_length=2)
    birth_date: Optional[datetime] = None
    national_id: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)

class SignInPayload(Schema):
    email: EmailStr
    password: str
    stay_connected: bool = False


class ActivatePayload(Schema):
    user_id: str
    token: str
    password: str = Field(..., min_length=6)


class EmailPayload(Schema):
    email: EmailStr


class CreateUserPayload(Schema):
    email: EmailStr
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    type: UserType = UserType.USER
    avatar: Optional[str] = Field(None, description="Temporary avatar filename")
    birth_date: Optional[datetime] = None
    language: str = Field(DEFAULT_LANGUAGE, min_length=2, max_length=2)
    password: Optional[str] = Field(None, min_length=6)
    verified: bool = False
    blacklisted: bool = False
    pay_later: bool = True
    supplier: Optional[str] = None
    contracts: List[Contract] = Field(default_factory=list)
    license_required: bool = False
    minimum_rental_days: Optional[int] = Field(None, ge=1)
    license_id: Optional[str] = None
    national_id: Optional[str] = None
    national_id_expiry_date: Optional[datetime] = None
    license_delivery_date: Optional[datetime] = None
    license_expiry_date: Optional[datetime] = None
    documents: Optional[UserDocuments] = None
    signature: Optional[str] = None
    ice: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)

class UpdateUserPayload(Schema):
    id: str
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    type: Optional[UserType] = None
    birth_date: Optional[datetime] = None
    pay_later: Optional[bool] = None
    license_required: Optional[bool] = None
    minimum_rental_days: Optional[int] = Field(None, ge=1)
    enable_email_notifications: Optional[bool] = None
    contracts: Optional[List[Contract]] = None
    license_id: Optional[str] = None
    national_id: Optional[str] = None
    national_id_expiry_date: Optional[datetime] = None
    license_delivery_date: Optional[datetime] = None
    license_expiry_date: Optional[datetime] = None
    ice: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)

class ChangePasswordPayload(Schema):
    id: str
    password: Optional[str] = None
    new_password: str = Field(..., min_length=6)
    strict: bool = True


class UpdateEmailNotificationsPayload(Schema):
    id: str
    enable_email_notifications: bool


class UpdateLanguagePayload(Schema):
    id: str
    language: str = Field(..., min_length=2, max_length=2)


class GetUsersPayload(Schema):
    user: Optional[str] = None
    types: List[UserType] = Field(default_factory=lambda: [UserType.USER.value])


class ValidateSupplierPayload(Schema):
    full_name: str = Field(..., min_length=1)


class SendEmailPayload(Schema):
    from_address: EmailStr = Field(..., alias="from")
    to: Optional[EmailStr] = None
    subject: str
    message: str
    is_contact_form: bool = True


class DriverPayload(Schema):
    email: EmailStr
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    birth_date: Optional[datetime] = None
    language: str = Field(DEFAULT_LANGUAGE, min_length=2, max_length=2)
    national_id: Optional[str] = None
    license_id: Optional[str] = None
    documents: Optional[UserDocuments] = Field(None, description="Temporary license document filenames")
    signature: Optional[str] = Field(None, description="Temporary signature filename")

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)

class BookingPayload(Booking):
    id: Optional[str] = None


class UpsertBookingPayload(Schema):
    booking: BookingPayload
    additional_driver: Optional[AdditionalDriver] = None


class CheckoutPayload(Schema):
    driver: Optional[DriverPayload] = None
    booking: BookingPayload
    additional_driver: Optional[AdditionalDriver] = None
    pay_later: bool = True
    session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    customer_id: Optional[str] = None


class BookingFilter(Schema):
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    keyword: Optional[str] = None
    pickup_location: Optional[str] = None
    drop_off_location: Optional[str] = None


class GetBookingsPayload(Schema):
    suppliers: List[str]
    statuses: List[BookingStatus]
    user: Optional[str] = None
    car: Optional[str] = None
    filter: Optional[BookingFilter] = None


class UpdateStatusPayload(Schema):
    ids: List[str] = Field(..., min_length=1)
    status: BookingStatus


class CarOptions(Schema):
    cancellation: bool = False
    amendments: bool = False
    theft_protection: bool = False
    collision_damage_waiver: bool = False
    full_insurance: bool = False
    additional_driver: bool = False


class PricePayload(Schema):
    car: str
    from_date: datetime
    to_date: datetime
    options: CarOptions = Field(default_factory=CarOptions)


class DashboardPayload(Schema):
    suppliers: List[str]
    statuses: List[BookingStatus]
    filter: Optional[BookingFilter] = None


class InvoiceDataPayload(Schema):
    booking_ids: List[str] = Field(..., min_length=1)
    client_timezone: Optional[str] = None


class GenerateInvoicePayload(Schema):
    signed: bool = False
    data: Dict[str, Any]
    currency_symbol: str = "€"
