"""
Customer garage schemas.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from partsync.api.v1.schemas.compatibility import TrackedProductResponse
from partsync.db.postgres.types import PriceAlertType, ReminderIntervalType


class GarageVehicleCreate(BaseModel):
    """Vehicle to save in a customer's garage."""

    year: int = Field(..., ge=1900, le=2100)
    make: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    submodel: Optional[str] = Field(None, max_length=100)
    engine: Optional[str] = Field(None, max_length=100)
    trim: Optional[str] = Field(None, max_length=100)
    nickname: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    mileage: Optional[int] = Field(None, ge=0)
    vin: Optional[str] = Field(None, min_length=17, max_length=17)
    is_primary: bool = False

    model_config = ConfigDict(
        json_schema_extra={"example": {"year": 2020, "make": "Ford", "model": "F-150", "submodel": "XLT"}}
    )


class GarageVehicleUpdate(BaseModel):
    nickname: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    mileage: Optional[int] = Field(None, ge=0)
    vin: Optional[str] = Field(None, min_length=17, max_length=17)
    trim: Optional[str] = Field(None, max_length=100)
    engine: Optional[str] = Field(None, max_length=100)
    is_primary: Optional[bool] = None


class GarageVehicleResponse(BaseModel):
    id: UUID
    year: int
    make: str
    model: str
    submodel: Optional[str] = None
    engine: Optional[str] = None
    trim: Optional[str] = None
    nickname: Optional[str] = None
    color: Optional[str] = None
    mileage: Optional[int] = None
    vin: Optional[str] = None
    is_primary: bool
    vehicle_record_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MaintenanceReminderResponse(BaseModel):
    id: UUID
    vehicle_id: UUID
    reminder_type: str
    title: str
    description: Optional[str] = None
    interval_type: ReminderIntervalType
    interval_months: Optional[int] = None
    interval_mileage: Optional[int] = None
    last_completed: Optional[datetime] = None
    last_mileage: Optional[int] = None
    next_due: Optional[datetime] = None
    next_mileage: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ReminderCompleteRequest(BaseModel):
    current_mileage: Optional[int] = Field(None, ge=0)


class PriceAlertCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=100)
    product_title: str = Field(..., min_length=1, max_length=255)
    vehicle_id: Optional[UUID] = None
    current_price: float = Field(0.0, ge=0)
    target_price: Optional[float] = Field(None, ge=0)
    alert_type: PriceAlertType = PriceAlertType.PRICE_DROP
    email_notifications: bool = True


class PriceAlertResponse(BaseModel):
    id: UUID
    vehicle_id: Optional[UUID] = None
    sku: str
    product_title: str
    target_price: Optional[float] = None
    current_price: float
    alert_type: PriceAlertType
    alert_triggered: bool
    triggered_at: Optional[datetime] = None
    last_checked: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TriggeredAlertResponse(BaseModel):
    alert: PriceAlertResponse
    product: TrackedProductResponse
    customer_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseCreate(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=64)
    order_number: Optional[str] = Field(None, max_length=64)
    sku: str = Field(..., min_length=1, max_length=100)
    product_title: str = Field(..., min_length=1, max_length=255)
    vehicle_id: Optional[UUID] = None
    quantity: int = Field(1, ge=1)
    unit_price: float = Field(..., ge=0)
    total_price: Optional[float] = Field(None, ge=0)
    purchase_date: Optional[datetime] = None
    category: Optional[str] = Field(None, max_length=100)


class PurchaseResponse(BaseModel):
    id: UUID
    vehicle_id: Optional[UUID] = None
    order_id: str
    order_number: Optional[str] = None
    sku: str
    product_title: str
    quantity: int
    unit_price: float
    total_price: float
    purchase_date: datetime
    category: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class GarageResponse(BaseModel):
    """A garage with its vehicles and, on the details view, everything attached."""

    id: UUID
    customer_id: str
    name: str
    max_vehicles: int
    vehicles: list[GarageVehicleResponse] = Field(default_factory=list)
    reminders: list[MaintenanceReminderResponse] = Field(default_factory=list)
    alerts: list[PriceAlertResponse] = Field(default_factory=list)
    purchases: list[PurchaseResponse] = Field(default_factory=list)


class GarageStatsResponse(BaseModel):
    total_garages: int
    active_customers: int
    total_vehicles: int
    maintenance_reminders: int
    price_alerts: int
