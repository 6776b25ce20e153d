"""
Customer garage endpoints.

The customer routes are called by the storefront widget on behalf of
shoppers; their error bodies never carry distributor or storefront detail.
The shop-level routes (stats, alert evaluation) are for the merchant app.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from partsync.api.v1.deps import get_clock, get_shop
from partsync.api.v1.schemas.compatibility import PaginatedResponse, TrackedProductResponse
from partsync.api.v1.schemas.garage import (
    GarageResponse,
    GarageStatsResponse,
    GarageVehicleCreate,
    GarageVehicleResponse,
    GarageVehicleUpdate,
    MaintenanceReminderResponse,
    PriceAlertCreate,
    PriceAlertResponse,
    PurchaseCreate,
    PurchaseResponse,
    ReminderCompleteRequest,
    TriggeredAlertResponse,
)
from partsync.core.clock import Clock
from partsync.core.exceptions import NotFoundException
from partsync.db.postgres.session import get_db
from partsync.services.garage_service import GarageDetails, GarageService

router = APIRouter()
admin_router = APIRouter()


def get_garage_service(
    shop: str = Depends(get_shop),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> GarageService:
    return GarageService(db, shop, clock=clock)


def _garage_response(details: GarageDetails) -> GarageResponse:
    garage = details.garage
    return GarageResponse(
        id=garage.id,
        customer_id=garage.customer_id,
        name=garage.name,
        max_vehicles=garage.max_vehicles,
        vehicles=[GarageVehicleResponse.model_validate(v) for v in details.vehicles],
        reminders=[MaintenanceReminderResponse.model_validate(r) for r in details.reminders],
        alerts=[PriceAlertResponse.model_validate(a) for a in details.alerts],
        purchases=[PurchaseResponse.model_validate(p) for p in details.purchases],
    )


# =============================================================================
# Customer Garage
# =============================================================================


@router.get("/{customer_id}", response_model=GarageResponse)
async def get_garage(
    customer_id: str,
    details: bool = Query(False, description="Include reminders, alerts and recent purchases"),
    service: GarageService = Depends(get_garage_service),
):
    """Get the customer's garage, creating it on first use."""
    if details:
        garage = await service.get_garage_details(customer_id)
        if garage is not None:
            return _garage_response(garage)
    return _garage_response(await service.get_or_create_garage(customer_id))


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_garage(customer_id: str, service: GarageService = Depends(get_garage_service)):
    if not await service.delete_garage(customer_id):
        raise NotFoundException(message="Garage not found.", resource_type="garage")


@router.post("/{customer_id}/vehicles", response_model=GarageVehicleResponse, status_code=status.HTTP_201_CREATED)
async def add_vehicle(
    customer_id: str,
    body: GarageVehicleCreate,
    service: GarageService = Depends(get_garage_service),
):
    return await service.add_vehicle(customer_id, body.model_dump())


@router.patch("/{customer_id}/vehicles/{vehicle_id}", response_model=GarageVehicleResponse)
async def update_vehicle(
    customer_id: str,
    vehicle_id: UUID,
    body: GarageVehicleUpdate,
    service: GarageService = Depends(get_garage_service),
):
    return await service.update_vehicle(customer_id, vehicle_id, body.model_dump(exclude_unset=True))


@router.delete("/{customer_id}/vehicles/{vehicle_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_vehicle(
    customer_id: str,
    vehicle_id: UUID,
    service: GarageService = Depends(get_garage_service),
):
    await service.remove_vehicle(customer_id, vehicle_id)


@router.get(
    "/{customer_id}/vehicles/{vehicle_id}/products",
    response_model=PaginatedResponse[TrackedProductResponse],
)
async def compatible_products(
    customer_id: str,
    vehicle_id: UUID,
    category: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: GarageService = Depends(get_garage_service),
):
    products, total = await service.get_compatible_products(
        customer_id, vehicle_id, category=category, limit=limit, offset=offset
    )
    return PaginatedResponse[TrackedProductResponse](
        items=[TrackedProductResponse.model_validate(product) for product in products],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(products) < total,
    )


# =============================================================================
# Reminders, Alerts, Purchases
# =============================================================================


@router.get("/{customer_id}/reminders", response_model=list[MaintenanceReminderResponse])
async def upcoming_reminders(
    customer_id: str,
    days_ahead: int = Query(30, ge=1, le=365),
    service: GarageService = Depends(get_garage_service),
):
    return await service.get_upcoming_reminders(customer_id, days_ahead)


@router.post("/{customer_id}/reminders/{reminder_id}/complete", response_model=MaintenanceReminderResponse)
async def complete_reminder(
    customer_id: str,
    reminder_id: UUID,
    body: ReminderCompleteRequest,
    service: GarageService = Depends(get_garage_service),
):
    return await service.complete_maintenance_reminder(customer_id, reminder_id, body.current_mileage)


@router.post("/{customer_id}/alerts", response_model=PriceAlertResponse, status_code=status.HTTP_201_CREATED)
async def create_price_alert(
    customer_id: str,
    body: PriceAlertCreate,
    service: GarageService = Depends(get_garage_service),
):
    return await service.create_price_alert(customer_id, body.model_dump())


@router.post("/{customer_id}/purchases", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
async def record_purchase(
    customer_id: str,
    body: PurchaseCreate,
    service: GarageService = Depends(get_garage_service),
):
    return await service.record_purchase(customer_id, body.model_dump())


# =============================================================================
# Shop Level
# =============================================================================


@admin_router.get("/stats", response_model=GarageStatsResponse)
async def garage_stats(service: GarageService = Depends(get_garage_service)):
    return await service.get_garage_stats()


@admin_router.post("/alerts/check", response_model=list[TriggeredAlertResponse])
async def check_price_alerts(service: GarageService = Depends(get_garage_service)):
    """Evaluate every pending alert of the shop once."""
    triggered = await service.check_price_alerts()
    return [
        TriggeredAlertResponse(
            alert=PriceAlertResponse.model_validate(item.alert),
            product=TrackedProductResponse.model_validate(item.product),
            customer_id=item.customer_id,
        )
        for item in triggered
    ]
