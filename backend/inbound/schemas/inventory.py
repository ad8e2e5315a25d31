"""Pydantic schemas for inventory created by a closed shipment."""

from datetime import datetime

from pydantic import BaseModel


class InventoryUnitOut(BaseModel):
    id: str
    ic_code: str
    status: str
    location_id: str | None
    container_id: str | None
    account_id: str | None
    shipment_line_item_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ContainerOut(BaseModel):
    id: str
    container_code: str
    container_type: str
    location_id: str | None
    status: str
    unit_count: int = 0


class ShipmentInventoryOut(BaseModel):
    units: list[InventoryUnitOut]
    containers: list[ContainerOut]
