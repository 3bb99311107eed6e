"""Pydantic schemas for API."""
from pydantic import AliasChoices, BaseModel, Field, ConfigDict, model_validator
from typing import Any, Optional
from datetime import date, datetime


# Stock registry
class PrecastStockCreate(BaseModel):
    element_id: int = Field(gt=0)
    project_id: int = Field(gt=0)
    stockyard_id: Optional[int] = None


class PrecastStockCreated(BaseModel):
    message: str
    stock_id: int
    element_id: int
    dimensions: str
    weight: float


class StockyardReceiptRequest(BaseModel):
    project_id: int = Field(gt=0)
    element_ids: list[int] = Field(min_length=1)


class StockyardReceiptResult(BaseModel):
    message: str
    updated_count: int
    updated_ids: list[int]
    skipped_ids: list[int] = []
    missing_ids: list[int] = []


class StockItemOut(BaseModel):
    """Stock row with its lifecycle state and the legacy disposition flags."""
    stock_id: int
    element_id: int
    element_name: Optional[str] = None
    element_type: str
    element_type_id: int
    element_type_name: Optional[str] = None
    stockyard_id: Optional[int] = None
    storage_location: Optional[str] = None
    thickness: float
    length: float
    height: float
    dimensions: str
    weight: float
    lifecycle_state: str
    stockyard: bool
    dispatch_status: bool
    order_by_erection: bool
    received_in_erection: bool
    erected: bool
    floor_id: int
    floor_name: str
    tower_name: str
    production_date: Optional[datetime] = None
    dispatch_start: Optional[datetime] = None
    dispatch_end: Optional[datetime] = None


class StockGroupOut(BaseModel):
    element_type: str
    element_type_id: int
    element_type_name: Optional[str] = None
    count: int
    items: list[StockItemOut]


# Dispatch
class VehicleDetailsIn(BaseModel):
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone_no: Optional[str] = None
    emergency_contact_phone_no: Optional[str] = None
    capacity: Optional[str] = None
    transporter_id: Optional[int] = None
    truck_type: Optional[str] = None


VEHICLE_FIELDS: tuple[str, ...] = tuple(VehicleDetailsIn.model_fields)
REQUIRED_VEHICLE_FIELDS: tuple[str, ...] = (
    "vehicle_number",
    "driver_name",
    "driver_phone_no",
    "capacity",
    "transporter_id",
    "truck_type",
)


class DispatchOrderCreate(VehicleDetailsIn):
    """Dispatch request; a nested `vehicle_details` object fills blank top-level fields."""
    project_id: int = Field(gt=0)
    vehicle_id: Optional[int] = None
    vehicle_details: Optional[VehicleDetailsIn] = None
    items: list[int] = []
    recieve_by: Optional[int] = None
    dispatch_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _merge_nested_vehicle(self):
        nested = self.vehicle_details
        if nested is None:
            return self
        for field in VEHICLE_FIELDS:
            current = getattr(self, field)
            if current is None or (isinstance(current, str) and not current.strip()):
                setattr(self, field, getattr(nested, field))
        return self


class DispatchCreated(BaseModel):
    message: str
    dispatch_id: int
    order_id: int
    order_number: str
    project_id: int
    vehicle_id: int


class DispatchTransitioned(BaseModel):
    message: str
    order_id: int
    order_number: str
    status: str


class DispatchReceived(BaseModel):
    message: str
    order_id: int
    received_by: int


class DispatchItemOut(BaseModel):
    element_id: int
    element_type: Optional[str] = None
    weight: Optional[float] = None
    element_type_name: Optional[str] = None


class DispatchOrderOut(BaseModel):
    order_id: int
    order_number: str
    project_id: int
    dispatch_date: datetime
    status: str
    received_by: Optional[int] = None
    received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    dispatch_id: Optional[int] = None
    current_status: Optional[str] = None
    vehicle_id: Optional[int] = None
    driver_name: Optional[str] = None
    departure_time: Optional[datetime] = None
    items: list[DispatchItemOut] = []


class TrackingLogOut(BaseModel):
    id: int
    order_number: str
    status: str
    location: str
    remarks: Optional[str] = None
    status_timestamp: datetime
    model_config = ConfigDict(from_attributes=True)


class TrackingLogsOut(BaseModel):
    project_id: int
    logs: list[TrackingLogOut]
    count: int


# Erection
class RaiseRequestLine(BaseModel):
    element_type_id: int = Field(gt=0)
    quantity: int = Field(ge=0)


class RaisedLineOut(BaseModel):
    floor_id: int
    element_type_id: int
    requested: int
    raised: int
    stock_ids: list[int]


class RaiseRequestResult(BaseModel):
    message: str
    requested_total: int
    raised_total: int
    lines: list[RaisedLineOut]


class ErectionDecision(BaseModel):
    element_id: int
    approved: bool = Field(validation_alias=AliasChoices("approved", "approved_status"))
    comments: Optional[str] = None


class DecisionResult(BaseModel):
    message: str
    updated_count: int
    missing_ids: list[int]
    acted_by: int


class SiteReceiptRequest(BaseModel):
    project_id: int = Field(gt=0)
    element_ids: list[int] = Field(min_length=1)


class FinalizeErectedRequest(BaseModel):
    project_id: int = Field(gt=0)
    element_ids: list[int] = Field(min_length=1)
    comments: Optional[str] = None


class ErectionCountResult(BaseModel):
    message: str
    count: int


class ErectionRequestOut(BaseModel):
    id: int
    precast_stock_id: int
    element_id: int
    element_name: Optional[str] = None
    element_type: Optional[str] = None
    element_type_name: Optional[str] = None
    project_id: int
    order_at: datetime
    approved_status: Optional[bool] = None
    received_in_erection: bool
    erected: bool
    comments: Optional[str] = None
    action_approve_or_reject: Optional[datetime] = None
    latest_status: Optional[str] = None
    floor_id: int
    floor_name: str
    tower_name: str


class ErectionLogOut(BaseModel):
    id: int
    stock_erected_id: int
    element_id: int
    project_id: int
    status: str
    acted_by: Optional[int] = None
    comments: Optional[str] = None
    action_timestamp: datetime
    model_config = ConfigDict(from_attributes=True)


# Work orders
class WorkOrderMaterialIn(BaseModel):
    item_name: str = Field(min_length=1)
    unit_rate: float = 0
    volume: float = Field(default=0, ge=0)
    tax: float = 0
    hsn_code: Optional[int] = None
    tower_id: Optional[int] = None
    floor_id: list[int] = []


class WorkOrderIn(BaseModel):
    wo_number: str = Field(min_length=1)
    wo_date: Optional[date] = None
    wo_validate: Optional[date] = None
    total_value: float = 0
    contact_person: Optional[str] = None
    contact_email: Optional[str] = None
    contact_number: Optional[str] = None
    phone_code: Optional[int] = None
    # milestone label -> percentage
    payment_term: dict[str, float] = {}
    wo_description: Optional[str] = None
    comments: Optional[str] = None
    endclient_id: int = Field(gt=0)
    project_id: int = Field(gt=0)
    shipped_address: Optional[str] = None
    billed_address: Optional[str] = None
    material: list[WorkOrderMaterialIn] = []
    wo_attachment: list[str] = []
    recurrence_patterns: list[dict[str, Any]] = []


class WorkOrderCreated(BaseModel):
    message: str
    id: int


class WorkOrderUpdated(BaseModel):
    message: str
    work_order_id: int
    revision_no: int
    updated_by: int


class WorkOrderMaterialOut(BaseModel):
    id: int
    item_name: str
    unit_rate: float
    volume: float
    volume_used: float
    balance: float
    tax: float
    hsn_code: Optional[int] = None
    tower_id: Optional[int] = None
    tower_name: Optional[str] = None
    floor_id: list[int] = []
    floor_name: list[str] = []


class WorkOrderOut(BaseModel):
    id: int
    wo_number: str
    wo_date: Optional[date] = None
    wo_validate: Optional[date] = None
    total_value: float
    contact_person: Optional[str] = None
    contact_email: Optional[str] = None
    contact_number: Optional[str] = None
    phone_code: Optional[int] = None
    payment_term: dict[str, float] = {}
    wo_description: Optional[str] = None
    comments: Optional[str] = None
    endclient_id: int
    project_id: int
    shipped_address: Optional[str] = None
    billed_address: Optional[str] = None
    revision: int
    recurrence_patterns: list[dict[str, Any]] = []
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    material: list[WorkOrderMaterialOut] = []
    wo_attachment: list[str] = []


class WorkOrderRevisionOut(BaseModel):
    id: int
    work_order_id: int
    revision_no: int
    wo_number: str
    wo_date: Optional[date] = None
    wo_validate: Optional[date] = None
    total_value: float
    contact_person: Optional[str] = None
    contact_email: Optional[str] = None
    contact_number: Optional[str] = None
    phone_code: Optional[int] = None
    payment_term: dict[str, float] = {}
    wo_description: Optional[str] = None
    comments: Optional[str] = None
    endclient_id: int
    project_id: int
    shipped_address: Optional[str] = None
    billed_address: Optional[str] = None
    recurrence_patterns: list[dict[str, Any]] = []
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    material: list[WorkOrderMaterialOut] = []
    wo_attachment: list[str] = []


# Invoices
class InvoiceItemIn(BaseModel):
    item_id: int = Field(gt=0)
    volume: float = Field(gt=0)
    hsn_code: Optional[int] = None


class InvoiceCreate(BaseModel):
    work_order_id: int = Field(gt=0)
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    total_amount: float = 0
    items: list[InvoiceItemIn] = Field(min_length=1)


class InvoiceCreated(BaseModel):
    message: str
    id: int
    revision_no: int
    name: str


class InvoiceSubmitted(BaseModel):
    message: str
    id: int


class PendingInvoiceItemOut(BaseModel):
    id: int
    item_id: int
    item_name: Optional[str] = None
    volume: float
    hsn_code: Optional[int] = None
    unit_rate: Optional[float] = None
    tax: Optional[float] = None
    balance: float


class PendingInvoiceOut(BaseModel):
    id: int
    name: Optional[str] = None
    work_order_id: int
    wo_number: str
    endclient_id: int
    project_id: int
    revision_no: int
    total_amount: float
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    items: list[PendingInvoiceItemOut] = []


class PaginationOut(BaseModel):
    page: int
    limit: int
    total_records: int
    total_pages: int


class PendingInvoicePage(BaseModel):
    data: list[PendingInvoiceOut]
    pagination: PaginationOut


class InvoiceItemOut(BaseModel):
    id: int
    item_id: int
    item_name: Optional[str] = None
    volume: float
    hsn_code: Optional[int] = None
    unit_rate: Optional[float] = None
    tax: Optional[float] = None
    volume_used: Optional[float] = None
    tower_id: Optional[int] = None
    floor_id: list[int] = []


class InvoiceOut(BaseModel):
    """Invoice with its work-order header and lines."""
    id: int
    name: Optional[str] = None
    work_order_id: int
    wo_number: str
    project_id: int
    project_name: Optional[str] = None
    endclient_id: int
    endclient_name: Optional[str] = None
    payment_term: dict[str, float] = {}
    revision_no: int
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    total_amount: float
    payment_status: str
    indraft: bool
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: list[InvoiceItemOut] = []


class InvoiceSummaryOut(BaseModel):
    id: int
    name: Optional[str] = None
    work_order_id: int
    revision_no: int
    total_amount: float
    payment_status: str
    indraft: bool
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Listings
class WorkOrderSummaryOut(BaseModel):
    id: int
    wo_number: str
    wo_date: Optional[date] = None
    wo_validate: Optional[date] = None
    total_value: float
    revision: int
    project_id: int
    project_name: Optional[str] = None
    endclient_id: int
    endclient_name: Optional[str] = None
    created_by: Optional[int] = None
    created_by_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WorkOrderPage(BaseModel):
    data: list[WorkOrderSummaryOut]
    pagination: PaginationOut


class StockApprovalLogOut(BaseModel):
    id: int
    precast_stock_id: int
    element_id: int
    project_id: int
    status: str
    comments: Optional[str] = None
    element_type: Optional[str] = None
    element_type_name: Optional[str] = None
    acted_by: Optional[int] = None
    acted_by_name: Optional[str] = None
    action_timestamp: Optional[datetime] = None
