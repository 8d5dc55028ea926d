from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, validator

from bill_splitter import SplitStrategy
from order_status import OrderStatus


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    QR_CODE = "QR_CODE"
    TRANSFER = "TRANSFER"


# ========== Sessions ==========

class CheckInRequest(BaseModel):
    party_size: int
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None

    @validator("customer_name")
    def validate_customer_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) > 100:
            raise ValueError("Customer name cannot exceed 100 characters")
        return v.strip() if v else None


class SeatRequest(BaseModel):
    table_id: int


class SessionResponse(BaseModel):
    id: int
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None
    party_size: int
    status: str
    table_id: Optional[int] = None
    table_number: Optional[int] = None
    check_in_time: Optional[datetime] = None
    seated_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None


class SeatResponse(BaseModel):
    session: SessionResponse
    warnings: List[str] = []


class TableResponse(BaseModel):
    id: int
    number: int
    name: Optional[str] = None
    capacity: int
    is_active: bool
    is_available: bool
    session_id: Optional[int] = None
    session_status: Optional[str] = None


# ========== Orders ==========

class SelectionChoice(BaseModel):
    selection: str
    option: str
    price_add: Decimal = Decimal("0")

    @validator("price_add")
    def validate_price_add(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Option price cannot be negative")
        return v


class OrderItemCreate(BaseModel):
    menu_item_id: int
    quantity: int
    unit_price: Optional[Decimal] = None
    selections: Optional[List[SelectionChoice]] = None
    notes: Optional[str] = None

    @validator("quantity")
    def validate_quantity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1")
        if v > 100:
            raise ValueError("Quantity cannot exceed 100")
        return v

    @validator("unit_price")
    def validate_unit_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("Unit price cannot be negative")
        return v


class OrderCreate(BaseModel):
    session_id: int
    table_id: int
    items: List[OrderItemCreate]
    notes: Optional[str] = None
    parent_order_id: Optional[int] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = None


class BulkStatusUpdate(BaseModel):
    order_ids: List[int]
    status: OrderStatus
    reason: Optional[str] = None

    @validator("order_ids")
    def validate_order_ids(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("At least one order id is required")
        return v


class OrderItemResponse(BaseModel):
    id: int
    menu_item_id: int
    menu_item_name: str
    department: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    notes: Optional[str] = None
    selections: Optional[List[SelectionChoice]] = None


class OrderResponse(BaseModel):
    id: int
    order_number: str
    session_id: int
    table_id: Optional[int] = None
    parent_order_id: Optional[int] = None
    payment_id: Optional[int] = None
    status: str
    total_amount: Decimal
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    ordered_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    preparing_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemResponse]


class OrderGroupResponse(BaseModel):
    order_id: int
    order_number: str
    status: str
    total_amount: Decimal
    submission_count: int
    order_ids: List[int]
    items: List[OrderItemResponse]


class SessionOrdersResponse(BaseModel):
    session_id: int
    running_total: Decimal
    groups: List[OrderGroupResponse]


class StatusUpdateResultResponse(BaseModel):
    order_id: int
    ok: bool
    status: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None


class DepartmentViewResponse(BaseModel):
    department: str
    orders: List[OrderResponse]


# ========== Billing ==========

class ExtraChargeIn(BaseModel):
    description: str
    amount: Decimal
    is_percentage: bool = False


class DiscountIn(BaseModel):
    percent: Optional[Decimal] = None
    fixed_amount: Optional[Decimal] = None


class PaymentRequest(BaseModel):
    session_id: int
    payment_method: PaymentMethod
    extra_charges: List[ExtraChargeIn] = []
    discount: Optional[DiscountIn] = None
    received_amount: Optional[Decimal] = None
    notes: Optional[str] = None


class PaymentItemResponse(BaseModel):
    order_item_id: int
    menu_item_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: int
    payment_number: str
    session_id: int
    payment_method: str
    subtotal_amount: Decimal
    extra_charges_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    received_amount: Optional[Decimal] = None
    change_amount: Decimal
    created_at: Optional[datetime] = None
    items: List[PaymentItemResponse]


# ========== Bill splits ==========

class PersonShareIn(BaseModel):
    label: Optional[str] = None
    amount: Decimal


class SplitParams(BaseModel):
    number_of_people: Optional[int] = None
    people: Optional[List[PersonShareIn]] = None
    assignments: Optional[Dict[int, int]] = None
    number_of_payers: Optional[int] = None
    labels: Optional[List[str]] = None
    payment_id: Optional[int] = None


class SplitRequest(BaseModel):
    session_id: int
    strategy: SplitStrategy
    params: SplitParams = SplitParams()


class SharePaymentRequest(BaseModel):
    split_id: int
    share_index: int
    amount: Decimal

    @validator("share_index")
    def validate_share_index(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Share index cannot be negative")
        return v


class ShareResponse(BaseModel):
    index: int
    label: str
    amount: Decimal
    paid_amount: Decimal
    remaining: Decimal
    status: str
    item_ids: List[int] = []


class BillSplitResponse(BaseModel):
    id: int
    session_id: int
    payment_id: Optional[int] = None
    strategy: str
    total_amount: Decimal
    variance: Decimal
    shares: List[ShareResponse]
