"""
Pydantic 模式定义
用于 API 请求/响应验证
日期范围、人数、房间数的业务校验在服务层完成，以便直接调用服务时同样生效
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field, ConfigDict
from booking_engine.models.ledger import BookingStatus, PaymentStatus


# ============== 可售查询 Schemas ==============

class AvailabilitySearch(BaseModel):
    check_in_date: date
    check_out_date: date
    adults: int = 1
    children: int = 0
    rooms: int = 1
    property_id: Optional[str] = None
    room_id: Optional[str] = None
    rate_plan_id: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    room_type: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    amenities: List[str] = Field(default_factory=list)
    sort_by: Literal["price", "rating", "name"] = "price"
    sort_order: Literal["asc", "desc"] = "asc"


class PropertySummary(BaseModel):
    id: str
    name: str
    star_rating: Optional[int] = None
    city: Optional[str] = None
    country: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class RoomSummary(BaseModel):
    id: str
    name: str
    room_type: str
    max_occupancy: int
    max_adults: int
    max_children: int
    amenities: Optional[List[str]] = None
    model_config = ConfigDict(from_attributes=True)


class AvailabilityResult(BaseModel):
    property: PropertySummary
    room: RoomSummary
    rate_plan_id: str
    rate_plan_name: str
    plan_type: str
    min_available_rooms: int
    avg_price: Decimal
    min_price: Decimal
    max_price: Decimal
    currency: str
    nights: int
    rooms: int
    total_price: Decimal
    min_stay: int
    closed_to_arrival: bool
    closed_to_departure: bool


# ============== 预订 Schemas ==============

class GuestInfo(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    nationality: Optional[str] = Field(None, max_length=100)


class BookingCreate(BaseModel):
    property_id: str
    room_id: str
    rate_plan_id: str
    check_in_date: date
    check_out_date: date
    adults: int = 1
    children: int = 0
    rooms: int = 1
    guest_id: Optional[str] = None
    guest_info: Optional[GuestInfo] = None
    special_requests: Optional[str] = None
    channel: str = Field(default="direct", max_length=100)
    channel_booking_id: Optional[str] = Field(None, max_length=255)


class BookingUpdate(BaseModel):
    """只允许修改不影响库存占用的字段"""
    special_requests: Optional[str] = None
    guest_info: Optional[Dict[str, Any]] = None
    payment_status: Optional[PaymentStatus] = None
    payment_method: Optional[str] = Field(None, max_length=100)
    channel_booking_id: Optional[str] = Field(None, max_length=255)
    model_config = ConfigDict(extra="forbid")


class BookingCancel(BaseModel):
    reason: Optional[str] = None


class BookingResponse(BaseModel):
    id: str
    tenant_id: str
    property_id: str
    room_id: str
    rate_plan_id: str
    guest_id: Optional[str]
    booking_reference: str
    channel: str
    channel_booking_id: Optional[str]
    status: BookingStatus
    check_in_date: date
    check_out_date: date
    total_nights: int
    rooms: int
    adults: int
    children: int
    base_price: Decimal
    taxes: Decimal
    fees: Decimal
    total_amount: Decimal
    currency: str
    payment_status: Optional[str]
    payment_method: Optional[str]
    guest_info: Optional[Dict[str, Any]]
    special_requests: Optional[str]
    cancel_reason: Optional[str]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class BookingListResponse(BaseModel):
    items: List[BookingResponse]
    total: int
    page: int
    limit: int


class ChannelBreakdown(BaseModel):
    channel: str
    booking_count: int
    revenue: Decimal


class BookingStats(BaseModel):
    total_bookings: int
    confirmed_bookings: int
    cancelled_bookings: int
    completed_bookings: int
    recent_bookings: int
    total_revenue: Decimal
    avg_booking_value: Decimal
    channel_breakdown: List[ChannelBreakdown]


# ============== 库存 Schemas ==============

class InventoryFields(BaseModel):
    """库存可写字段，未提供（None）的字段保持不变"""
    available_rooms: Optional[int] = Field(None, ge=0)
    total_rooms: Optional[int] = Field(None, ge=0)
    price: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    min_stay: Optional[int] = Field(None, ge=1)
    max_stay: Optional[int] = Field(None, ge=1)
    closed_to_arrival: Optional[bool] = None
    closed_to_departure: Optional[bool] = None
    stop_sell: Optional[bool] = None
    restrictions: Optional[Dict[str, Any]] = None


class InventoryItem(InventoryFields):
    """批量更新条目，以 (room_id, rate_plan_id, date) 为键"""
    room_id: str = Field(..., min_length=1)
    rate_plan_id: str = Field(..., min_length=1)
    date: date


class InventoryRecordUpdate(InventoryFields):
    model_config = ConfigDict(extra="forbid")


class BulkInventoryRequest(BaseModel):
    # 逐条校验，单条格式错误不影响其他条目
    updates: List[Dict[str, Any]]


class BulkItemResult(BaseModel):
    index: int
    room_id: Optional[str] = None
    rate_plan_id: Optional[str] = None
    date: Optional[str] = None
    success: bool
    action: Optional[Literal["created", "updated"]] = None
    inventory_id: Optional[str] = None
    error: Optional[str] = None


class BulkInventoryResponse(BaseModel):
    total_updates: int
    successful: int
    failed: int
    results: List[BulkItemResult]


class InventoryRecordResponse(BaseModel):
    id: str
    tenant_id: str
    property_id: str
    room_id: str
    rate_plan_id: str
    date: date
    available_rooms: int
    total_rooms: int
    price: Decimal
    currency: Optional[str]
    min_stay: Optional[int]
    max_stay: Optional[int]
    closed_to_arrival: bool
    closed_to_departure: bool
    stop_sell: bool
    restrictions: Optional[Dict[str, Any]]
    updated_at: Optional[datetime]
    model_config = ConfigDict(from_attributes=True)


class InventoryCalendarResponse(BaseModel):
    items: List[InventoryRecordResponse]
    total: int
    page: int
    limit: int
