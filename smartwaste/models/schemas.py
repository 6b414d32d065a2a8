"""
Pydantic schemas for API request/response validation
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional, List, Dict
from datetime import datetime
from smartwaste.models.enums import (
    BinStatus,
    CollectionKind,
    CollectionStatus,
    DiscountType,
    NotificationType,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    RecurrenceFrequency,
    RouteStatus,
    WasteCategory,
)


# Shared Schemas
class RequestModel(BaseModel):
    """Request bodies store enum members as their plain values"""
    model_config = ConfigDict(use_enum_values=True)


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Location(BaseModel):
    name: str = Field(min_length=1)
    address: Optional[str] = None
    landmark: Optional[str] = None
    coordinates: Coordinates


class LocationUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = None
    landmark: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class WasteAmount(RequestModel):
    weight: Optional[float] = Field(None, ge=0)
    volume: Optional[float] = Field(None, ge=0)


class WasteComposition(RequestModel):
    general: Optional[WasteAmount] = None
    recyclable: Optional[WasteAmount] = None
    organic: Optional[WasteAmount] = None
    hazardous: Optional[WasteAmount] = None


class Pagination(BaseModel):
    current: int
    pages: int
    total: int


# Bin Schemas
class BinCreate(RequestModel):
    location: Location
    waste_category: WasteCategory = WasteCategory.GENERAL
    capacity_percent: int = Field(100, ge=1, le=100)
    collection_frequency_days: int = Field(7, ge=1)


class BinUpdate(RequestModel):
    location: Optional[LocationUpdate] = None
    waste_category: Optional[WasteCategory] = None
    capacity_percent: Optional[int] = Field(None, ge=1, le=100)
    collection_frequency_days: Optional[int] = Field(None, ge=1)
    active: Optional[bool] = None


class FillUpdate(RequestModel):
    """Disposal event; fill_level is the percentage points added"""
    fill_level: float


class AssignCollector(RequestModel):
    collector_id: str


class MaintenanceCreate(RequestModel):
    type: str = Field(min_length=1)
    description: Optional[str] = None
    set_maintenance: bool = False


class MaintenanceEntry(BaseModel):
    date: datetime
    type: str
    description: Optional[str] = None
    performed_by: Optional[str] = None


class BinStats(BaseModel):
    total_collections: int = 0
    average_fill_level: float = 0


class Bin(BaseModel):
    id: str
    bin_code: str
    scan_token: Optional[str] = None
    qr_code: Optional[str] = None
    location: Location
    waste_category: WasteCategory
    capacity_percent: int = 100
    fill_level: float = 0
    status: BinStatus
    collection_frequency_days: int = 7
    last_collected_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    assigned_collector: Optional[str] = None
    active: bool = True
    maintenance_history: List[MaintenanceEntry] = Field(default_factory=list)
    stats: BinStats = Field(default_factory=BinStats)
    needs_collection: Optional[bool] = None
    distance: Optional[float] = None  # km, nearby queries only


class BinsResponse(BaseModel):
    bins: List[Bin]
    pagination: Pagination


class NearbyBinsResponse(BaseModel):
    bins: List[Bin]
    user_location: Coordinates
    radius: float


class BinListResponse(BaseModel):
    bins: List[Bin]
    count: int


# Collection Schemas
class CollectionCreate(RequestModel):
    bin_id: str
    kind: CollectionKind = CollectionKind.REQUESTED
    scheduled_at: Optional[datetime] = None
    description: Optional[str] = None
    waste_composition: Optional[WasteComposition] = None
    route_id: Optional[str] = None


class CollectionStatusUpdate(RequestModel):
    status: CollectionStatus
    waste_composition: Optional[WasteComposition] = None
    notes: Optional[str] = None
    images: Optional[List[str]] = None
    fill_level_after: Optional[float] = None


class CollectionRating(RequestModel):
    rating: int
    feedback: Optional[str] = None


class CollectionPayment(BaseModel):
    amount: float
    status: PaymentStatus
    transaction_id: Optional[str] = None
    method: Optional[str] = None


class Collection(BaseModel):
    id: str
    bin: str
    collector: Optional[str] = None
    resident: Optional[str] = None
    kind: CollectionKind
    status: CollectionStatus
    scheduled_at: datetime
    completed_at: Optional[datetime] = None
    fill_level_before: Optional[float] = None
    fill_level_after: float = 0
    waste_composition: Optional[Dict[str, Any]] = None
    total_weight: float = 0
    total_volume: float = 0
    description: Optional[str] = None
    notes: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    rating: Optional[int] = None
    feedback: Optional[str] = None
    route: Optional[str] = None
    payment: Optional[CollectionPayment] = None
    is_overdue: bool = False
    created_at: Optional[datetime] = None


class CollectionsResponse(BaseModel):
    collections: List[Collection]
    pagination: Pagination


# Route Schemas
class RouteBinEntry(RequestModel):
    bin: str
    order: Optional[int] = None
    estimated_minutes: Optional[int] = Field(None, ge=0)


class Recurrence(RequestModel):
    frequency: RecurrenceFrequency
    days: List[int] = Field(default_factory=list)
    interval: Optional[int] = Field(None, ge=1)


class RouteCreate(RequestModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    collector: str
    bins: List[RouteBinEntry]
    scheduled_at: datetime
    estimated_duration_min: Optional[int] = Field(None, ge=0)
    is_recurring: bool = False
    recurrence: Optional[Recurrence] = None
    generate_collections: bool = False


class RouteUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    notes: Optional[str] = None
    bins: Optional[List[RouteBinEntry]] = None


class RouteStats(BaseModel):
    total_collections: int = 0
    total_weight: float = 0
    total_volume: float = 0
    average_time_per_bin: float = 0


class Route(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    collector: str
    bins: List[RouteBinEntry]
    status: RouteStatus
    scheduled_at: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    estimated_duration_min: Optional[int] = None
    actual_duration_min: Optional[int] = None
    completed_bins: List[str] = Field(default_factory=list)
    stats: RouteStats = Field(default_factory=RouteStats)
    notes: Optional[str] = None
    is_recurring: bool = False
    recurrence: Optional[Recurrence] = None
    progress: int = 0
    remaining_bins: List[RouteBinEntry] = Field(default_factory=list)
    estimated_completion: Optional[datetime] = None
    is_overdue: bool = False


class RoutesResponse(BaseModel):
    routes: List[Route]
    pagination: Pagination


# Payment Schemas
class Discount(RequestModel):
    amount: float = Field(ge=0)
    type: DiscountType
    code: Optional[str] = None


class PaymentCreate(RequestModel):
    type: PaymentType
    amount: float = Field(ge=0)
    payment_method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    collection_id: Optional[str] = None
    description: Optional[str] = None
    tax_amount: float = Field(0, ge=0)
    discount: Optional[Discount] = None


class PaymentStatusUpdate(RequestModel):
    status: PaymentStatus
    transaction_id: Optional[str] = None


class Payment(BaseModel):
    id: str
    user: str
    type: PaymentType
    amount: float
    currency: str = "USD"
    status: PaymentStatus
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    description: Optional[str] = None
    collection: Optional[str] = None
    tax_amount: float = 0
    discount: Optional[Discount] = None
    net_amount: float = 0
    is_refundable: bool = False
    created_at: Optional[datetime] = None


class PaymentsResponse(BaseModel):
    payments: List[Payment]
    pagination: Pagination


# Admin Schemas
class NotificationCreate(RequestModel):
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    type: NotificationType = NotificationType.INFO
