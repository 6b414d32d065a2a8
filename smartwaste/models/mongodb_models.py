"""
MongoDB document models (for reference and type hints)
These represent the structure of documents stored in MongoDB collections
"""
from typing import Optional, List, Dict
from datetime import datetime
from bson import ObjectId
from typing_extensions import TypedDict


class Coordinates(TypedDict):
    latitude: float
    longitude: float


class Location(TypedDict, total=False):
    name: str
    address: Optional[str]
    landmark: Optional[str]
    coordinates: Coordinates


class MaintenanceEntry(TypedDict):
    date: datetime
    type: str
    description: Optional[str]
    performed_by: Optional[ObjectId]


class BinStats(TypedDict, total=False):
    total_collections: int
    collected_fill_sum: float  # sum of fill levels observed at collection time


class BinDocument(TypedDict, total=False):
    """bins collection"""
    _id: ObjectId
    bin_code: str
    scan_token: str
    qr_code: str  # data:image/png;base64,...
    location: Location
    waste_category: str  # "general" | "recyclable" | "organic" | "hazardous"
    capacity_percent: int
    fill_level: float
    status: str  # "empty" | "partial" | "full" | "overflowing" | "maintenance"
    collection_frequency_days: int
    last_collected_at: Optional[datetime]
    last_updated: datetime
    assigned_collector: Optional[ObjectId]
    active: bool
    maintenance_history: List[MaintenanceEntry]
    stats: BinStats
    created_at: datetime
    updated_at: datetime


class WasteAmount(TypedDict, total=False):
    weight: float
    volume: float


class CollectionPayment(TypedDict, total=False):
    amount: float
    status: str  # PaymentStatus values
    transaction_id: Optional[str]
    method: Optional[str]


class CollectionDocument(TypedDict, total=False):
    """collections collection"""
    _id: ObjectId
    bin: ObjectId
    collector: Optional[ObjectId]
    resident: Optional[ObjectId]
    kind: str  # "scheduled" | "requested" | "emergency" | "bulk"
    status: str  # "assigned" | "in_progress" | "completed" | "cancelled"
    scheduled_at: datetime
    completed_at: Optional[datetime]
    fill_level_before: Optional[float]
    fill_level_after: float
    waste_composition: Dict[str, WasteAmount]
    description: Optional[str]
    notes: Optional[str]
    images: List[str]
    rating: Optional[int]
    feedback: Optional[str]
    rated_at: Optional[datetime]
    route: Optional[ObjectId]
    payment: Optional[CollectionPayment]
    location: Optional[Location]
    created_at: datetime
    updated_at: datetime


class RouteBinEntry(TypedDict, total=False):
    bin: ObjectId
    order: int
    estimated_minutes: Optional[int]


class RouteStats(TypedDict, total=False):
    total_collections: int
    total_weight: float
    total_volume: float
    average_time_per_bin: float


class Recurrence(TypedDict, total=False):
    frequency: str  # "daily" | "weekly" | "bi-weekly" | "monthly"
    days: List[int]  # 0-6
    interval: Optional[int]


class RouteDocument(TypedDict, total=False):
    """routes collection"""
    _id: ObjectId
    name: str
    description: Optional[str]
    collector: ObjectId
    bins: List[RouteBinEntry]
    status: str  # "active" | "in_progress" | "completed" | "paused" | "cancelled"
    scheduled_at: datetime
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    estimated_duration_min: Optional[int]
    actual_duration_min: Optional[int]
    completed_bins: List[ObjectId]
    stats: RouteStats
    notes: Optional[str]
    is_recurring: bool
    recurrence: Optional[Recurrence]
    created_at: datetime
    updated_at: datetime


class UserStats(TypedDict, total=False):
    total_disposals: int
    last_disposal_at: Optional[datetime]
    total_collections: int
    average_rating: Optional[float]
    rated_collections: int


class UserDocument(TypedDict, total=False):
    """users collection (owned by the identity service)"""
    _id: ObjectId
    name: str
    email: str
    role: str  # "resident" | "premium_resident" | "collector" | "admin"
    is_premium: bool
    premium_expiry: Optional[datetime]
    is_active: bool
    stats: UserStats
    created_at: datetime


class Discount(TypedDict, total=False):
    amount: float
    type: str  # "percentage" | "fixed"
    code: Optional[str]


class PaymentDocument(TypedDict, total=False):
    """payments collection"""
    _id: ObjectId
    user: ObjectId
    type: str  # "subscription" | "bulk_collection" | "fine" | "premium_feature"
    amount: float
    currency: str
    status: str
    payment_method: str
    transaction_id: Optional[str]
    description: Optional[str]
    collection: Optional[ObjectId]
    tax_amount: float
    discount: Optional[Discount]
    created_at: datetime
    updated_at: datetime
