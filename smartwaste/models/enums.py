"""
Closed value sets shared by documents, schemas and services
"""
from enum import Enum


class Role(str, Enum):
    RESIDENT = "resident"
    PREMIUM_RESIDENT = "premium_resident"
    COLLECTOR = "collector"
    ADMIN = "admin"


class WasteCategory(str, Enum):
    GENERAL = "general"
    RECYCLABLE = "recyclable"
    ORGANIC = "organic"
    HAZARDOUS = "hazardous"


class BinStatus(str, Enum):
    EMPTY = "empty"
    PARTIAL = "partial"
    FULL = "full"
    OVERFLOWING = "overflowing"
    MAINTENANCE = "maintenance"


class CollectionKind(str, Enum):
    SCHEDULED = "scheduled"
    REQUESTED = "requested"
    EMERGENCY = "emergency"
    BULK = "bulk"


class CollectionStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RouteStatus(str, Enum):
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class RecurrenceFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"


class PaymentType(str, Enum):
    SUBSCRIPTION = "subscription"
    BULK_COLLECTION = "bulk_collection"
    FINE = "fine"
    PREMIUM_FEATURE = "premium_feature"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    DIGITAL_WALLET = "digital_wallet"
    CASH = "cash"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"
