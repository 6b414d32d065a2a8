"""
Bin service: persistence-side operations on bins
"""
import base64
import io
import json
import logging
import secrets
import string
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import qrcode
from pymongo import ReturnDocument

from smartwaste.config import settings
from smartwaste.database import get_database
from smartwaste.errors import Conflict, InvalidInput, InvalidState, NotFound, Unavailable, translate_store_errors
from smartwaste.models.enums import BinStatus, Role
from smartwaste.models.mongodb_models import BinDocument
from smartwaste.services import bin_state, events, geo
from smartwaste.services.capabilities import Principal, is_resident, require_role
from smartwaste.services.events import Outcome
from smartwaste.utils import to_object_id, utcnow

logger = logging.getLogger(__name__)

BASE36 = string.digits + string.ascii_lowercase


def generate_bin_code() -> str:
    suffix = "".join(secrets.choice(BASE36) for _ in range(9))
    return f"BIN-{int(time.time() * 1000)}-{suffix}"


def generate_qr_code(data: str) -> str:
    """Render data as a PNG QR code and return it as a data URL"""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=8,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{encoded}"


class BinService:
    """Create, query and mutate bins"""

    def __init__(self, db=None, clock: Callable[[], datetime] = utcnow):
        self.db = db if db is not None else get_database()
        if self.db is None:
            raise Unavailable("Database not available")
        self.clock = clock
        self.max_retries = settings.fill_update_max_retries

    async def _get(self, bin_id: Any) -> BinDocument:
        bin_doc = await self.db.bins.find_one({"_id": to_object_id(bin_id, "Bin")})
        if not bin_doc:
            raise NotFound("Bin not found")
        return bin_doc

    @translate_store_errors
    async def create_bin(self, principal: Principal, data: Dict[str, Any]) -> BinDocument:
        require_role(principal, Role.ADMIN)
        now = self.clock()
        bin_code = generate_bin_code()
        scan_token = secrets.token_hex(16)
        qr_data = json.dumps({
            "binCode": bin_code,
            "scanToken": scan_token,
            "location": data["location"]["name"],
            "category": data.get("waste_category", "general"),
        })

        bin_doc: BinDocument = {
            "bin_code": bin_code,
            "scan_token": scan_token,
            "qr_code": generate_qr_code(qr_data),
            "location": data["location"],
            "waste_category": data.get("waste_category", "general"),
            "capacity_percent": data.get("capacity_percent", bin_state.DEFAULT_CAPACITY),
            "fill_level": 0,
            "status": BinStatus.EMPTY.value,
            "collection_frequency_days": data.get(
                "collection_frequency_days", bin_state.DEFAULT_COLLECTION_FREQUENCY_DAYS
            ),
            "last_collected_at": None,
            "last_updated": now,
            "assigned_collector": None,
            "active": True,
            "maintenance_history": [],
            "stats": {"total_collections": 0, "collected_fill_sum": 0},
            "created_at": now,
            "updated_at": now,
        }
        result = await self.db.bins.insert_one(bin_doc)
        bin_doc["_id"] = result.inserted_id
        logger.info(f"Created bin {bin_code} at {data['location']['name']}")
        return bin_doc

    @translate_store_errors
    async def get_bin(self, bin_id: Any) -> BinDocument:
        return await self._get(bin_id)

    @translate_store_errors
    async def get_bin_by_scan_token(self, scan_token: str) -> BinDocument:
        bin_doc = await self.db.bins.find_one({"scan_token": scan_token})
        if not bin_doc:
            raise NotFound("Bin not found")
        return bin_doc

    @translate_store_errors
    async def list_bins(
        self,
        principal: Principal,
        status: Optional[str] = None,
        category: Optional[str] = None,
        active: Optional[bool] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[BinDocument], int]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if category:
            query["waste_category"] = category
        if active is not None:
            query["active"] = active
        if principal.role == Role.COLLECTOR:
            query["assigned_collector"] = to_object_id(principal.id, "Collector")

        cursor = self.db.bins.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        bins = await cursor.to_list(length=limit)
        total = await self.db.bins.count_documents(query)
        return bins, total

    @translate_store_errors
    async def update_bin(self, principal: Principal, bin_id: Any, data: Dict[str, Any]) -> BinDocument:
        require_role(principal, Role.ADMIN)
        updates: Dict[str, Any] = {}
        for key, value in (data.get("location") or {}).items():
            if value is not None:
                updates[f"location.{key}"] = value
        for key in ("waste_category", "capacity_percent", "collection_frequency_days", "active"):
            if data.get(key) is not None:
                updates[key] = data[key]

        if not updates:
            return await self._get(bin_id)

        updates["updated_at"] = self.clock()
        bin_doc = await self.db.bins.find_one_and_update(
            {"_id": to_object_id(bin_id, "Bin")},
            {"$set": updates},
            return_document=ReturnDocument.AFTER
        )
        if not bin_doc:
            raise NotFound("Bin not found")
        return bin_doc

    @translate_store_errors
    async def delete_bin(self, principal: Principal, bin_id: Any):
        require_role(principal, Role.ADMIN)
        result = await self.db.bins.delete_one({"_id": to_object_id(bin_id, "Bin")})
        if result.deleted_count == 0:
            raise NotFound("Bin not found")
        logger.info(f"Deleted bin {bin_id}")

    @translate_store_errors
    async def set_fill_level(self, principal: Principal, bin_id: Any, delta: float) -> Outcome[BinDocument]:
        """
        Record a disposal: add delta percentage points to the bin's fill level

        The write is a compare-and-set on (fill_level, status) so that
        concurrent disposals against the same bin are never lost.
        """
        if delta is None or delta <= 0:
            raise InvalidInput("Fill delta must be positive")
        resident_id = to_object_id(principal.id, "User") if is_resident(principal) else None

        for attempt in range(self.max_retries):
            bin_doc = await self._get(bin_id)
            if not bin_doc.get("active", True):
                raise InvalidState("Bin is not active")

            fill_level, status = bin_state.apply_fill(bin_doc, delta)
            now = self.clock()
            updated = await self.db.bins.find_one_and_update(
                {
                    "_id": bin_doc["_id"],
                    "fill_level": bin_doc.get("fill_level"),
                    "status": bin_doc.get("status"),
                },
                {"$set": {
                    "fill_level": fill_level,
                    "status": status.value,
                    "last_updated": now,
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER
            )
            if updated:
                break
            logger.debug(f"Fill update on bin {bin_id} lost a race (attempt {attempt + 1})")
        else:
            raise Conflict("Bin was updated concurrently, please retry")

        if resident_id is not None:
            await self.db.users.update_one(
                {"_id": resident_id},
                {
                    "$inc": {"stats.total_disposals": 1},
                    "$set": {"stats.last_disposal_at": now},
                }
            )

        return Outcome(
            result=updated,
            events=[events.bin_updated(updated["_id"], updated["fill_level"], updated["status"])]
        )

    @translate_store_errors
    async def assign_collector(self, principal: Principal, bin_id: Any, collector_id: Any) -> BinDocument:
        require_role(principal, Role.ADMIN)
        collector_oid = to_object_id(collector_id, "Collector")
        collector = await self.db.users.find_one({"_id": collector_oid, "role": Role.COLLECTOR.value})
        if not collector:
            raise InvalidInput("Invalid collector")

        bin_doc = await self.db.bins.find_one_and_update(
            {"_id": to_object_id(bin_id, "Bin")},
            {"$set": {"assigned_collector": collector_oid, "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER
        )
        if not bin_doc:
            raise NotFound("Bin not found")
        logger.info(f"Assigned collector {collector_id} to bin {bin_doc.get('bin_code')}")
        return bin_doc

    @translate_store_errors
    async def record_maintenance(
        self,
        principal: Principal,
        bin_id: Any,
        entry_type: str,
        description: Optional[str] = None,
        set_maintenance: bool = False
    ) -> Outcome[BinDocument]:
        """Append a maintenance history entry, optionally taking the bin out of service"""
        require_role(principal, Role.ADMIN, Role.COLLECTOR)
        now = self.clock()
        entry = bin_state.maintenance_entry(
            entry_type, description, to_object_id(principal.id, "User"), now
        )

        update: Dict[str, Any] = {"$push": {"maintenance_history": entry}, "$set": {"updated_at": now}}
        if set_maintenance:
            update["$set"]["status"] = BinStatus.MAINTENANCE.value
            update["$set"]["last_updated"] = now

        bin_doc = await self.db.bins.find_one_and_update(
            {"_id": to_object_id(bin_id, "Bin")},
            update,
            return_document=ReturnDocument.AFTER
        )
        if not bin_doc:
            raise NotFound("Bin not found")

        outcome = Outcome(result=bin_doc)
        if set_maintenance:
            outcome.events.append(events.bin_updated(bin_doc["_id"], bin_doc.get("fill_level", 0), bin_doc["status"]))
        return outcome

    @translate_store_errors
    async def clear_maintenance(self, principal: Principal, bin_id: Any) -> Outcome[BinDocument]:
        require_role(principal, Role.ADMIN)
        for _ in range(self.max_retries):
            bin_doc = await self._get(bin_id)
            if bin_doc.get("status") != BinStatus.MAINTENANCE.value:
                raise InvalidState("Bin is not under maintenance")

            status = bin_state.derive_status(float(bin_doc.get("fill_level") or 0))
            now = self.clock()
            updated = await self.db.bins.find_one_and_update(
                {
                    "_id": bin_doc["_id"],
                    "status": BinStatus.MAINTENANCE.value,
                    "fill_level": bin_doc.get("fill_level"),
                },
                {"$set": {"status": status.value, "last_updated": now, "updated_at": now}},
                return_document=ReturnDocument.AFTER
            )
            if updated:
                return Outcome(
                    result=updated,
                    events=[events.bin_updated(updated["_id"], updated.get("fill_level", 0), updated["status"])]
                )
        raise Conflict("Bin was updated concurrently, please retry")

    @translate_store_errors
    async def bins_needing_collection(self, principal: Principal, now: Optional[datetime] = None) -> List[BinDocument]:
        now = now or self.clock()
        query: Dict[str, Any] = {"active": True}
        if principal.role == Role.COLLECTOR:
            query["assigned_collector"] = to_object_id(principal.id, "Collector")
        active_bins = await self.db.bins.find(query).to_list(length=None)
        return [bin_doc for bin_doc in active_bins if bin_state.needs_collection(bin_doc, now)]

    @translate_store_errors
    async def nearby(self, latitude: float, longitude: float, radius_km: Optional[float] = None) -> List[Dict[str, Any]]:
        """Active bins within radius_km of the point, nearest first"""
        if radius_km is None:
            radius_km = settings.nearby_default_radius_km
        geo.validate_point((latitude, longitude))
        if radius_km < 0:
            raise InvalidInput("Radius must be non-negative")

        candidates = await self.db.bins.find({"active": True}).to_list(length=None)
        return geo.nearby((latitude, longitude), radius_km, candidates, limit=settings.nearby_max_results)
