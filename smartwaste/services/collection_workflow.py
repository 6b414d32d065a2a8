"""
Collection workflow
Turns requests into collections and applies collector progress to bins,
collectors and routes.

Completing a collection touches four documents (collection, bin, collector,
route). With USE_TRANSACTIONS the whole unit runs in a MongoDB transaction.
Without it every step is a single atomic update, each successful step
registers an undo, and a failure part-way replays the undos in reverse
before the error is surfaced. Counters only ever move through $inc.
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from smartwaste.config import settings
from smartwaste.database import get_database
from smartwaste.errors import (
    Conflict,
    Forbidden,
    InvalidInput,
    InvalidState,
    NotFound,
    Unavailable,
    WasteCollectionError,
    translate_store_errors,
)
from smartwaste.models.enums import CollectionKind, CollectionStatus, PaymentStatus, Role
from smartwaste.models.mongodb_models import CollectionDocument, RouteDocument
from smartwaste.services import bin_state, collection_rules, events
from smartwaste.services.capabilities import Principal, is_admin, is_premium, is_resident, require_owner
from smartwaste.services.events import Outcome
from smartwaste.services.fees import bulk_fee
from smartwaste.utils import naive_utc, optional_object_id, same_id, to_object_id, utcnow

logger = logging.getLogger(__name__)

Undo = Callable[[], Awaitable[Any]]


class CollectionWorkflow:
    """Collection requests, status progression and ratings"""

    def __init__(self, db=None, clock: Callable[[], datetime] = utcnow,
                 use_transactions: Optional[bool] = None):
        self.db = db if db is not None else get_database()
        if self.db is None:
            raise Unavailable("Database not available")
        self.clock = clock
        self.use_transactions = settings.use_transactions if use_transactions is None else use_transactions
        self.max_retries = settings.fill_update_max_retries

    async def _get(self, collection_id: Any) -> CollectionDocument:
        collection = await self.db.collections.find_one({"_id": to_object_id(collection_id, "Collection")})
        if not collection:
            raise NotFound("Collection not found")
        return collection

    @translate_store_errors
    async def create_request(
        self,
        principal: Principal,
        bin_id: Any,
        kind: Any = CollectionKind.REQUESTED,
        scheduled_at: Optional[datetime] = None,
        composition: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        route_id: Any = None
    ) -> Outcome[CollectionDocument]:
        """
        Create a collection request against a bin

        Bulk requests are limited to premium residents and carry a pending
        payment for the bulk fee.
        """
        try:
            kind = CollectionKind(kind)
        except ValueError:
            raise InvalidInput(f"Unknown collection kind: {kind}")

        bin_doc = await self.db.bins.find_one({"_id": to_object_id(bin_id, "Bin")})
        if not bin_doc:
            raise NotFound("Bin not found")

        if kind == CollectionKind.BULK and not is_premium(principal):
            raise Forbidden("Bulk collection is only available for premium users")

        route_oid = optional_object_id(route_id, "Route")
        if route_oid is not None:
            route = await self.db.routes.find_one({"_id": route_oid})
            if not route:
                raise NotFound("Route not found")
            if not any(same_id(entry.get("bin"), bin_doc["_id"]) for entry in route.get("bins") or []):
                raise InvalidInput("Bin is not part of the route")

        now = self.clock()
        collection: CollectionDocument = {
            "bin": bin_doc["_id"],
            "collector": bin_doc.get("assigned_collector"),
            "resident": to_object_id(principal.id, "User") if is_resident(principal) else None,
            "kind": kind.value,
            "status": CollectionStatus.ASSIGNED.value,
            "scheduled_at": naive_utc(scheduled_at) or now,
            "completed_at": None,
            "fill_level_before": None,
            "fill_level_after": 0,
            "waste_composition": composition or {},
            "description": description,
            "notes": None,
            "images": [],
            "rating": None,
            "feedback": None,
            "route": route_oid,
            "payment": None,
            "location": bin_doc.get("location"),
            "created_at": now,
            "updated_at": now,
        }
        if kind == CollectionKind.BULK:
            collection["payment"] = {
                "amount": bulk_fee(composition),
                "status": PaymentStatus.PENDING.value,
                "transaction_id": None,
                "method": None,
            }

        result = await self.db.collections.insert_one(collection)
        collection["_id"] = result.inserted_id
        logger.info(f"Created {kind.value} collection {result.inserted_id} for bin {bin_doc.get('bin_code')}")

        outcome = Outcome(result=collection)
        if collection["collector"] is not None:
            outcome.events.append(events.new_collection_request(
                collection["_id"],
                (bin_doc.get("location") or {}).get("name"),
                kind.value,
                collection["scheduled_at"],
                collection["collector"],
            ))
        else:
            logger.warning(f"Bin {bin_doc.get('bin_code')} has no assigned collector; request {result.inserted_id} is unassigned")
        return outcome

    async def schedule_for_route(self, route: RouteDocument) -> List[CollectionDocument]:
        """Create one scheduled collection per route bin, linked to the route"""
        now = self.clock()
        documents = []
        for entry in route.get("bins") or []:
            documents.append({
                "bin": entry["bin"],
                "collector": route["collector"],
                "resident": None,
                "kind": CollectionKind.SCHEDULED.value,
                "status": CollectionStatus.ASSIGNED.value,
                "scheduled_at": route["scheduled_at"],
                "completed_at": None,
                "fill_level_before": None,
                "fill_level_after": 0,
                "waste_composition": {},
                "images": [],
                "rating": None,
                "route": route["_id"],
                "payment": None,
                "created_at": now,
                "updated_at": now,
            })
        if documents:
            result = await self.db.collections.insert_many(documents)
            for document, inserted_id in zip(documents, result.inserted_ids):
                document["_id"] = inserted_id
        return documents

    @translate_store_errors
    async def get_collection(self, principal: Principal, collection_id: Any) -> CollectionDocument:
        collection = await self._get(collection_id)
        has_access = (
            is_admin(principal)
            or same_id(collection.get("collector"), principal.id)
            or same_id(collection.get("resident"), principal.id)
        )
        if not has_access:
            raise Forbidden("Access denied")
        return collection

    @translate_store_errors
    async def list_collections(
        self,
        principal: Principal,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[CollectionDocument], int]:
        query: Dict[str, Any] = {}
        if principal.role == Role.COLLECTOR:
            query["collector"] = to_object_id(principal.id, "Collector")
        elif is_resident(principal):
            query["resident"] = to_object_id(principal.id, "Resident")
        if status:
            query["status"] = status
        if kind:
            query["kind"] = kind

        cursor = self.db.collections.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        collections = await cursor.to_list(length=limit)
        total = await self.db.collections.count_documents(query)
        return collections, total

    @translate_store_errors
    async def advance_status(
        self,
        principal: Principal,
        collection_id: Any,
        new_status: Any,
        fields: Optional[Dict[str, Any]] = None
    ) -> Outcome[CollectionDocument]:
        """
        Move a collection along its state machine

        Args:
            principal: Must be the collection's collector
            collection_id: Collection id
            new_status: Target CollectionStatus
            fields: Optional waste_composition, notes, images, fill_level_after

        Returns:
            Updated collection plus collectionUpdated / binUpdated events
        """
        fields = fields or {}
        try:
            new_status = CollectionStatus(new_status)
        except ValueError:
            raise InvalidInput(f"Unknown collection status: {new_status}")
        fill_level_after = None
        if fields.get("fill_level_after") is not None:
            fill_level_after = collection_rules.validate_fill_level_after(fields["fill_level_after"])

        collection = await self._get(collection_id)
        require_owner(principal, collection.get("collector"), "collection")
        collection_rules.check_transition(collection["status"], new_status)

        now = self.clock()
        changes: Dict[str, Any] = {"status": new_status.value, "updated_at": now}
        for key in ("waste_composition", "notes", "images"):
            if fields.get(key):
                changes[key] = fields[key]
        if fill_level_after is not None:
            changes["fill_level_after"] = fill_level_after

        if new_status == CollectionStatus.COMPLETED:
            if fill_level_after is None:
                fill_level_after = float(collection.get("fill_level_after") or 0)
            changes["fill_level_after"] = fill_level_after
            changes["completed_at"] = now
            return await self._complete(collection, changes, fill_level_after, now)

        updated = await self._compare_and_set(collection, changes)
        return Outcome(
            result=updated,
            events=[events.collection_updated(updated["_id"], updated["status"], updated.get("completed_at"))]
        )

    async def _compare_and_set(self, collection: CollectionDocument, changes: Dict[str, Any],
                               session=None) -> CollectionDocument:
        kw = {"session": session} if session is not None else {}
        updated = await self.db.collections.find_one_and_update(
            {"_id": collection["_id"], "status": collection["status"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
            **kw
        )
        if not updated:
            raise Conflict("Collection was updated concurrently, please retry")
        return updated

    async def _complete(self, collection: CollectionDocument, changes: Dict[str, Any],
                        fill_level_after: float, now: datetime) -> Outcome[CollectionDocument]:
        if self.use_transactions:
            async with await self.db.client.start_session() as session:
                async with session.start_transaction():
                    updated, bin_doc = await self._apply_completion(
                        collection, changes, fill_level_after, now, session, undo=None
                    )
        else:
            undo: List[Undo] = []
            try:
                updated, bin_doc = await self._apply_completion(
                    collection, changes, fill_level_after, now, None, undo
                )
            except (PyMongoError, WasteCollectionError):
                await self._compensate(undo, collection["_id"])
                raise

        logger.info(f"Collection {updated['_id']} completed by collector {updated.get('collector')}")
        outcome = Outcome(
            result=updated,
            events=[events.collection_updated(updated["_id"], updated["status"], updated.get("completed_at"))]
        )
        if bin_doc is not None:
            outcome.events.append(events.bin_updated(bin_doc["_id"], bin_doc["fill_level"], bin_doc["status"]))
        return outcome

    async def _apply_completion(self, collection, changes, fill_level_after, now, session, undo):
        kw = {"session": session} if session is not None else {}

        def register(step: Undo):
            if undo is not None:
                undo.append(step)

        # Collection status first: the compare-and-set makes completion happen once
        updated = await self._compare_and_set(collection, changes, session)
        previous = {key: collection.get(key) for key in changes}
        register(lambda: self.db.collections.update_one(
            {"_id": collection["_id"]}, {"$set": previous}
        ))

        bin_doc = await self._collect_bin(collection["bin"], fill_level_after, now, kw, register)

        collector_id = collection.get("collector")
        await self.db.users.update_one(
            {"_id": collector_id}, {"$inc": {"stats.total_collections": 1}}, **kw
        )
        register(lambda: self.db.users.update_one(
            {"_id": collector_id}, {"$inc": {"stats.total_collections": -1}}
        ))

        route_id = collection.get("route")
        if route_id is not None:
            await self._record_route_progress(route_id, collection["bin"], kw, register)

        if bin_doc is not None:
            updated = await self.db.collections.find_one_and_update(
                {"_id": collection["_id"]},
                {"$set": {"fill_level_before": bin_doc["fill_level_before"]}},
                return_document=ReturnDocument.AFTER,
                **kw
            )
        return updated, bin_doc

    async def _collect_bin(self, bin_id, fill_level_after, now, kw, register) -> Optional[Dict[str, Any]]:
        """Empty the bin to fill_level_after; compare-and-set with bounded retry"""
        for _ in range(self.max_retries):
            bin_doc = await self.db.bins.find_one({"_id": bin_id}, **kw)
            if not bin_doc:
                logger.warning(f"Bin {bin_id} no longer exists; skipping bin update")
                return None

            before = float(bin_doc.get("fill_level") or 0)
            status = bin_state.next_status(bin_doc.get("status"), fill_level_after)
            result = await self.db.bins.update_one(
                {"_id": bin_id, "fill_level": bin_doc.get("fill_level"), "status": bin_doc.get("status")},
                {
                    "$set": {
                        "fill_level": fill_level_after,
                        "status": status.value,
                        "last_collected_at": now,
                        "last_updated": now,
                        "updated_at": now,
                    },
                    "$inc": {"stats.total_collections": 1, "stats.collected_fill_sum": before},
                },
                **kw
            )
            if result.matched_count:
                restore = {
                    "fill_level": bin_doc.get("fill_level"),
                    "status": bin_doc.get("status"),
                    "last_collected_at": bin_doc.get("last_collected_at"),
                }
                register(lambda: self.db.bins.update_one(
                    {"_id": bin_id},
                    {"$set": restore, "$inc": {"stats.total_collections": -1, "stats.collected_fill_sum": -before}}
                ))
                return {
                    "_id": bin_id,
                    "fill_level": fill_level_after,
                    "status": status.value,
                    "fill_level_before": before,
                }
        raise Conflict("Bin was updated concurrently, please retry")

    async def _record_route_progress(self, route_id, bin_id, kw, register):
        added = await self.db.routes.update_one(
            {"_id": route_id, "bins.bin": bin_id, "completed_bins": {"$ne": bin_id}},
            {"$push": {"completed_bins": bin_id}},
            **kw
        )
        if added.modified_count:
            register(lambda: self.db.routes.update_one(
                {"_id": route_id}, {"$pull": {"completed_bins": bin_id}}
            ))

        await self.db.routes.update_one(
            {"_id": route_id}, {"$inc": {"stats.total_collections": 1}}, **kw
        )
        register(lambda: self.db.routes.update_one(
            {"_id": route_id}, {"$inc": {"stats.total_collections": -1}}
        ))

    async def _compensate(self, undo: List[Undo], collection_id: Any):
        logger.warning(f"Rolling back {len(undo)} completion step(s) for collection {collection_id}")
        for step in reversed(undo):
            try:
                await step()
            except PyMongoError as e:
                logger.error(f"Compensation step failed for collection {collection_id}: {e}", exc_info=True)

    @translate_store_errors
    async def rate(
        self,
        principal: Principal,
        collection_id: Any,
        rating: Any,
        feedback: Optional[str] = None
    ) -> CollectionDocument:
        """
        Rate a completed collection and refresh the collector's average

        A repeated rating overwrites the previous one. The average is
        recomputed from every rated completed collection of the collector.
        """
        collection = await self._get(collection_id)
        require_owner(principal, collection.get("resident"), "collection")
        rating = collection_rules.validate_rating(rating)
        if collection.get("status") != CollectionStatus.COMPLETED.value:
            raise InvalidState("Only completed collections can be rated")

        changes: Dict[str, Any] = {"rating": rating, "rated_at": self.clock(), "updated_at": self.clock()}
        if feedback:
            changes["feedback"] = feedback
        updated = await self.db.collections.find_one_and_update(
            {"_id": collection["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER
        )

        if collection.get("collector") is not None:
            await self.refresh_collector_rating(collection["collector"])
        return updated

    @translate_store_errors
    async def refresh_collector_rating(self, collector_id: Any) -> Optional[float]:
        rated = await self.db.collections.find({
            "collector": collector_id,
            "status": CollectionStatus.COMPLETED.value,
            "rating": {"$exists": True, "$ne": None},
        }).to_list(length=None)

        average = sum(c["rating"] for c in rated) / len(rated) if rated else None
        await self.db.users.update_one(
            {"_id": collector_id},
            {"$set": {"stats.average_rating": average, "stats.rated_collections": len(rated)}}
        )
        return average
