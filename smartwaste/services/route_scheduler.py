"""
Route scheduler: building, running and closing collector routes
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument

from smartwaste.database import get_database
from smartwaste.errors import Conflict, InvalidInput, InvalidState, NotFound, Unavailable, translate_store_errors
from smartwaste.models.enums import Role, RouteStatus
from smartwaste.models.mongodb_models import RouteBinEntry, RouteDocument
from smartwaste.services import events, route_rules
from smartwaste.services.capabilities import Principal, require_owner, require_owner_or_admin, require_role
from smartwaste.services.collection_workflow import CollectionWorkflow
from smartwaste.services.events import Outcome
from smartwaste.utils import naive_utc, to_object_id, utcnow

logger = logging.getLogger(__name__)


class RouteScheduler:
    """Route lifecycle and progress"""

    def __init__(self, db=None, clock: Callable[[], datetime] = utcnow):
        self.db = db if db is not None else get_database()
        if self.db is None:
            raise Unavailable("Database not available")
        self.clock = clock

    async def _get(self, route_id: Any) -> RouteDocument:
        route = await self.db.routes.find_one({"_id": to_object_id(route_id, "Route")})
        if not route:
            raise NotFound("Route not found")
        return route

    async def _validated_bins(self, entries: List[Dict[str, Any]]) -> List[RouteBinEntry]:
        """Resolve bin ids, check they exist and order them by sequence"""
        if not entries:
            return []
        bins: List[RouteBinEntry] = []
        for index, entry in enumerate(entries):
            bin_id = entry.get("bin")
            if not bin_id or not ObjectId.is_valid(bin_id):
                raise InvalidInput(f"Invalid route bin id: {bin_id}")
            bin_oid = to_object_id(bin_id, "Bin")
            order = entry.get("order")
            bins.append({
                "bin": bin_oid,
                "order": index + 1 if order is None else order,
                "estimated_minutes": entry.get("estimated_minutes"),
            })

        unique_ids = list({entry["bin"] for entry in bins})
        found = await self.db.bins.count_documents({"_id": {"$in": unique_ids}})
        if found != len(unique_ids) or len(unique_ids) != len(bins):
            raise InvalidInput("Some bins not found or listed twice")
        return sorted(bins, key=lambda entry: entry["order"])

    @translate_store_errors
    async def create_route(self, principal: Principal, data: Dict[str, Any]) -> RouteDocument:
        require_role(principal, Role.ADMIN)
        collector_oid = to_object_id(data["collector"], "Collector")
        collector = await self.db.users.find_one({"_id": collector_oid, "role": Role.COLLECTOR.value})
        if not collector:
            raise InvalidInput("Invalid collector")

        bins = await self._validated_bins(data.get("bins") or [])
        estimated = data.get("estimated_duration_min")
        now = self.clock()
        route: RouteDocument = {
            "name": data["name"],
            "description": data.get("description"),
            "collector": collector_oid,
            "bins": bins,
            "status": RouteStatus.ACTIVE.value,
            "scheduled_at": naive_utc(data["scheduled_at"]),
            "started_at": None,
            "ended_at": None,
            "estimated_duration_min": estimated if estimated is not None else route_rules.estimated_duration_min(bins),
            "actual_duration_min": None,
            "completed_bins": [],
            "stats": {
                "total_collections": 0,
                "total_weight": 0,
                "total_volume": 0,
                "average_time_per_bin": 0,
            },
            "notes": None,
            "is_recurring": data.get("is_recurring", False),
            "recurrence": data.get("recurrence"),
            "created_at": now,
            "updated_at": now,
        }
        result = await self.db.routes.insert_one(route)
        route["_id"] = result.inserted_id
        logger.info(f"Created route '{route['name']}' with {len(bins)} bins for collector {collector_oid}")

        if data.get("generate_collections"):
            workflow = CollectionWorkflow(self.db, clock=self.clock)
            scheduled = await workflow.schedule_for_route(route)
            logger.info(f"Scheduled {len(scheduled)} collections for route {route['_id']}")
        return route

    @translate_store_errors
    async def get_route(self, principal: Principal, route_id: Any) -> RouteDocument:
        route = await self._get(route_id)
        require_owner_or_admin(principal, route.get("collector"), "route")
        return route

    @translate_store_errors
    async def list_routes(
        self,
        principal: Principal,
        status: Optional[str] = None,
        collector_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[RouteDocument], int]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if principal.role == Role.COLLECTOR:
            query["collector"] = to_object_id(principal.id, "Collector")
        else:
            require_role(principal, Role.ADMIN)
            if collector_id:
                query["collector"] = to_object_id(collector_id, "Collector")

        cursor = self.db.routes.find(query).sort("scheduled_at", -1).skip((page - 1) * limit).limit(limit)
        routes = await cursor.to_list(length=limit)
        total = await self.db.routes.count_documents(query)
        return routes, total

    @translate_store_errors
    async def update_route(self, principal: Principal, route_id: Any, data: Dict[str, Any]) -> RouteDocument:
        require_role(principal, Role.ADMIN)
        changes: Dict[str, Any] = {}
        for key in ("name", "description", "notes"):
            if data.get(key) is not None:
                changes[key] = data[key]
        if data.get("bins") is not None:
            changes["bins"] = await self._validated_bins(data["bins"])
            # completed_bins must stay a subset of bins
            route = await self._get(route_id)
            kept = {entry["bin"] for entry in changes["bins"]}
            changes["completed_bins"] = [b for b in route.get("completed_bins") or [] if b in kept]
        if not changes:
            return await self._get(route_id)

        changes["updated_at"] = self.clock()
        route = await self.db.routes.find_one_and_update(
            {"_id": to_object_id(route_id, "Route")},
            {"$set": changes},
            return_document=ReturnDocument.AFTER
        )
        if not route:
            raise NotFound("Route not found")
        return route

    @translate_store_errors
    async def delete_route(self, principal: Principal, route_id: Any):
        require_role(principal, Role.ADMIN)
        result = await self.db.routes.delete_one({"_id": to_object_id(route_id, "Route")})
        if result.deleted_count == 0:
            raise NotFound("Route not found")

    async def _transition(self, route: RouteDocument, new_status: RouteStatus,
                          changes: Dict[str, Any]) -> RouteDocument:
        route_rules.check_transition(route["status"], new_status)
        changes = {**changes, "status": new_status.value, "updated_at": self.clock()}
        updated = await self.db.routes.find_one_and_update(
            {"_id": route["_id"], "status": route["status"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise Conflict("Route was updated concurrently, please retry")
        return updated

    @translate_store_errors
    async def start(self, principal: Principal, route_id: Any) -> Outcome[RouteDocument]:
        route = await self._get(route_id)
        require_owner(principal, route.get("collector"), "route")
        if route["status"] != RouteStatus.ACTIVE.value:
            raise InvalidState("Route is not active")

        now = self.clock()
        updated = await self._transition(route, RouteStatus.IN_PROGRESS, {"started_at": now})
        logger.info(f"Route {updated['_id']} started by collector {principal.id}")
        return Outcome(
            result=updated,
            events=[events.route_started(updated["_id"], now, updated["collector"])]
        )

    @translate_store_errors
    async def complete(self, principal: Principal, route_id: Any) -> Outcome[RouteDocument]:
        """
        Close a route and recompute its statistics from its collections

        Returns:
            Completed route plus a routeCompleted event
        """
        route = await self._get(route_id)
        require_owner(principal, route.get("collector"), "route")
        route_rules.check_transition(route["status"], RouteStatus.COMPLETED)

        ended_at = self.clock()
        duration = route_rules.actual_duration_min(route.get("started_at"), ended_at)
        collections = await self.db.collections.find({"route": route["_id"]}).to_list(length=None)
        stats = route_rules.route_stats(route, collections, duration)

        updated = await self._transition(route, RouteStatus.COMPLETED, {
            "ended_at": ended_at,
            "actual_duration_min": duration,
            "stats": stats,
        })
        logger.info(f"Route {updated['_id']} completed in {duration} min ({stats['total_collections']} collections)")
        return Outcome(
            result=updated,
            events=[events.route_completed(updated["_id"], ended_at, duration)]
        )

    @translate_store_errors
    async def pause(self, principal: Principal, route_id: Any) -> RouteDocument:
        route = await self._get(route_id)
        require_owner_or_admin(principal, route.get("collector"), "route")
        return await self._transition(route, RouteStatus.PAUSED, {})

    @translate_store_errors
    async def resume(self, principal: Principal, route_id: Any) -> RouteDocument:
        """Paused routes go back to in_progress if they had started, else active"""
        route = await self._get(route_id)
        require_owner_or_admin(principal, route.get("collector"), "route")
        target = RouteStatus.IN_PROGRESS if route.get("started_at") else RouteStatus.ACTIVE
        if route["status"] != RouteStatus.PAUSED.value:
            raise InvalidState("Route is not paused")
        return await self._transition(route, target, {})

    @translate_store_errors
    async def cancel(self, principal: Principal, route_id: Any) -> RouteDocument:
        route = await self._get(route_id)
        require_owner_or_admin(principal, route.get("collector"), "route")
        return await self._transition(route, RouteStatus.CANCELLED, {"ended_at": self.clock()})
