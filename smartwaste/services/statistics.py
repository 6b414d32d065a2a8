"""
Statistics aggregator
Read-only rollups over bins, collections, routes, users and payments.

Documents are fetched for the window and aggregated in Python so that
partially populated records are handled uniformly: missing weights and
volumes count as 0, missing ratings and durations are left out of averages.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from smartwaste.config import settings
from smartwaste.database import get_database
from smartwaste.errors import InvalidInput, Unavailable, translate_store_errors
from smartwaste.models.enums import CollectionStatus, PaymentStatus, Role, RouteStatus
from smartwaste.services import bin_state, collection_rules
from smartwaste.utils import optional_object_id, utcnow

logger = logging.getLogger(__name__)

TOP_COLLECTORS = 10


def period_window(days: int, now: datetime) -> Tuple[datetime, datetime]:
    """[now - days, now]"""
    if days <= 0:
        raise InvalidInput("Period must be a positive number of days")
    return now - timedelta(days=days), now


def mean(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def _window(start: datetime, end: datetime, field: str = "created_at") -> Dict[str, Any]:
    if start > end:
        raise InvalidInput("Window start must not be after its end")
    return {field: {"$gte": start, "$lte": end}}


class StatisticsAggregator:
    """Reporting queries for dashboards and admin reports"""

    def __init__(self, db=None):
        self.db = db if db is not None else get_database()
        if self.db is None:
            raise Unavailable("Database not available")

    async def _fetch(self, collection, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await collection.find(query).to_list(length=None)

    @translate_store_errors
    async def dashboard(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Headline numbers for the admin dashboard

        Returns:
            today, overview, user breakdown and performance sections
        """
        now = now or utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end_of_day = start_of_day + timedelta(days=1) - timedelta(milliseconds=1)

        today_collections = await self.db.collections.count_documents(_window(start_of_day, end_of_day))
        today_payments = await self._fetch(self.db.payments, {
            **_window(start_of_day, end_of_day),
            "status": PaymentStatus.COMPLETED.value,
        })

        bins = await self._fetch(self.db.bins, {})
        active_bins = [b for b in bins if b.get("active", True)]
        users = await self._fetch(self.db.users, {})

        completed = await self._fetch(self.db.collections, {"status": CollectionStatus.COMPLETED.value})
        durations = [collection_rules.duration_min(c) for c in completed]
        avg_duration = mean(durations)

        return {
            "today": {
                "collections": today_collections,
                "payments": {
                    "total_amount": round(sum(float(p.get("amount") or 0) for p in today_payments), 2),
                    "count": len(today_payments),
                },
            },
            "overview": {
                "total_users": len(users),
                "total_bins": len(bins),
                "active_bins": len(active_bins),
                "bins_needing_collection": sum(1 for b in active_bins if bin_state.needs_collection(b, now)),
            },
            "user_breakdown": self._role_breakdown(users),
            "performance": {
                "avg_collection_time_minutes": round(avg_duration) if avg_duration is not None else 0,
            },
        }

    def _role_breakdown(self, users: List[Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
        breakdown: Dict[str, Dict[str, int]] = defaultdict(lambda: {"count": 0, "active_count": 0})
        for user in users:
            row = breakdown[user.get("role") or "unknown"]
            row["count"] += 1
            if user.get("is_active", True):
                row["active_count"] += 1
        return dict(breakdown)

    @translate_store_errors
    async def bin_statistics(self, start: datetime, end: datetime) -> Dict[str, Any]:
        bins = await self._fetch(self.db.bins, _window(start, end))

        by_status: Dict[str, int] = defaultdict(int)
        by_category: Dict[str, List[float]] = defaultdict(list)
        for bin_doc in bins:
            by_status[bin_doc.get("status") or "unknown"] += 1
            by_category[bin_doc.get("waste_category") or "general"].append(float(bin_doc.get("fill_level") or 0))

        return {
            "total_bins": len(bins),
            "status_breakdown": dict(by_status),
            "category_breakdown": {
                category: {"count": len(levels), "avg_fill_level": round(mean(levels) or 0, 2)}
                for category, levels in by_category.items()
            },
        }

    @translate_store_errors
    async def collection_statistics(self, start: datetime, end: datetime) -> Dict[str, Any]:
        collections = await self._fetch(self.db.collections, _window(start, end))
        completed = [c for c in collections if c.get("status") == CollectionStatus.COMPLETED.value]

        by_kind: Dict[str, Dict[str, float]] = defaultdict(lambda: {"count": 0, "total_weight": 0.0})
        for collection in completed:
            row = by_kind[collection.get("kind") or "scheduled"]
            row["count"] += 1
            row["total_weight"] += collection_rules.total_weight(collection.get("waste_composition"))

        return {
            "total_collections": len(collections),
            "completed_collections": len(completed),
            "total_weight": sum(collection_rules.total_weight(c.get("waste_composition")) for c in completed),
            "total_volume": sum(collection_rules.total_volume(c.get("waste_composition")) for c in completed),
            "average_rating": mean(c.get("rating") for c in completed),
            "kind_breakdown": dict(by_kind),
        }

    @translate_store_errors
    async def route_statistics(self, start: datetime, end: datetime) -> Dict[str, Any]:
        routes = await self._fetch(self.db.routes, _window(start, end))

        by_status: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for route in routes:
            by_status[route.get("status") or "unknown"].append(route)

        status_breakdown = {}
        for status, group in by_status.items():
            status_breakdown[status] = {
                "count": len(group),
                "avg_duration": mean(r.get("actual_duration_min") for r in group),
                "total_weight": sum(float((r.get("stats") or {}).get("total_weight") or 0) for r in group),
                "total_volume": sum(float((r.get("stats") or {}).get("total_volume") or 0) for r in group),
            }

        per_collector: Dict[str, List[Optional[int]]] = defaultdict(list)
        for route in by_status.get(RouteStatus.COMPLETED.value, []):
            per_collector[str(route.get("collector"))].append(route.get("actual_duration_min"))

        top = sorted(
            (
                {
                    "collector": collector,
                    "completed_routes": len(durations),
                    "total_duration": sum(d for d in durations if d is not None),
                    "avg_duration": mean(durations),
                }
                for collector, durations in per_collector.items()
            ),
            key=lambda row: row["completed_routes"],
            reverse=True,
        )
        return {"status_breakdown": status_breakdown, "top_collectors": top[:TOP_COLLECTORS]}

    @translate_store_errors
    async def collector_performance(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        completed = await self._fetch(self.db.collections, {
            **_window(start, end),
            "status": CollectionStatus.COMPLETED.value,
        })

        grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for collection in completed:
            if collection.get("collector") is not None:
                grouped[str(collection["collector"])].append(collection)

        rows = [
            {
                "collector": collector,
                "total_collections": len(items),
                "avg_rating": mean(c.get("rating") for c in items),
                "total_weight": sum(collection_rules.total_weight(c.get("waste_composition")) for c in items),
            }
            for collector, items in grouped.items()
        ]
        return sorted(rows, key=lambda row: row["total_collections"], reverse=True)

    @translate_store_errors
    async def user_statistics(self, start: datetime, end: datetime, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        users = await self._fetch(self.db.users, {})

        premium = [u for u in users if u.get("role") == Role.PREMIUM_RESIDENT.value and u.get("is_premium")]
        active_premium = [
            u for u in premium
            if u.get("is_active", True) and (u.get("premium_expiry") is None or u["premium_expiry"] > now)
        ]
        recent = [u for u in users if u.get("created_at") is not None and start <= u["created_at"] <= end]
        active_users = [
            u for u in users
            if ((u.get("stats") or {}).get("last_disposal_at") or datetime.min) >= start
        ]

        return {
            "role_breakdown": self._role_breakdown(users),
            "premium_stats": {"total_premium": len(premium), "active_premium": len(active_premium)},
            "recent_registrations": len(recent),
            "active_users": len(active_users),
            "total_users": len(users),
        }

    @translate_store_errors
    async def payment_statistics(self, start: datetime, end: datetime, user_id: Optional[str] = None) -> Dict[str, Any]:
        query = {**_window(start, end), "status": PaymentStatus.COMPLETED.value}
        user_oid = optional_object_id(user_id, "User")
        if user_oid is not None:
            query["user"] = user_oid
        payments = await self._fetch(self.db.payments, query)

        def summary(items: List[Dict[str, Any]]) -> Dict[str, Any]:
            amounts = [float(p.get("amount") or 0) for p in items]
            return {
                "count": len(items),
                "total_amount": round(sum(amounts), 2),
                "average_amount": round(mean(amounts), 2) if amounts else 0,
            }

        by_type: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        by_month: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for payment in payments:
            by_type[payment.get("type") or "unknown"].append(payment)
            by_month[payment["created_at"].strftime("%Y-%m")].append(payment)

        return {
            "summary": summary(payments),
            "type_breakdown": {kind: summary(items) for kind, items in by_type.items()},
            "monthly": [{"month": month, **summary(by_month[month])} for month in sorted(by_month)],
        }

    @translate_store_errors
    async def system_alerts(self, now: Optional[datetime] = None) -> List[Dict[str, str]]:
        now = now or utcnow()
        overdue = await self.db.collections.count_documents({
            "status": CollectionStatus.ASSIGNED.value,
            "scheduled_at": {"$lt": now},
        })
        overflowing = await self.db.bins.count_documents({
            "fill_level": {"$gte": bin_state.OVERFLOWING_THRESHOLD},
        })

        alerts = []
        if overdue > settings.overdue_collections_alert_threshold:
            alerts.append({"type": "warning", "message": f"{overdue} collections are overdue"})
        if overflowing > settings.overflowing_bins_alert_threshold:
            alerts.append({"type": "critical", "message": f"{overflowing} bins are overflowing"})
        if alerts:
            logger.warning(f"System alerts raised: {[a['message'] for a in alerts]}")
        return alerts
