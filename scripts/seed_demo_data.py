#!/usr/bin/env python3
"""
Seed a demo dataset: users of each role, a handful of bins, one route and a
completed collection, then print the admin dashboard
"""
import asyncio
import sys
import os
from datetime import timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from smartwaste.database import connect_to_mongo, close_mongo_connection, get_database
from smartwaste.models.enums import Role
from smartwaste.services.bins import BinService
from smartwaste.services.capabilities import Principal
from smartwaste.services.collection_workflow import CollectionWorkflow
from smartwaste.services.route_scheduler import RouteScheduler
from smartwaste.services.statistics import StatisticsAggregator
from smartwaste.utils import utcnow
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEMO_BINS = [
    ("Galle Face Green", 6.9271, 79.8450, "general"),
    ("Viharamahadevi Park", 6.9146, 79.8612, "organic"),
    ("Pettah Market", 6.9366, 79.8500, "recyclable"),
    ("Bambalapitiya Junction", 6.8890, 79.8560, "general"),
]


async def create_user(db, name: str, role: Role) -> Principal:
    now = utcnow()
    user = {
        "name": name,
        "email": f"{name.lower().replace(' ', '.')}@example.com",
        "role": role.value,
        "is_active": True,
        "is_premium": role == Role.PREMIUM_RESIDENT,
        "premium_expiry": now + timedelta(days=30) if role == Role.PREMIUM_RESIDENT else None,
        "stats": {},
        "created_at": now,
    }
    result = await db.users.insert_one(user)
    return Principal(
        id=str(result.inserted_id),
        role=role,
        premium_active=role == Role.PREMIUM_RESIDENT,
    )


async def seed():
    """Populate the configured database through the service layer"""
    print("=" * 80)
    print("SMART WASTE - DEMO DATA")
    print("=" * 80)

    try:
        print("Step 1: Connecting to MongoDB...")
        await connect_to_mongo()
        db = get_database()
        if db is None:
            print("❌ MongoDB is not reachable, nothing seeded\n")
            return
        print("✓ Connected to MongoDB\n")

        print("Step 2: Creating users...")
        admin = await create_user(db, "Admin User", Role.ADMIN)
        collector = await create_user(db, "Kamal Perera", Role.COLLECTOR)
        resident = await create_user(db, "Nimal Silva", Role.RESIDENT)
        premium = await create_user(db, "Sunethra Fernando", Role.PREMIUM_RESIDENT)
        print("✓ Created admin, collector, resident and premium resident\n")

        print("Step 3: Registering bins...")
        bin_service = BinService(db)
        bins = []
        for name, latitude, longitude, category in DEMO_BINS:
            bin_doc = await bin_service.create_bin(admin, {
                "location": {"name": name, "coordinates": {"latitude": latitude, "longitude": longitude}},
                "waste_category": category,
            })
            await bin_service.assign_collector(admin, bin_doc["_id"], collector.id)
            bins.append(bin_doc)
            print(f"  - {bin_doc['bin_code']} at {name}")
        print()

        print("Step 4: Recording disposals...")
        for bin_doc, amount in zip(bins, (85, 40, 95, 10)):
            outcome = await bin_service.set_fill_level(resident, bin_doc["_id"], amount)
            print(f"  - {outcome.result['bin_code']}: {outcome.result['fill_level']}% ({outcome.result['status']})")
        print()

        print("Step 5: Scheduling a route...")
        route = await RouteScheduler(db).create_route(admin, {
            "name": "Colombo morning loop",
            "collector": collector.id,
            "bins": [{"bin": str(b["_id"]), "order": i + 1} for i, b in enumerate(bins)],
            "scheduled_at": utcnow() + timedelta(hours=1),
            "generate_collections": True,
        })
        print(f"✓ Route '{route['name']}' with {len(route['bins'])} stops\n")

        print("Step 6: Requesting and completing a collection...")
        workflow = CollectionWorkflow(db)
        requested = await workflow.create_request(resident, bins[0]["_id"], description="Bin is nearly full")
        await workflow.advance_status(collector, requested.result["_id"], "in_progress")
        completed = await workflow.advance_status(collector, requested.result["_id"], "completed", {
            "waste_composition": {"general": {"weight": 18.5, "volume": 0.9}},
        })
        await workflow.rate(resident, completed.result["_id"], 5, "Quick and tidy")
        bulk = await workflow.create_request(
            premium, bins[2]["_id"], kind="bulk",
            composition={"recyclable": {"weight": 12}, "general": {"weight": 6}},
        )
        print(f"✓ Collection completed and rated; bulk fee quoted at {bulk.result['payment']['amount']}\n")

        print("Step 7: Dashboard")
        dashboard = await StatisticsAggregator(db).dashboard(utcnow())
        overview = dashboard["overview"]
        print(f"  - Users: {overview['total_users']}")
        print(f"  - Bins: {overview['total_bins']} ({overview['bins_needing_collection']} need collection)")
        print(f"  - Collections today: {dashboard['today']['collections']}")

        print("\n" + "=" * 80)
        print("Next steps:")
        print("   - GET http://localhost:8000/api/bins/needing-collection")
        print("   - GET http://localhost:8000/api/stats/dashboard")
        print("\n")

    except Exception as e:
        logger.error(f"Seeding error: {e}", exc_info=True)
        print(f"\n❌ Error while seeding: {e}\n")

    finally:
        await close_mongo_connection()
        print("✓ MongoDB connection closed")


if __name__ == "__main__":
    asyncio.run(seed())
