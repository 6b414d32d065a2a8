"""
MongoDB database connection and utilities
"""
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from typing import Optional
from smartwaste.config import settings
import logging

logger = logging.getLogger(__name__)


class Database:
    """MongoDB database connection manager"""

    client: Optional[AsyncIOMotorClient] = None
    database = None


# Global database instance
db = Database()


async def connect_to_mongo():
    """Connect to MongoDB (optional - API will still start if connection fails)"""
    try:
        db.client = AsyncIOMotorClient(
            settings.mongodb_uri,
            serverSelectionTimeoutMS=10000,
        )
        db.database = db.client[settings.mongodb_db_name]

        # Test connection
        await db.client.admin.command('ping')
        logger.info(f"Connected to MongoDB: {settings.mongodb_db_name}")

        await create_indexes()

    except Exception as e:
        error_msg = str(e)
        if "authentication" in error_msg.lower():
            logger.warning("MongoDB authentication failed. Check username/password in connection string.")
        else:
            logger.warning(f"Failed to connect to MongoDB: {e}")
        logger.warning("API will continue without database. Store-backed endpoints will return 503.")
        db.client = None
        db.database = None


async def close_mongo_connection():
    """Close MongoDB connection"""
    if db.client:
        db.client.close()
        logger.info("MongoDB connection closed")


async def create_indexes():
    """Create database indexes for the bin, collection and route queries"""
    if db.database is None:
        logger.warning("Database not connected, skipping index creation")
        return

    try:
        bins = db.database.bins
        await bins.create_index([("bin_code", ASCENDING)], unique=True)
        await bins.create_index([("scan_token", ASCENDING)], unique=True)
        await bins.create_index([("active", ASCENDING), ("status", ASCENDING)])
        await bins.create_index([("assigned_collector", ASCENDING)])

        collections = db.database.collections
        await collections.create_index([("collector", ASCENDING), ("status", ASCENDING)])
        await collections.create_index([("resident", ASCENDING), ("created_at", DESCENDING)])
        await collections.create_index([("route", ASCENDING)])
        await collections.create_index([("created_at", DESCENDING)])

        routes = db.database.routes
        await routes.create_index([("collector", ASCENDING), ("scheduled_at", DESCENDING)])
        await routes.create_index([("status", ASCENDING)])

        payments = db.database.payments
        await payments.create_index([("user", ASCENDING), ("created_at", DESCENDING)])
        await payments.create_index([("collection", ASCENDING)])

        logger.info("Database indexes created successfully")

    except Exception as e:
        logger.warning(f"Failed to create some indexes: {e}")


def get_database():
    """Get database instance"""
    return db.database
