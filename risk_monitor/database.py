import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import Collections, settings
from .error_handling import PersistenceError
from .models import WalletSnapshot

logger = structlog.get_logger()


class DatabaseManager:
    def __init__(self):
        self.mongo_client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None

    async def connect(self):
        """Initialize database connection"""
        try:
            self.mongo_client = AsyncIOMotorClient(
                settings.MONGODB_URI,
                tz_aware=True,
                maxPoolSize=20,
                minPoolSize=1,
                maxIdleTimeMS=30000,
                serverSelectionTimeoutMS=5000,
                socketTimeoutMS=20000
            )
            self.database = self.mongo_client[settings.MONGO_DB_NAME]

            await self.mongo_client.admin.command('ping')
            logger.info("Connected to MongoDB", database=settings.MONGO_DB_NAME)

            await self._create_indexes()

        except Exception as e:
            logger.error("Failed to connect to database", error=str(e))
            raise

    async def disconnect(self):
        """Close database connection"""
        if self.mongo_client:
            self.mongo_client.close()
            self.mongo_client = None
            self.database = None
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self):
        """Create snapshot indexes"""
        try:
            snapshot_indexes = [
                # One snapshot per wallet per instant
                IndexModel([("wallet_address", ASCENDING), ("timestamp", DESCENDING)], unique=True),
                IndexModel([("timestamp", DESCENDING)]),
                IndexModel([("health_factor", ASCENDING)]),
            ]
            await self.database[Collections.SNAPSHOTS].create_indexes(snapshot_indexes)
            logger.info("Database indexes created successfully")

        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    def get_collection(self, collection_name: str):
        """Get MongoDB collection"""
        if self.database is None:
            raise RuntimeError("Database not connected")
        return self.database[collection_name]

    async def health_check(self) -> dict:
        """Check database health status"""
        health = {"mongodb": {"status": "disconnected", "latency_ms": None}}

        try:
            if self.mongo_client:
                start_time = time.time()
                await self.mongo_client.admin.command('ping')
                latency = (time.time() - start_time) * 1000
                health["mongodb"] = {"status": "connected", "latency_ms": round(latency, 2)}
        except Exception as e:
            health["mongodb"]["error"] = str(e)

        return health


# Global database manager instance
db_manager = DatabaseManager()


def get_collection(collection_name: str):
    """Get MongoDB collection"""
    return db_manager.get_collection(collection_name)


def _to_snapshot(document: Optional[Dict[str, Any]]) -> Optional[WalletSnapshot]:
    if document is None:
        return None
    document = dict(document)
    document.pop("_id", None)
    return WalletSnapshot.model_validate(document)


class SnapshotRepository:
    """Snapshot storage in MongoDB; also serves as the poller's snapshot sink"""

    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is not None:
            return self._collection
        return get_collection(Collections.SNAPSHOTS)

    async def store(self, snapshot: WalletSnapshot) -> bool:
        """Insert a snapshot. Returns False if one already exists for that wallet and time."""
        try:
            await self.collection.insert_one(snapshot.model_dump())
            return True
        except DuplicateKeyError:
            logger.debug("Snapshot already stored", wallet=snapshot.wallet_address,
                         timestamp=snapshot.timestamp.isoformat())
            return False
        except (PyMongoError, RuntimeError) as e:
            raise PersistenceError(f"Failed to store snapshot: {e}") from e

    async def get_latest(self, wallet_address: str) -> Optional[WalletSnapshot]:
        try:
            document = await self.collection.find_one(
                {"wallet_address": wallet_address.lower()},
                sort=[("timestamp", DESCENDING)]
            )
        except (PyMongoError, RuntimeError) as e:
            raise PersistenceError(f"Failed to query latest snapshot: {e}") from e
        return _to_snapshot(document)

    async def get_previous(self, wallet_address: str, before: datetime) -> Optional[WalletSnapshot]:
        try:
            document = await self.collection.find_one(
                {"wallet_address": wallet_address.lower(), "timestamp": {"$lt": before}},
                sort=[("timestamp", DESCENDING)]
            )
        except (PyMongoError, RuntimeError) as e:
            raise PersistenceError(f"Failed to query previous snapshot: {e}") from e
        return _to_snapshot(document)

    async def get_n_minutes_ago(
        self,
        wallet_address: str,
        minutes: float,
        now: Optional[datetime] = None
    ) -> Optional[WalletSnapshot]:
        """Newest stored snapshot at or before ``now - minutes``"""
        target = (now or datetime.now(timezone.utc)) - timedelta(minutes=minutes)
        try:
            document = await self.collection.find_one(
                {"wallet_address": wallet_address.lower(), "timestamp": {"$lte": target}},
                sort=[("timestamp", DESCENDING)]
            )
        except (PyMongoError, RuntimeError) as e:
            raise PersistenceError(f"Failed to query historical snapshot: {e}") from e
        return _to_snapshot(document)

    async def get_in_range(
        self,
        wallet_address: str,
        start: datetime,
        end: datetime,
        limit: int = 1000
    ) -> List[WalletSnapshot]:
        try:
            cursor = self.collection.find(
                {"wallet_address": wallet_address.lower(), "timestamp": {"$gte": start, "$lte": end}}
            ).sort("timestamp", ASCENDING).limit(limit)
            documents = await cursor.to_list(length=limit)
        except (PyMongoError, RuntimeError) as e:
            raise PersistenceError(f"Failed to query snapshot range: {e}") from e
        return [_to_snapshot(doc) for doc in documents]

    async def count(self, wallet_address: Optional[str] = None) -> int:
        query = {"wallet_address": wallet_address.lower()} if wallet_address else {}
        try:
            return await self.collection.count_documents(query)
        except (PyMongoError, RuntimeError) as e:
            raise PersistenceError(f"Failed to count snapshots: {e}") from e

    async def delete_older_than(self, days: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        try:
            result = await self.collection.delete_many({"timestamp": {"$lt": cutoff}})
        except (PyMongoError, RuntimeError) as e:
            raise PersistenceError(f"Failed to delete old snapshots: {e}") from e

        logger.info("Old snapshots deleted", deleted=result.deleted_count, retention_days=days)
        return result.deleted_count
