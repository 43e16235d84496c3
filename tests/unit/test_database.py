from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from risk_monitor.database import SnapshotRepository
from risk_monitor.error_handling import PersistenceError


@pytest.fixture
def mock_collection():
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.count_documents = AsyncMock(return_value=0)
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=0))
    return collection


@pytest.fixture
def repository(mock_collection):
    return SnapshotRepository(mock_collection)


class TestSnapshotRepository:
    """Tests for MongoDB snapshot storage"""

    class TestStore:
        @pytest.mark.asyncio
        async def test_store_inserts_document(self, repository, mock_collection, make_snapshot):
            snapshot = make_snapshot()

            assert await repository.store(snapshot) is True

            document = mock_collection.insert_one.await_args.args[0]
            assert document["wallet_address"] == snapshot.wallet_address
            assert document["timestamp"] == snapshot.timestamp
            assert document["health_factor"] == 2.5

        @pytest.mark.asyncio
        async def test_duplicate_is_ignored(self, repository, mock_collection, make_snapshot):
            mock_collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")

            assert await repository.store(make_snapshot()) is False

        @pytest.mark.asyncio
        async def test_driver_error_becomes_persistence_error(self, repository, mock_collection, make_snapshot):
            mock_collection.insert_one.side_effect = ServerSelectionTimeoutError("no servers")

            with pytest.raises(PersistenceError):
                await repository.store(make_snapshot())

        @pytest.mark.asyncio
        async def test_disconnected_database_becomes_persistence_error(self, make_snapshot):
            repository = SnapshotRepository()

            with pytest.raises(PersistenceError, match="Database not connected"):
                await repository.store(make_snapshot())

    class TestQueries:
        @pytest.mark.asyncio
        async def test_get_latest(self, repository, mock_collection, make_snapshot, sample_wallet_address):
            snapshot = make_snapshot()
            mock_collection.find_one.return_value = {"_id": "abc", **snapshot.model_dump()}

            result = await repository.get_latest(sample_wallet_address.upper().replace("0X", "0x"))

            assert result == snapshot
            query = mock_collection.find_one.await_args.args[0]
            assert query == {"wallet_address": sample_wallet_address}
            assert mock_collection.find_one.await_args.kwargs["sort"] == [("timestamp", DESCENDING)]

        @pytest.mark.asyncio
        async def test_get_latest_missing(self, repository, sample_wallet_address):
            assert await repository.get_latest(sample_wallet_address) is None

        @pytest.mark.asyncio
        async def test_get_previous_filters_before(self, repository, mock_collection, sample_wallet_address, base_time):
            await repository.get_previous(sample_wallet_address, base_time)

            query = mock_collection.find_one.await_args.args[0]
            assert query["timestamp"] == {"$lt": base_time}

        @pytest.mark.asyncio
        async def test_get_n_minutes_ago(self, repository, mock_collection, sample_wallet_address, base_time):
            await repository.get_n_minutes_ago(sample_wallet_address, 10, now=base_time)

            query = mock_collection.find_one.await_args.args[0]
            assert query["timestamp"] == {"$lte": base_time - timedelta(minutes=10)}

        @pytest.mark.asyncio
        async def test_get_in_range(self, repository, mock_collection, make_snapshot, sample_wallet_address, base_time):
            snapshots = [make_snapshot(minutes=0), make_snapshot(minutes=1)]
            cursor = mock_collection.find.return_value.sort.return_value.limit.return_value
            cursor.to_list = AsyncMock(return_value=[s.model_dump() for s in snapshots])

            result = await repository.get_in_range(
                sample_wallet_address, base_time, base_time + timedelta(minutes=5), limit=10
            )

            assert result == snapshots
            mock_collection.find.return_value.sort.assert_called_once_with("timestamp", ASCENDING)
            mock_collection.find.return_value.sort.return_value.limit.assert_called_once_with(10)

        @pytest.mark.asyncio
        async def test_count(self, repository, mock_collection, sample_wallet_address):
            mock_collection.count_documents.return_value = 5

            assert await repository.count(sample_wallet_address) == 5
            mock_collection.count_documents.assert_awaited_with({"wallet_address": sample_wallet_address})

            await repository.count()
            mock_collection.count_documents.assert_awaited_with({})

    class TestRetention:
        @pytest.mark.asyncio
        async def test_delete_older_than(self, repository, mock_collection):
            mock_collection.delete_many.return_value = MagicMock(deleted_count=42)
            before = datetime.now(timezone.utc)

            deleted = await repository.delete_older_than(7)

            assert deleted == 42
            cutoff = mock_collection.delete_many.await_args.args[0]["timestamp"]["$lt"]
            assert before - timedelta(days=7, seconds=5) < cutoff <= datetime.now(timezone.utc) - timedelta(days=7)

        @pytest.mark.asyncio
        async def test_delete_failure(self, repository, mock_collection):
            mock_collection.delete_many.side_effect = ServerSelectionTimeoutError("no servers")

            with pytest.raises(PersistenceError):
                await repository.delete_older_than(7)
