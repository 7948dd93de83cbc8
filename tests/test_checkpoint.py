"""Tests for push and pull checkpoint managers."""

import logging

import pytest
from unittest.mock import AsyncMock, patch

from docsync.errors import RevisionConflict, StoreWriteFailure
from docsync.store import SQLiteDocumentStore
from docsync.sync import PullCheckpointManager, PushCheckpointManager
from docsync.sync.local_meta import find_local_document, write_single_local

NAMESPACE = "test-replication"
ENDPOINT = "a1b2c3d4e5f6"


@pytest.fixture
def store():
    """Create an in-memory store."""
    store = SQLiteDocumentStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def push(store):
    return PushCheckpointManager(store, NAMESPACE)


@pytest.fixture
def pull(store):
    return PullCheckpointManager(store, NAMESPACE)


class TestPushCheckpoint:
    """Tests for the push sequence cursor."""

    def test_key_format(self, push):
        """Test the push checkpoint record key."""
        assert push.key(ENDPOINT) == "test-replication-push-checkpoint-a1b2c3d4e5f6"

    def test_requires_namespace(self, store):
        """Test that an empty namespace is rejected."""
        with pytest.raises(ValueError):
            PushCheckpointManager(store, "")

    @pytest.mark.asyncio
    async def test_fresh_endpoint_is_zero(self, push):
        """Test that an unknown endpoint starts at sequence 0."""
        assert await push.get_last_push_sequence(ENDPOINT) == 0
        assert await push.get_checkpoint(ENDPOINT) is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, push):
        """Test reading back the last written sequence."""
        await push.set_last_push_sequence(ENDPOINT, 5)
        assert await push.get_last_push_sequence(ENDPOINT) == 5

        await push.set_last_push_sequence(ENDPOINT, 9)
        assert await push.get_last_push_sequence(ENDPOINT) == 9

    @pytest.mark.asyncio
    async def test_update_reuses_record(self, push, store):
        """Test that updates rewrite the same record under a new revision."""
        first = await push.set_last_push_sequence(ENDPOINT, 5)
        second = await push.set_last_push_sequence(ENDPOINT, 9)

        assert first.revision == "0-1"
        assert second.revision == "0-2"
        assert second.sequence == 9
        assert store.get_stats()["local_records"] == 1

    @pytest.mark.asyncio
    async def test_persisted_record_shape(self, push, store):
        """Test the stored body of the push checkpoint."""
        await push.set_last_push_sequence(ENDPOINT, 3)

        record = await store.read_local_metadata(push.key(ENDPOINT))

        assert record["value"] == 3

    @pytest.mark.asyncio
    async def test_endpoints_are_independent(self, push):
        """Test that each endpoint has its own cursor."""
        await push.set_last_push_sequence(ENDPOINT, 5)

        assert await push.get_last_push_sequence("other-endpoint") == 0

    @pytest.mark.asyncio
    async def test_rejects_negative_sequence(self, push):
        """Test that a negative sequence is rejected before writing."""
        with pytest.raises(ValueError):
            await push.set_last_push_sequence(ENDPOINT, -1)

    @pytest.mark.asyncio
    async def test_forward_move_does_not_warn(self, push, caplog):
        """Test that advancing the cursor logs no warning."""
        with caplog.at_level(logging.WARNING, logger="docsync.sync.checkpoint"):
            await push.set_last_push_sequence(ENDPOINT, 3)
            await push.set_last_push_sequence(ENDPOINT, 8)

        assert "moves backwards" not in caplog.text

    @pytest.mark.asyncio
    async def test_get_checkpoint_carries_revision(self, push):
        """Test that get_checkpoint returns the stored sequence and revision."""
        await push.set_last_push_sequence(ENDPOINT, 4)

        checkpoint = await push.get_checkpoint(ENDPOINT)

        assert checkpoint.sequence == 4
        assert checkpoint.revision == "0-1"

    @pytest.mark.asyncio
    async def test_backwards_move_logs_warning(self, push, caplog):
        """Test that moving the cursor backwards logs a warning."""
        await push.set_last_push_sequence(ENDPOINT, 9)

        with caplog.at_level(logging.WARNING, logger="docsync.sync.checkpoint"):
            await push.set_last_push_sequence(ENDPOINT, 0)

        assert "moves backwards" in caplog.text
        assert await push.get_last_push_sequence(ENDPOINT) == 0

    @pytest.mark.asyncio
    async def test_stale_writer_gets_conflict(self, push, store):
        """A second writer holding an old read must not overwrite progress."""
        await push.set_last_push_sequence(ENDPOINT, 5)
        stale = await find_local_document(store, push.key(ENDPOINT))

        await push.set_last_push_sequence(ENDPOINT, 9)

        stale["value"] = 6
        with pytest.raises(RevisionConflict):
            await write_single_local(store, stale)
        assert await push.get_last_push_sequence(ENDPOINT) == 9

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, push, store):
        """Test that store write failures reach the caller unchanged."""
        with patch.object(
            store,
            "write_local_metadata",
            new=AsyncMock(side_effect=StoreWriteFailure("disk full")),
        ):
            with pytest.raises(StoreWriteFailure):
                await push.set_last_push_sequence(ENDPOINT, 5)

        assert await push.get_last_push_sequence(ENDPOINT) == 0


class TestPullCheckpoint:
    """Tests for the last pulled document."""

    def test_key_format(self, pull):
        """Test the pull checkpoint record key."""
        assert pull.key(ENDPOINT) == "test-replication-pull-checkpoint-a1b2c3d4e5f6"

    @pytest.mark.asyncio
    async def test_fresh_endpoint_is_none(self, pull):
        """Test that an unknown endpoint has no last document."""
        assert await pull.get_last_pull_document(ENDPOINT) is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, pull):
        """Test reading back the last pulled document."""
        doc = {"id": "x", "updatedAt": 100}

        stored = await pull.set_last_pull_document(ENDPOINT, doc)

        assert stored.last_document == doc
        assert stored.revision == "0-1"
        assert await pull.get_last_pull_document(ENDPOINT) == doc

    @pytest.mark.asyncio
    async def test_update_reuses_record(self, pull, store):
        """Test that updates rewrite the same record under a new revision."""
        await pull.set_last_pull_document(ENDPOINT, {"id": "x"})
        second = await pull.set_last_pull_document(ENDPOINT, {"id": "y"})

        record = await store.read_local_metadata(pull.key(ENDPOINT))

        assert second.revision == "0-2"
        assert record["doc"] == {"id": "y"}
        assert store.get_stats()["local_records"] == 1

    @pytest.mark.asyncio
    async def test_reset_to_none(self, pull):
        """Test clearing the last pulled document."""
        await pull.set_last_pull_document(ENDPOINT, {"id": "x"})
        await pull.set_last_pull_document(ENDPOINT, None)

        assert await pull.get_last_pull_document(ENDPOINT) is None

    @pytest.mark.asyncio
    async def test_independent_of_push(self, push, pull):
        """Test that pull and push checkpoints do not share a record."""
        await push.set_last_push_sequence(ENDPOINT, 4)
        await pull.set_last_pull_document(ENDPOINT, {"id": "x"})

        assert await push.get_last_push_sequence(ENDPOINT) == 4
        assert (await pull.get_checkpoint(ENDPOINT)).last_document == {"id": "x"}
