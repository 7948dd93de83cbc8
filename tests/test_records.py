"""Tests for checkpoint and change records."""

import pytest

from docsync.records import ChangeBatch, ChangeRecord, PullCheckpoint, PushCheckpoint


class TestPushCheckpoint:
    """Tests for PushCheckpoint validation and records."""

    def test_defaults_to_never_synced(self):
        """Test that a new PushCheckpoint is at sequence 0."""
        checkpoint = PushCheckpoint(endpoint_hash="abc")

        assert checkpoint.sequence == 0
        assert checkpoint.revision is None

    @pytest.mark.parametrize("sequence", [-1, 1.5, "3", True, None])
    def test_rejects_invalid_sequence(self, sequence):
        """Test that negative, bool and non-int sequences are rejected."""
        with pytest.raises(ValueError):
            PushCheckpoint(endpoint_hash="abc", sequence=sequence)

    def test_rejects_empty_endpoint(self):
        """Test that an empty endpoint hash is rejected."""
        with pytest.raises(ValueError):
            PushCheckpoint(endpoint_hash="", sequence=1)

    def test_record_shape(self):
        """Test converting a PushCheckpoint to and from its record."""
        checkpoint = PushCheckpoint.from_record(
            "abc", {"_id": "k", "_rev": "0-3", "value": 7}
        )

        assert checkpoint.sequence == 7
        assert checkpoint.revision == "0-3"
        assert checkpoint.to_record() == {"value": 7}


class TestPullCheckpoint:
    """Tests for PullCheckpoint validation and records."""

    def test_record_shape(self):
        """Test converting a PullCheckpoint to and from its record."""
        checkpoint = PullCheckpoint.from_record(
            "abc", {"_id": "k", "_rev": "0-1", "doc": {"id": "x"}}
        )

        assert checkpoint.last_document == {"id": "x"}
        assert checkpoint.to_record() == {"doc": {"id": "x"}}

    def test_rejects_non_dict_document(self):
        """Test that a last document must be a dict or None."""
        with pytest.raises(ValueError):
            PullCheckpoint(endpoint_hash="abc", last_document=["x"])


class TestChangeRecords:
    """Tests for ChangeRecord and ChangeBatch."""

    def test_change_requires_id_and_revision(self):
        """Test that a ChangeRecord needs an id and a revision."""
        with pytest.raises(ValueError):
            ChangeRecord(id="", revision="1-a", document={})
        with pytest.raises(ValueError):
            ChangeRecord(id="a", revision="", document={})

    def test_change_requires_dict_document(self):
        """Test that a ChangeRecord body must be a dict."""
        with pytest.raises(ValueError):
            ChangeRecord(id="a", revision="1-a", document="{}")

    def test_batch_helpers(self):
        """Test ChangeBatch is_empty, documents and to_dict."""
        batch = ChangeBatch(
            results=[ChangeRecord(id="a", revision="1-a", document={"x": 1}, sequence=4)],
            last_sequence=4,
        )

        assert not batch.is_empty
        assert batch.documents == [{"x": 1}]
        assert batch.to_dict()["results"][0]["sequence"] == 4
        assert ChangeBatch().is_empty
