"""Tests for shared utilities and protocol enums."""
import pytest

from tasksync.sync.protocol import ChangeType, SyncDirection
from tasksync.utils import canonical_json, content_hash, now_ms


class TestContentHash:
    """Tests for canonical serialization and hashing."""

    def test_key_order_does_not_matter(self):
        assert content_hash({"a": 1, "b": {"c": 2, "d": 3}}) == content_hash({"b": {"d": 3, "c": 2}, "a": 1})

    def test_different_content_differs(self):
        assert content_hash({"title": "A"}) != content_hash({"title": "B"})

    def test_canonical_json_is_compact_and_sorted(self):
        assert canonical_json({"b": 1, "a": "é"}) == '{"a":"é","b":1}'

    def test_unserializable_raises(self):
        with pytest.raises(TypeError):
            content_hash({"when": object()})

    def test_now_ms_is_integer_millis(self):
        value = now_ms()

        assert isinstance(value, int)
        assert value > 1_600_000_000_000


class TestProtocolEnums:
    """Tests for ChangeType and SyncDirection."""

    def test_change_type_from_string(self):
        assert ChangeType.from_string("STATUS_CHANGE") == ChangeType.STATUS_CHANGE
        assert ChangeType.from_string(ChangeType.DELETE) == ChangeType.DELETE

    def test_unknown_change_type(self):
        with pytest.raises(ValueError, match="Unknown change type"):
            ChangeType.from_string("rename")

    @pytest.mark.parametrize("direction,push,pull", [
        (SyncDirection.BIDIRECTIONAL, True, True),
        (SyncDirection.PUSH, True, False),
        (SyncDirection.PULL, False, True),
    ])
    def test_direction_halves(self, direction, push, pull):
        assert direction.includes_push is push
        assert direction.includes_pull is pull
