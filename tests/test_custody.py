"""
Tests for SecretCustodian.

Tests cover:
- Volatile hold/recall/release and sanitization
- TTL expiry via timers and via lazy checks
- Timer replacement on re-hold and extend
- Session-tier encrypted custody
- Listener notifications and clear()
"""
import asyncio
import time
import orjson
import pytest

from zk_vault.custody import SESSION_PREFIX, SecretCustodian
from zk_vault.exceptions import DecryptionFailed, InvalidInput, MalformedEnvelope
from zk_vault.kdf import DerivedKey


@pytest.fixture
def events(custodian):
    seen = []
    custodian.add_listener(lambda action, key: seen.append((action, key)))
    return seen


class TestVolatileTier:
    """Process-memory custody."""

    def test_hold_and_recall(self, custodian):
        """Test a held value can be recalled."""
        custodian.hold("k", "v")
        assert custodian.recall("k") == "v"
        assert "k" in custodian
        assert len(custodian) == 1

    def test_absent_is_none(self, custodian):
        """Test recalling an unknown key returns None."""
        assert custodian.recall("missing") is None

    def test_release_sanitizes(self, custodian):
        """Test release wipes the value."""
        key = DerivedKey.random()
        custodian.hold("k", key)
        assert custodian.release("k") is True
        assert key.wiped
        assert custodian.recall("k") is None
        assert custodian.release("k") is False

    def test_replace_sanitizes_previous(self, custodian):
        """Test holding a new value wipes the old one."""
        old, new = DerivedKey.random(), DerivedKey.random()
        custodian.hold("k", old)
        custodian.hold("k", new)
        assert old.wiped
        assert not new.wiped

    def test_rehold_same_object_keeps_it(self, custodian):
        """Test re-holding the same object does not wipe it."""
        key = DerivedKey.random()
        custodian.hold("k", key)
        custodian.hold("k", key)
        assert not key.wiped

    def test_invalid_arguments(self, custodian):
        """Test empty keys and non-positive TTLs are rejected."""
        with pytest.raises(InvalidInput):
            custodian.hold("", "v")
        with pytest.raises(InvalidInput):
            custodian.hold("k", "v", ttl=0)
        with pytest.raises(InvalidInput):
            custodian.hold("k", "v", ttl=-5)

    @pytest.mark.parametrize("ttl", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_ttl_rejected(self, custodian, ttl):
        """Test NaN and infinite TTLs are rejected."""
        with pytest.raises(InvalidInput):
            custodian.hold("k", "v", ttl=ttl)
        with pytest.raises(InvalidInput):
            custodian.extend("k", ttl)
        assert custodian.recall("k") is None

    def test_lazy_expiry_without_loop(self, custodian, monkeypatch):
        """Test recall enforces the deadline without an event loop."""
        custodian.hold("k", bytearray(b"secret"), ttl=10)
        real = time.monotonic()
        monkeypatch.setattr("zk_vault.custody.time.monotonic", lambda: real + 11)
        assert custodian.recall("k") is None
        assert "k" not in custodian

    def test_release_all(self, custodian):
        """Test release_all wipes every entry."""
        keys = [DerivedKey.random() for _ in range(3)]
        for i, key in enumerate(keys):
            custodian.hold(f"k{i}", key)
        assert custodian.release_all() == 3
        assert all(k.wiped for k in keys)
        assert custodian.keys() == []


class TestTimers:
    """TTL timers on the running loop."""

    @pytest.mark.asyncio
    async def test_timer_releases(self, custodian, events):
        """Test the TTL timer releases the value."""
        key = DerivedKey.random()
        custodian.hold("k", key, ttl=0.05)
        await asyncio.sleep(0.1)
        assert key.wiped
        assert ("expired", "k") in events

    @pytest.mark.asyncio
    async def test_rehold_replaces_timer(self, custodian, events):
        """Test re-holding cancels the previous timer."""
        custodian.hold("k", "first", ttl=0.05)
        custodian.hold("k", "second", ttl=5)
        await asyncio.sleep(0.1)
        assert custodian.recall("k") == "second"
        assert ("expired", "k") not in events

    @pytest.mark.asyncio
    async def test_extend(self, custodian):
        """Test extend restarts the TTL."""
        custodian.hold("k", "v", ttl=0.05)
        assert custodian.extend("k", 5) is True
        await asyncio.sleep(0.1)
        assert custodian.recall("k") == "v"
        assert custodian.extend("missing", 5) is False


class TestListeners:
    """Tests for custody listeners."""

    def test_actions(self, custodian, events):
        """Test listeners see acquired and released."""
        custodian.hold("k", "v")
        custodian.release("k")
        assert events == [("acquired", "k"), ("released", "k")]

    def test_failing_listener_does_not_block(self, custodian, events):
        """Test a failing listener does not break custody."""
        def boom(action, key):
            raise RuntimeError("listener failure")

        custodian.add_listener(boom)
        custodian.hold("k", "v")
        assert custodian.recall("k") == "v"


class TestSessionTier:
    """Encrypted session-tier custody."""

    @pytest.mark.asyncio
    async def test_round_trip_text(self, custodian, session_store):
        """Test a text value survives the session tier encrypted."""
        key = DerivedKey.random()
        await custodian.hold_encrypted("token", "s3cr3t", key, ttl=60)
        assert f"{SESSION_PREFIX}token" in session_store.keys()
        assert b"s3cr3t" not in session_store.get(f"{SESSION_PREFIX}token")
        assert await custodian.recall_encrypted("token", key) == "s3cr3t"

    @pytest.mark.asyncio
    async def test_round_trip_bytes(self, custodian):
        """Test a bytes value keeps its type."""
        await custodian.hold_encrypted("blob", b"\x00\x01", "pw", ttl=60)
        assert await custodian.recall_encrypted("blob", "pw") == b"\x00\x01"

    @pytest.mark.asyncio
    async def test_wrapper_shape(self, custodian, session_store):
        """Test the stored wrapper fields."""
        await custodian.hold_encrypted("token", "v", DerivedKey.random(), ttl=60)
        wrapper = orjson.loads(session_store.get(f"{SESSION_PREFIX}token"))
        assert set(wrapper) == {"value", "expiry", "type"}
        assert wrapper["type"] == "str"
        assert wrapper["value"].count(":") == 2

    @pytest.mark.asyncio
    async def test_expired_record_removed(self, custodian, session_store, monkeypatch):
        """Test an expired session record is removed and reads as absent."""
        key = DerivedKey.random()
        await custodian.hold_encrypted("token", "v", key, ttl=60)
        real = time.time()
        monkeypatch.setattr("zk_vault.custody.time.time", lambda: real + 61)
        assert await custodian.recall_encrypted("token", key) is None
        assert session_store.get(f"{SESSION_PREFIX}token") is None

    @pytest.mark.asyncio
    async def test_wrong_key(self, custodian):
        """Test the wrong key raises DecryptionFailed."""
        await custodian.hold_encrypted("token", "v", DerivedKey.random(), ttl=60)
        with pytest.raises(DecryptionFailed):
            await custodian.recall_encrypted("token", DerivedKey.random())

    @pytest.mark.asyncio
    async def test_malformed_wrapper(self, custodian, session_store):
        """Test an unreadable wrapper raises MalformedEnvelope."""
        session_store.set(f"{SESSION_PREFIX}token", b"not json")
        with pytest.raises(MalformedEnvelope):
            await custodian.recall_encrypted("token", DerivedKey.random())

    @pytest.mark.asyncio
    async def test_ttl_required(self, custodian):
        """Test the session tier requires a TTL."""
        with pytest.raises(InvalidInput):
            await custodian.hold_encrypted("token", "v", "pw", ttl=None)

    @pytest.mark.asyncio
    async def test_clear_empties_both_tiers(self, custodian, session_store):
        """Test clear() empties both tiers and leaves other keys."""
        key = DerivedKey.random()
        custodian.hold("k", key)
        await custodian.hold_encrypted("token", "v", key, ttl=60)
        session_store.set("unrelated", b"keep")
        custodian.clear()
        assert key.wiped
        assert len(custodian) == 0
        assert session_store.keys() == ["unrelated"]
