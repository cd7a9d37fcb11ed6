"""
Tests for the vault payload codec.

Tests cover:
- Serialization shape and camelCase field names
- Order preservation
- Strict rejection of malformed payloads
- Secret masking outside the payload
"""
import orjson
import pytest

from zk_vault.codec import CredentialRecord, CustomField, deserialize, serialize
from zk_vault.exceptions import CorruptVault


@pytest.fixture
def records():
    return [
        CredentialRecord(
            title="Mail",
            password="pa55word",
            username="alice",
            custom_fields=[CustomField(label="pin", value="1234")],
        ),
        CredentialRecord(title="Bank", password="s3cret", website="https://bank.example"),
    ]


class TestSerialize:
    """Tests for serialize."""

    def test_empty_vault(self):
        """Test an empty vault serializes to an empty records list."""
        assert orjson.loads(serialize([])) == {"passwords": []}

    def test_camel_case_and_secret_in_clear(self, records):
        """Test payload keys are camelCase and the secret is written out."""
        item = orjson.loads(serialize(records))["passwords"][0]
        assert item["password"] == "pa55word"
        assert item["customFields"] == [{"label": "pin", "value": "1234"}]
        assert "createdAt" in item and "updatedAt" in item

    def test_round_trip_preserves_order(self, records):
        """Test records come back in the order they were written."""
        decoded = deserialize(serialize(records))
        assert [r.title for r in decoded] == ["Mail", "Bank"]
        assert decoded[0].secret.get_secret_value() == "pa55word"
        assert decoded[0].id == records[0].id

    def test_secret_hidden_in_repr(self, records):
        """Test the secret is masked in repr()."""
        assert "pa55word" not in repr(records[0])


class TestDeserialize:
    """Tests for deserialize."""

    @pytest.mark.parametrize("payload", [
        b"not json",
        b"[]",
        b'{"passwords": {}}',
        b'{"passwords": [], "extra": 1}',
        b'{"items": []}',
        b'{"passwords": [1]}',
        b'{"passwords": [{"title": "no secret"}]}',
        b'{"passwords": [{"title": "t", "password": "p", "unknown": 1}]}',
    ])
    def test_rejects(self, payload):
        """Test malformed payloads raise CorruptVault."""
        with pytest.raises(CorruptVault):
            deserialize(payload)

    def test_snake_case_accepted(self):
        """Test field names are also accepted in snake_case."""
        payload = orjson.dumps({"passwords": [{
            "title": "t", "password": "p", "custom_fields": [],
        }]})
        assert deserialize(payload)[0].custom_fields == []

    def test_validation_error_does_not_leak_values(self, caplog):
        """Test rejected values appear neither in the error nor in the log."""
        payload = orjson.dumps({"passwords": [{"title": 5, "password": "topsecret"}]})
        with pytest.raises(CorruptVault) as exc:
            deserialize(payload)
        assert "topsecret" not in str(exc.value)
        assert "topsecret" not in caplog.text
