"""
Session state serialization.
"""

import pytest

from latchkey.sessions.faults import SessionSerializationFault, SessionStoreCorruptedFault
from latchkey.sessions.serializer import deserialize, serialize


class TestSerialize:

    def test_supported_values(self):
        state = {
            "name": "ada",
            "count": 3,
            "ratio": 0.5,
            "admin": False,
            "nothing": None,
            "cart": [1, {"sku": "x-1", "qty": 2}],
            "prefs": {"theme": {"dark": True}},
        }
        assert deserialize(serialize(state)) == state

    def test_compact_utf8(self):
        assert serialize({"k": "ü"}) == '{"k":"ü"}'.encode("utf-8")

    def test_empty_state(self):
        assert serialize({}) == b"{}"

    def test_tuples_become_lists(self):
        assert deserialize(serialize({"t": (1, 2)})) == {"t": [1, 2]}

    @pytest.mark.parametrize("state", [{1: "a"}, {"nested": {2: "b"}}, {"list": [{None: 1}]}])
    def test_non_string_keys(self, state):
        with pytest.raises(SessionSerializationFault):
            serialize(state)

    def test_unsupported_value(self):
        with pytest.raises(SessionSerializationFault) as exc:
            serialize({"obj": object()})
        assert exc.value.code == "SESSION_SERIALIZATION_FAILED"

    def test_circular_reference(self):
        state = {}
        state["self"] = [state]
        with pytest.raises(SessionSerializationFault):
            serialize({"loop": state["self"]})

    def test_not_a_mapping(self):
        with pytest.raises(SessionSerializationFault):
            serialize(["a", "b"])


class TestDeserialize:

    def test_empty_payload_is_empty_session(self):
        assert deserialize(b"") == {}

    @pytest.mark.parametrize("payload", [b"{not json", b"\xff\xfe", b"[1, 2]", b'"text"', b"42"])
    def test_corrupt_payload(self, payload):
        with pytest.raises(SessionStoreCorruptedFault):
            deserialize(payload)
