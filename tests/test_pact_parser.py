import base64
from pathlib import Path

import pytest

from contract_compat.errors import MalformedInteraction
from contract_compat.parser.pact import load_interaction, load_pact, load_pact_file

FIXTURES = Path(__file__).parent / "fixtures"


def _record(**overrides) -> dict:
    record = {
        "description": "a request",
        "request": {"method": "get", "path": "/users"},
        "response": {"status": 200},
    }
    record.update(overrides)
    return record


class TestPactV2:
    def test_parse_interactions_count(self):
        contract = load_pact_file(FIXTURES / "pact-v2.json")
        assert contract.consumer == "user-web"
        assert contract.provider == "user-api"
        assert len(contract.interactions) == 4

    def test_parse_request(self):
        contract = load_pact_file(FIXTURES / "pact-v2.json")
        interaction = contract.interactions[0]
        assert interaction.index == 0
        assert interaction.description == "a request to create a user"
        assert interaction.provider_state == "no users exist"
        assert interaction.request.method == "POST"
        assert interaction.request.headers == {"content-type": "application/json"}
        assert interaction.request.body["email"] == "john.doe@example.com"

    def test_parse_response(self):
        contract = load_pact_file(FIXTURES / "pact-v2.json")
        response = contract.interactions[0].response
        assert response.status == 201
        assert response.header("Content-Type") == "application/json; charset=utf-8"
        assert response.has_body is True

    def test_absent_body(self):
        contract = load_pact_file(FIXTURES / "pact-v2.json")
        request = contract.interactions[3].request
        assert request.has_body is False
        assert request.body is None


class TestPactV3:
    def test_query_mapping(self):
        contract = load_pact_file(FIXTURES / "pact-v3.json")
        assert contract.interactions[0].request.query == {"limit": ("10",)}

    def test_provider_states_joined(self):
        contract = load_pact_file(FIXTURES / "pact-v3.json")
        assert contract.interactions[0].provider_state == "users exist, caller is an admin"


class TestPactV4:
    def test_message_interactions_skipped(self):
        contract = load_pact_file(FIXTURES / "pact-v4.json")
        assert [i.index for i in contract.interactions] == [0, 2]

    def test_body_content_unwrapped(self):
        contract = load_pact_file(FIXTURES / "pact-v4.json")
        request = contract.interactions[0].request
        assert request.body == {"name": "John Doe", "age": 30, "email": "john.doe@example.com"}
        assert request.header("content-type") == "application/json"
        assert contract.interactions[1].response.body == []

    def test_base64_json_body_decoded(self):
        encoded = base64.b64encode(b'{"name": "Jane", "age": 41}').decode("ascii")
        record = _record(request={
            "method": "POST",
            "path": "/users",
            "body": {"content": encoded, "contentType": "application/json", "encoded": "base64"},
        })
        request = load_interaction(record, 0, v4=True).request
        assert request.body == {"name": "Jane", "age": 41}
        assert request.header("content-type") == "application/json"

    def test_base64_text_body_decoded(self):
        record = _record(response={
            "status": 200,
            "body": {"content": base64.b64encode(b"pong").decode("ascii"), "contentType": "text/plain", "encoded": "base64"},
        })
        assert load_interaction(record, 0, v4=True).response.body == "pong"

    def test_base64_binary_body_kept_encoded(self):
        encoded = base64.b64encode(b"\x89PNG\r\n\x1a\n\xff").decode("ascii")
        record = _record(response={
            "status": 200,
            "body": {"content": encoded, "contentType": "image/png", "encoded": "base64"},
        })
        assert load_interaction(record, 0, v4=True).response.body == encoded

    def test_invalid_base64_body(self):
        record = _record(request={
            "method": "POST",
            "path": "/users",
            "body": {"content": "not base64!", "contentType": "text/plain", "encoded": "base64"},
        })
        with pytest.raises(MalformedInteraction) as info:
            load_interaction(record, 3, v4=True)
        assert info.value.location == "interaction[3].request.body"


class TestInteractionRecords:
    def test_method_upper_cased(self):
        assert load_interaction(_record(), 0).request.method == "GET"

    def test_query_string(self):
        record = _record(request={"method": "GET", "path": "/users", "query": "tag=a&tag=b&empty="})
        assert load_interaction(record, 0).request.query == {"tag": ("a", "b"), "empty": ("",)}

    def test_header_names_lower_cased_and_lists_joined(self):
        record = _record(request={
            "method": "GET",
            "path": "/users",
            "headers": {"X-Tags": ["a", "b"], "Accept": "application/json"},
        })
        request = load_interaction(record, 0).request
        assert request.headers == {"x-tags": "a, b", "accept": "application/json"}

    def test_null_body_is_present(self):
        record = _record(response={"status": 200, "body": None})
        response = load_interaction(record, 0).response
        assert response.has_body is True
        assert response.body is None

    def test_string_status(self):
        assert load_interaction(_record(response={"status": "404"}), 0).response.status == 404

    @pytest.mark.parametrize("status", [None, 99, 600, "ok", True])
    def test_invalid_status(self, status):
        with pytest.raises(MalformedInteraction, match="HTTP status"):
            load_interaction(_record(response={"status": status}), 2)

    def test_missing_method(self):
        with pytest.raises(MalformedInteraction) as info:
            load_interaction(_record(request={"path": "/users"}), 1)
        assert info.value.location == "interaction[1].request.method"

    def test_relative_path(self):
        with pytest.raises(MalformedInteraction, match="must start with '/'"):
            load_interaction(_record(request={"method": "GET", "path": "users"}), 0)

    def test_missing_response(self):
        record = _record()
        del record["response"]
        with pytest.raises(MalformedInteraction, match="must contain a response"):
            load_interaction(record, 0)


class TestMalformedPacts:
    def test_interactions_required(self):
        with pytest.raises(MalformedInteraction):
            load_pact({"consumer": {"name": "a"}})

    def test_invalid_json(self, tmp_path):
        f = tmp_path / "pact.json"
        f.write_text('{"interactions": [')
        with pytest.raises(MalformedInteraction, match="cannot parse"):
            load_pact_file(f)
