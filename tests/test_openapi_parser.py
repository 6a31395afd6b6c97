from pathlib import Path

import pytest

from contract_compat.errors import MalformedSpecification
from contract_compat.parser.base import (
    AnySchema,
    ArraySchema,
    CompositeSchema,
    NumberSchema,
    ObjectSchema,
    RefSchema,
    StringSchema,
)
from contract_compat.parser.detect import detect_file_format, detect_format
from contract_compat.parser.openapi import load_specification, load_specification_file, normalize_template

FIXTURES = Path(__file__).parent / "fixtures"


def _document(paths: dict, **extra) -> dict:
    return {"openapi": "3.0.3", "info": {"title": "Test", "version": "1"}, "paths": paths, **extra}


def _body_schema(schema: dict, **extra):
    spec = load_specification(_document({
        "/things": {
            "post": {
                "requestBody": {"content": {"application/json": {"schema": schema}}},
                "responses": {"204": {"description": "ok"}},
            }
        }
    }, **extra))
    return spec, spec.endpoints[("/things", "POST")].request_body.content["application/json"].media_schema


class TestDetectFormat:
    def test_detect_openapi_yaml(self):
        assert detect_file_format(FIXTURES / "users-v1.yaml") == "openapi"

    def test_detect_swagger_yaml(self):
        assert detect_file_format(FIXTURES / "petstore-swagger.yaml") == "swagger"

    def test_detect_pact_json(self):
        assert detect_file_format(FIXTURES / "pact-v2.json") == "pact"

    def test_detect_unknown(self, tmp_path):
        f = tmp_path / "doc.md"
        f.write_text("# API Docs\nSome text")
        assert detect_file_format(f) == "unknown"
        assert detect_format(["not", "a", "mapping"]) == "unknown"

    def test_detect_unparseable_file(self, tmp_path):
        f = tmp_path / "broken.yaml"
        f.write_text("paths: [unclosed")
        assert detect_file_format(f) == "unknown"


class TestOpenApiLoader:
    def test_load_users_endpoints(self):
        spec = load_specification_file(FIXTURES / "users-v1.yaml")
        assert spec.title == "User Management API"
        assert spec.version == "1.0.0"
        assert set(spec.endpoints) == {("/users", "POST"), ("/users", "GET")}

    def test_request_body_ref_is_inlined(self):
        spec = load_specification_file(FIXTURES / "users-v1.yaml")
        body = spec.endpoints[("/users", "POST")].request_body
        assert body.required is True
        media = body.content["application/json"]
        assert media.spec_location == "paths./users.post.requestBody.content.application/json.schema"
        schema = media.media_schema
        assert isinstance(schema, ObjectSchema)
        assert schema.required == ("name", "age", "email")
        assert schema.additional_properties is False
        assert isinstance(schema.properties["email"], StringSchema)
        assert schema.properties["email"].format == "email"

    def test_undeclared_additional_properties_preserved(self):
        spec = load_specification_file(FIXTURES / "users-v1.yaml")
        error = spec.endpoints[("/users", "POST")].responses["400"].content["application/json"].media_schema
        assert error.additional_properties is None

    def test_query_parameter(self):
        spec = load_specification_file(FIXTURES / "users-v1.yaml")
        endpoint = spec.endpoints[("/users", "GET")]
        [limit] = endpoint.parameters_in("query")
        assert limit.name == "limit"
        assert limit.required is False
        assert isinstance(limit.param_schema, NumberSchema)
        assert limit.param_schema.kind == "integer"
        assert limit.param_schema.maximum == 100
        assert limit.spec_location == "paths./users.get.parameters.0.schema"

    def test_produces(self):
        spec = load_specification_file(FIXTURES / "users-v1.yaml")
        assert spec.endpoints[("/users", "POST")].produces == ["application/json"]

    def test_server_base_paths(self):
        spec = load_specification(_document({}, servers=[
            {"url": "https://api.example.com/v1"},
            {"url": "http://localhost:8080"},
            {"url": "https://{region}.example.com/{version}"},
        ]))
        assert spec.base_paths == ("/v1",)

    def test_path_level_parameters_overridden_by_operation(self):
        spec = load_specification(_document({
            "/users/{id}": {
                "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}],
                "get": {
                    "parameters": [{"name": "id", "in": "path", "required": True, "schema": {"type": "integer"}}],
                    "responses": {"200": {"description": "ok"}},
                },
            }
        }))
        [param] = spec.endpoints[("/users/{id}", "GET")].parameters
        assert param.param_schema.kind == "integer"
        assert param.spec_location == "paths./users/{id}.get.parameters.0.schema"

    def test_reserved_header_parameters_ignored(self):
        spec = load_specification(_document({
            "/users": {
                "get": {
                    "parameters": [
                        {"name": "Accept", "in": "header", "schema": {"type": "string"}},
                        {"name": "X-Request-Id", "in": "header", "schema": {"type": "string"}},
                    ],
                    "responses": {"200": {"description": "ok"}},
                }
            }
        }))
        assert [p.name for p in spec.endpoints[("/users", "GET")].parameters] == ["X-Request-Id"]

    def test_response_keys_normalized(self):
        spec = load_specification(_document({
            "/users": {"get": {"responses": {"2xx": {"description": "ok"}, "default": {"description": "error"}}}}
        }))
        assert set(spec.endpoints[("/users", "GET")].responses) == {"2XX", "default"}

    def test_response_headers_keyed_lower_case(self):
        spec = load_specification(_document({
            "/users": {
                "get": {
                    "responses": {
                        "200": {
                            "description": "ok",
                            "headers": {"X-Rate-Limit": {"schema": {"type": "integer"}}},
                        }
                    }
                }
            }
        }))
        headers = spec.endpoints[("/users", "GET")].responses["200"].headers
        assert headers["x-rate-limit"].name == "X-Rate-Limit"
        assert headers["x-rate-limit"].spec_location == "paths./users.get.responses.200.headers.X-Rate-Limit.schema"

    def test_security_requirements(self):
        spec = load_specification(_document(
            {
                "/users": {"get": {"responses": {"200": {"description": "ok"}}}},
                "/health": {"get": {"security": [], "responses": {"200": {"description": "ok"}}}},
            },
            components={"securitySchemes": {
                "bearer": {"type": "http", "scheme": "bearer"},
                "key": {"type": "apiKey", "in": "query", "name": "api_key"},
            }},
            security=[{"bearer": []}, {"key": []}],
        ))
        assert spec.endpoints[("/users", "GET")].security == ({"bearer": ()}, {"key": ()})
        assert spec.endpoints[("/health", "GET")].security == ()
        assert spec.security_schemes["key"].param_name == "api_key"


class TestSchemaBuilding:
    def test_nullable_type_list(self):
        _, schema = _body_schema({"type": ["string", "null"]})
        assert isinstance(schema, StringSchema)
        assert schema.nullable is True

    def test_multiple_types_become_inline_any_of(self):
        _, schema = _body_schema({"type": ["string", "integer"]})
        assert isinstance(schema, CompositeSchema)
        assert schema.operator == "anyOf"
        assert schema.inline is True

    def test_type_inferred_from_keywords(self):
        _, schema = _body_schema({"properties": {"id": {"maxLength": 3}}})
        assert isinstance(schema, ObjectSchema)
        assert isinstance(schema.properties["id"], StringSchema)

    def test_const_becomes_enum(self):
        _, schema = _body_schema({"type": "string", "const": "fixed"})
        assert schema.enum == ("fixed",)

    def test_boolean_exclusive_bounds(self):
        _, schema = _body_schema({"type": "number", "minimum": 0, "exclusiveMinimum": True, "maximum": 10})
        assert schema.exclusive_minimum == 0
        assert schema.minimum is None
        assert schema.maximum == 10

    def test_sole_composition_keyword(self):
        _, schema = _body_schema({"oneOf": [{"type": "string"}, {"type": "integer"}], "nullable": True})
        assert isinstance(schema, CompositeSchema)
        assert schema.operator == "oneOf"
        assert schema.nullable is True
        assert schema.inline is False

    def test_type_with_composition_keyword(self):
        _, schema = _body_schema({"type": "object", "allOf": [{"required": ["a"]}]})
        assert schema.operator == "allOf"
        assert schema.inline is True
        assert isinstance(schema.children[0], ObjectSchema)
        assert schema.children[1].operator == "allOf"

    def test_additional_properties_schema(self):
        _, schema = _body_schema({"type": "object", "additionalProperties": {"type": "integer"}})
        assert isinstance(schema.additional_properties, NumberSchema)

    def test_array_without_items(self):
        _, schema = _body_schema({"type": "array"})
        assert isinstance(schema, ArraySchema)
        assert isinstance(schema.items, AnySchema)

    def test_recursive_reference_becomes_back_reference(self):
        spec, schema = _body_schema(
            {"$ref": "#/components/schemas/Node"},
            components={"schemas": {"Node": {
                "type": "object",
                "properties": {"children": {"type": "array", "items": {"$ref": "#/components/schemas/Node"}}},
            }}},
        )
        assert isinstance(schema, ObjectSchema)
        assert isinstance(schema.properties["children"].items, RefSchema)
        assert spec.definitions["#/components/schemas/Node"] == schema

    def test_escaped_pointer(self):
        _, schema = _body_schema(
            {"$ref": "#/components/schemas/a~1b"},
            components={"schemas": {"a/b": {"type": "boolean"}}},
        )
        assert schema.kind == "boolean"


class TestMalformedSpecifications:
    def test_unsupported_version(self):
        with pytest.raises(MalformedSpecification, match="unsupported OpenAPI version"):
            load_specification({"openapi": "2.5.0", "paths": {}})

    def test_missing_version(self):
        with pytest.raises(MalformedSpecification):
            load_specification({"paths": {}})

    def test_unresolved_reference(self):
        with pytest.raises(MalformedSpecification, match="unresolved reference") as info:
            _body_schema({"$ref": "#/components/schemas/Missing"})
        assert info.value.location == "paths./things.post.requestBody.content.application/json.schema"

    def test_remote_reference_rejected(self):
        with pytest.raises(MalformedSpecification, match="only local references"):
            _body_schema({"$ref": "other.yaml#/User"})

    def test_unknown_type(self):
        with pytest.raises(MalformedSpecification, match="unknown schema type 'text'"):
            _body_schema({"type": "text"})

    def test_invalid_pattern(self):
        with pytest.raises(MalformedSpecification, match="invalid pattern"):
            _body_schema({"type": "string", "pattern": "(["})

    def test_invalid_additional_properties(self):
        with pytest.raises(MalformedSpecification):
            _body_schema({"type": "object", "additionalProperties": "yes"})

    def test_invalid_status_key(self):
        with pytest.raises(MalformedSpecification, match="invalid response status"):
            load_specification(_document({"/users": {"get": {"responses": {"600": {"description": "?"}}}}}))

    def test_duplicate_templates(self):
        with pytest.raises(MalformedSpecification, match="duplicates"):
            load_specification(_document({
                "/users/{id}": {"get": {"responses": {"200": {"description": "ok"}}}},
                "/users/{userId}": {"get": {"responses": {"200": {"description": "ok"}}}},
            }))

    def test_path_must_start_with_slash(self):
        with pytest.raises(MalformedSpecification):
            load_specification(_document({"users": {}}))

    def test_unknown_security_scheme(self):
        with pytest.raises(MalformedSpecification, match="unknown security scheme"):
            load_specification(_document(
                {"/users": {"get": {"security": [{"nope": []}], "responses": {"200": {"description": "ok"}}}}}
            ))

    def test_unparseable_file(self, tmp_path):
        f = tmp_path / "spec.yaml"
        f.write_text("openapi: [3.0")
        with pytest.raises(MalformedSpecification, match="cannot parse"):
            load_specification_file(f)


class TestSwaggerLoader:
    def test_base_path(self):
        spec = load_specification_file(FIXTURES / "petstore-swagger.yaml")
        assert spec.base_paths == ("/api",)

    def test_body_parameter_becomes_request_body(self):
        spec = load_specification_file(FIXTURES / "petstore-swagger.yaml")
        endpoint = spec.endpoints[("/pets", "POST")]
        assert endpoint.parameters == ()
        body = endpoint.request_body
        assert body.required is True
        assert list(body.content) == ["application/json"]
        assert body.content["application/json"].spec_location == "paths./pets.post.parameters.0.schema"

    def test_form_data_parameters(self):
        spec = load_specification_file(FIXTURES / "petstore-swagger.yaml")
        body = spec.endpoints[("/pets/{petId}/photo", "POST")].request_body
        schema = body.content["application/x-www-form-urlencoded"].media_schema
        assert isinstance(schema, ObjectSchema)
        assert schema.required == ("caption",)
        assert schema.properties["width"].minimum == 1

    def test_query_array_parameter(self):
        spec = load_specification_file(FIXTURES / "petstore-swagger.yaml")
        tags = spec.endpoints[("/pets", "GET")].parameters_in("query")[0]
        assert isinstance(tags.param_schema, ArraySchema)

    def test_responses_use_produces(self):
        spec = load_specification_file(FIXTURES / "petstore-swagger.yaml")
        responses = spec.endpoints[("/pets", "GET")].responses
        assert list(responses["200"].content) == ["application/json"]
        assert responses["200"].headers["x-total-count"].param_schema.kind == "integer"
        assert spec.endpoints[("/pets/{petId}", "DELETE")].responses["204"].content == {}

    def test_security_definitions(self):
        spec = load_specification_file(FIXTURES / "petstore-swagger.yaml")
        scheme = spec.security_schemes["api_key"]
        assert scheme.scheme_type == "apiKey"
        assert scheme.location == "header"
        assert spec.endpoints[("/pets", "GET")].security is None


class TestNormalizeTemplate:
    def test_placeholder_names_ignored(self):
        assert normalize_template("/users/{id}/posts/{postId}") == normalize_template("/users/{uid}/posts/{p}")
