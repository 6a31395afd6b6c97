import pytest
from pydantic import ValidationError

from contract_compat.checker.result import Severity, VerificationResult, ViolationCode, make_violation
from contract_compat.config import AdditionalPropertiesPolicy, CheckOptions
from contract_compat.errors import MalformedSpecification, UnknownPathOrMethod
from contract_compat.parser.base import (
    AnySchema,
    CompositeSchema,
    Interaction,
    InteractionRequest,
    InteractionResponse,
    ObjectSchema,
    StringSchema,
)


class TestCheckOptions:
    def test_policy_is_required(self):
        with pytest.raises(ValidationError):
            CheckOptions()

    def test_policy_from_string(self):
        options = CheckOptions(unspecified_additional_properties="strict")
        assert options.unspecified_additional_properties is AdditionalPropertiesPolicy.STRICT
        assert options.workers == 1

    def test_workers_must_be_positive(self):
        with pytest.raises(ValidationError):
            CheckOptions(unspecified_additional_properties="permissive", workers=0)

    def test_ignored_headers_lower_cased(self):
        options = CheckOptions(unspecified_additional_properties="permissive", ignored_headers={"X-Trace-Id"})
        assert options.ignored_headers == frozenset({"x-trace-id"})


class TestSchemaModels:
    def test_undeclared_additional_properties_is_none(self):
        schema = ObjectSchema(properties={"name": StringSchema()})
        assert schema.additional_properties is None

    def test_additional_properties_false_kept(self):
        schema = ObjectSchema(additional_properties=False)
        assert schema.additional_properties is False

    def test_schema_union_discriminated_by_kind(self):
        schema = CompositeSchema(
            operator="oneOf",
            children=[{"kind": "string", "min_length": 1}, {"kind": "integer"}],
        )
        assert isinstance(schema.children[0], StringSchema)
        assert schema.children[1].kind == "integer"

    def test_schemas_are_frozen(self):
        schema = AnySchema()
        with pytest.raises(ValidationError):
            schema.nullable = True


class TestInteractionModels:
    def test_absent_body_differs_from_null_body(self):
        absent = InteractionResponse(status=204)
        null = InteractionResponse(status=200, body=None)
        assert absent.has_body is False
        assert null.has_body is True
        assert null.body is None

    def test_header_lookup_is_case_insensitive(self):
        request = InteractionRequest(method="GET", path="/users", headers={"content-type": "application/json"})
        assert request.header("Content-Type") == "application/json"
        assert request.header("Accept") is None

    def test_interaction_location(self):
        interaction = Interaction(
            index=3,
            request=InteractionRequest(method="GET", path="/users"),
            response=InteractionResponse(status=200),
        )
        assert interaction.location == "interaction[3]"


class TestViolations:
    def test_severity_follows_code(self):
        assert ViolationCode.REQUEST_BODY_INCOMPATIBLE.severity is Severity.ERROR
        assert ViolationCode.REQUEST_HEADER_UNKNOWN.severity is Severity.WARNING
        assert ViolationCode.RESPONSE_STATUS_DEFAULT.severity is Severity.WARNING
        assert ViolationCode.REQUEST_AUTHORIZATION_MISSING.severity is Severity.ERROR

    def test_taxonomy_size(self):
        assert len(ViolationCode) == 21

    def test_make_violation(self):
        v = make_violation(
            ViolationCode.REQUEST_BODY_INCOMPATIBLE,
            "must have required property 'email'",
            interaction_index=1,
            interaction_location="interaction[1].request.body",
            spec_location="paths./users.post.requestBody.content.application/json.schema.required",
            constraint="required",
        )
        assert v.severity is Severity.ERROR
        assert v.interaction_description == ""

    def test_result_splits_errors_and_warnings(self):
        error = make_violation(ViolationCode.RESPONSE_STATUS_UNKNOWN, "x", interaction_index=0, interaction_location="a")
        warning = make_violation(ViolationCode.REQUEST_QUERY_UNKNOWN, "y", interaction_index=0, interaction_location="b")
        result = VerificationResult(success=False, interaction_count=1, violations=(error, warning))
        assert result.errors == [error]
        assert result.warnings == [warning]


class TestErrors:
    def test_malformed_specification_carries_location(self):
        e = MalformedSpecification("unresolved reference #/components/schemas/Nope", "paths./users.post")
        assert e.location == "paths./users.post"
        assert str(e).startswith("paths./users.post: ")

    def test_unknown_path_or_method(self):
        e = UnknownPathOrMethod("GET", "/users/999")
        assert e.method == "GET"
        assert "GET /users/999" in str(e)
