"""Compatibility checker: validates consumer interactions against a provider document.

Each interaction goes through the same steps: resolve the endpoint, check
the request (path parameters, content type, Accept, headers, query,
credentials, body), then check the response (status, headers, content
type, body). Interactions share nothing but the read-only specification,
so they may be checked in parallel.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable
from urllib.parse import parse_qs

from contract_compat.checker import media
from contract_compat.checker.report import aggregate
from contract_compat.checker.resolver import resolve
from contract_compat.checker.result import Violation, ViolationCode, VerificationResult, make_violation
from contract_compat.checker.schema import SchemaMatcher
from contract_compat.config import CheckOptions
from contract_compat.errors import UnknownPathOrMethod
from contract_compat.parser.base import (
    ArraySchema,
    CompositeSchema,
    EndpointSpec,
    Interaction,
    InteractionRequest,
    MediaTypeSpec,
    ObjectSchema,
    ResponseSpec,
    Schema,
    SecurityScheme,
    Specification,
)

logger = logging.getLogger(__name__)

Code = ViolationCode

# Request headers checked by dedicated steps rather than as parameters.
HANDLED_REQUEST_HEADERS = frozenset({"content-type", "accept", "authorization", "cookie"})
FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"

_INTEGER = re.compile(r"[+-]?\d+")
_NUMBER = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


class _Findings:
    """Violations of one interaction, in discovery order."""

    def __init__(self, interaction: Interaction):
        self.interaction = interaction
        self.violations: list[Violation] = []

    def add(
        self,
        code: ViolationCode,
        message: str,
        location: str,
        spec_location: str | None = None,
        value: Any = None,
        constraint: str | None = None,
    ) -> None:
        self.violations.append(make_violation(
            code,
            message,
            interaction_index=self.interaction.index,
            interaction_description=self.interaction.description,
            interaction_location=location,
            spec_location=spec_location,
            value=value,
            constraint=constraint,
        ))

    def extend(self, violations: Iterable[Violation], prefix: str = "") -> None:
        for violation in violations:
            if prefix:
                violation = violation.model_copy(update={"message": f"{prefix} {violation.message}"})
            self.violations.append(violation)


class CompatibilityChecker:
    """Checks interactions against one loaded specification."""

    def __init__(self, spec: Specification, options: CheckOptions):
        self.spec = spec
        self.options = options
        self.matcher = SchemaMatcher(spec.definitions, options.unspecified_additional_properties)

    def check(self, interactions: Iterable[Interaction]) -> VerificationResult:
        """Check every interaction and aggregate the findings into one result."""
        interactions = list(interactions)
        if self.options.workers > 1 and len(interactions) > 1:
            with ThreadPoolExecutor(max_workers=self.options.workers) as executor:
                results = list(executor.map(self.check_interaction, interactions))
        else:
            results = [self.check_interaction(interaction) for interaction in interactions]
        return aggregate(zip(interactions, results))

    def check_interaction(self, interaction: Interaction) -> list[Violation]:
        findings = _Findings(interaction)
        request = interaction.request
        logger.debug("Checking %s: %s %s", interaction.location, request.method, request.path)

        try:
            endpoint, path_params = resolve(self.spec, request.method, request.path)
        except UnknownPathOrMethod:
            findings.add(
                Code.REQUEST_PATH_OR_METHOD_UNKNOWN,
                f"Path or method not defined in the specification: {request.method} {request.path}",
                f"{interaction.location}.request.path",
                "paths",
                value=request.path,
            )
            return findings.violations

        self._check_request(endpoint, path_params, interaction, findings)
        self._check_response(endpoint, interaction, findings)
        return findings.violations

    def _validate(
        self,
        findings: _Findings,
        value: Any,
        schema: Schema,
        location: str,
        spec_location: str,
        code: ViolationCode,
        direction: str,
        prefix: str = "",
    ) -> None:
        findings.extend(
            self.matcher.validate(
                value,
                schema,
                location,
                spec_location,
                code=code,
                interaction_index=findings.interaction.index,
                interaction_description=findings.interaction.description,
                direction=direction,
            ),
            prefix=prefix,
        )

    # Request

    def _check_request(
        self, endpoint: EndpointSpec, path_params: dict[str, str], interaction: Interaction, findings: _Findings
    ) -> None:
        request = interaction.request
        location = f"{interaction.location}.request"

        for param in endpoint.parameters_in("path"):
            if param.name not in path_params:
                continue
            value = self._coerce(path_params[param.name], param.param_schema)
            self._validate(
                findings, value, param.param_schema, f"{location}.path", param.spec_location,
                Code.REQUEST_PATH_OR_METHOD_UNKNOWN, "request", prefix=f"Path parameter '{param.name}'",
            )

        media_type = self._check_request_content_type(endpoint, request, location, findings)
        self._check_accept(endpoint, request, location, findings)
        self._check_request_headers(endpoint, request, location, findings)
        self._check_query(endpoint, request, location, findings)
        self._check_authorization(endpoint, request, location, findings)
        self._check_request_body(endpoint, request, media_type, location, findings)

    def _check_request_content_type(
        self, endpoint: EndpointSpec, request: InteractionRequest, location: str, findings: _Findings
    ) -> str | None:
        """Report content type problems; return the declared media type the body is checked against."""
        body_spec = endpoint.request_body
        declared = body_spec.content if body_spec else {}
        content_type = request.header("content-type")

        if not declared:
            if content_type is not None:
                findings.add(
                    Code.REQUEST_CONTENT_TYPE_UNKNOWN,
                    f"Request Content-Type '{content_type}' given but the operation declares no request body",
                    f"{location}.headers.content-type",
                    endpoint.spec_location,
                    value=content_type,
                )
            return None

        if content_type is None:
            if request.has_body:
                findings.add(
                    Code.REQUEST_CONTENT_TYPE_MISSING,
                    f"Request has no Content-Type header; the operation consumes {', '.join(declared)}",
                    f"{location}.headers",
                    body_spec.spec_location,
                )
            return media.preferred_media_type(declared)

        media_type = media.find_media_type(content_type, declared)
        if media_type is None:
            findings.add(
                Code.REQUEST_CONTENT_TYPE_INCOMPATIBLE,
                f"Request Content-Type '{content_type}' is not one of the consumed media types: {', '.join(declared)}",
                f"{location}.headers.content-type",
                body_spec.spec_location,
                value=content_type,
                constraint="content",
            )
        return media_type

    def _check_accept(
        self, endpoint: EndpointSpec, request: InteractionRequest, location: str, findings: _Findings
    ) -> None:
        accept = request.header("accept")
        if accept is None:
            return

        produced = endpoint.produces
        if not produced:
            findings.add(
                Code.REQUEST_ACCEPT_UNKNOWN,
                f"Request Accept header '{accept}' given but the operation declares no response body",
                f"{location}.headers.accept",
                f"{endpoint.spec_location}.responses",
                value=accept,
            )
            return

        ranges = media.parse_accept(accept)
        if not any(media.media_types_match(r, p) for r in ranges for p in produced):
            findings.add(
                Code.REQUEST_ACCEPT_INCOMPATIBLE,
                f"Request Accept header '{accept}' matches none of the produced media types: {', '.join(produced)}",
                f"{location}.headers.accept",
                f"{endpoint.spec_location}.responses",
                value=accept,
                constraint="produces",
            )

    def _credential_names(self, endpoint: EndpointSpec, where: str) -> set[str]:
        """Names of apiKey credentials the endpoint accepts in headers or query."""
        names = set()
        for alternative in endpoint.security or ():
            for scheme_name in alternative:
                scheme = self.spec.security_schemes[scheme_name]
                if scheme.scheme_type == "apiKey" and scheme.location == where and scheme.param_name:
                    names.add(scheme.param_name.lower() if where == "header" else scheme.param_name)
        return names

    def _check_request_headers(
        self, endpoint: EndpointSpec, request: InteractionRequest, location: str, findings: _Findings
    ) -> None:
        declared = {p.name.lower(): p for p in endpoint.parameters_in("header")}
        credentials = self._credential_names(endpoint, "header")

        for name, param in declared.items():
            if param.required and name not in request.headers:
                findings.add(
                    Code.REQUEST_HEADER_INCOMPATIBLE,
                    f"Request header '{param.name}' is required but missing",
                    f"{location}.headers",
                    param.spec_location,
                    constraint="required",
                )

        for name, raw in request.headers.items():
            header_location = f"{location}.headers.{name}"
            param = declared.get(name)
            if param is None:
                if name in HANDLED_REQUEST_HEADERS or name in self.options.ignored_headers or name in credentials:
                    continue
                findings.add(
                    Code.REQUEST_HEADER_UNKNOWN,
                    f"Request header '{name}' is not defined in the specification",
                    header_location,
                    f"{endpoint.spec_location}.parameters",
                    value=raw,
                )
                continue
            for value in self._parameter_values((raw,), param.param_schema):
                self._validate(
                    findings, value, param.param_schema, header_location, param.spec_location,
                    Code.REQUEST_HEADER_INCOMPATIBLE, "request", prefix=f"Request header '{name}'",
                )

    def _check_query(
        self, endpoint: EndpointSpec, request: InteractionRequest, location: str, findings: _Findings
    ) -> None:
        declared = {p.name: p for p in endpoint.parameters_in("query")}
        credentials = self._credential_names(endpoint, "query")

        for name, param in declared.items():
            if param.required and name not in request.query:
                findings.add(
                    Code.REQUEST_QUERY_INCOMPATIBLE,
                    f"Query parameter '{name}' is required but missing",
                    f"{location}.query",
                    param.spec_location,
                    constraint="required",
                )

        for name, values in request.query.items():
            query_location = f"{location}.query.{name}"
            param = declared.get(name)
            if param is None:
                if name in credentials:
                    continue
                findings.add(
                    Code.REQUEST_QUERY_UNKNOWN,
                    f"Query parameter '{name}' is not defined in the specification",
                    query_location,
                    f"{endpoint.spec_location}.parameters",
                    value=list(values),
                )
                continue
            for value in self._parameter_values(values, param.param_schema):
                self._validate(
                    findings, value, param.param_schema, query_location, param.spec_location,
                    Code.REQUEST_QUERY_INCOMPATIBLE, "request", prefix=f"Query parameter '{name}'",
                )

    def _check_authorization(
        self, endpoint: EndpointSpec, request: InteractionRequest, location: str, findings: _Findings
    ) -> None:
        if not endpoint.security:
            return
        for alternative in endpoint.security:
            if all(_has_credential(self.spec.security_schemes[name], request) for name in alternative):
                return

        required = " or ".join(" + ".join(alternative) for alternative in endpoint.security)
        findings.add(
            Code.REQUEST_AUTHORIZATION_MISSING,
            f"Request is missing the credentials required by security scheme {required}",
            f"{location}.headers",
            f"{endpoint.spec_location}.security",
        )

    def _check_request_body(
        self,
        endpoint: EndpointSpec,
        request: InteractionRequest,
        media_type: str | None,
        location: str,
        findings: _Findings,
    ) -> None:
        body_spec = endpoint.request_body
        declared = body_spec.content if body_spec else {}

        if not request.has_body:
            if body_spec is not None and body_spec.required:
                findings.add(
                    Code.REQUEST_BODY_INCOMPATIBLE,
                    "Request body is required but the interaction has none",
                    f"{location}.body",
                    f"{body_spec.spec_location}.required",
                    constraint="required",
                )
            return

        if not declared:
            findings.add(
                Code.REQUEST_BODY_UNKNOWN,
                "Request body given but the operation declares no request body schema",
                f"{location}.body",
                endpoint.spec_location,
            )
            return
        if media_type is None:
            # Content type was incompatible and has already been reported.
            return

        media_spec = declared[media_type]
        body = self._decode_body(request.body, media_type, media_spec)
        self._validate(
            findings, body, media_spec.media_schema, f"{location}.body", media_spec.spec_location,
            Code.REQUEST_BODY_INCOMPATIBLE, "request",
        )

    # Response

    def _check_response(self, endpoint: EndpointSpec, interaction: Interaction, findings: _Findings) -> None:
        response = interaction.response
        location = f"{interaction.location}.response"

        spec_response, only_default = find_response(endpoint, response.status)
        if spec_response is None:
            findings.add(
                Code.RESPONSE_STATUS_UNKNOWN,
                f"Response status {response.status} is not defined for {endpoint.method} {endpoint.path}",
                f"{location}.status",
                f"{endpoint.spec_location}.responses",
                value=response.status,
            )
            return
        if only_default:
            findings.add(
                Code.RESPONSE_STATUS_DEFAULT,
                f"Response status {response.status} is only covered by the default response",
                f"{location}.status",
                spec_response.spec_location,
                value=response.status,
            )

        for name, raw in response.headers.items():
            if name == "content-type" or name in self.options.ignored_headers:
                continue
            header_location = f"{location}.headers.{name}"
            spec_header = spec_response.headers.get(name)
            if spec_header is None:
                findings.add(
                    Code.RESPONSE_HEADER_UNKNOWN,
                    f"Response header '{name}' is not defined in the specification",
                    header_location,
                    f"{spec_response.spec_location}.headers",
                    value=raw,
                )
                continue
            for value in self._parameter_values((raw,), spec_header.param_schema):
                self._validate(
                    findings, value, spec_header.param_schema, header_location, spec_header.spec_location,
                    Code.RESPONSE_HEADER_INCOMPATIBLE, "response", prefix=f"Response header '{name}'",
                )

        self._check_response_content(spec_response, interaction, location, findings)

    def _check_response_content(
        self, spec_response: ResponseSpec, interaction: Interaction, location: str, findings: _Findings
    ) -> None:
        response = interaction.response
        declared = spec_response.content
        content_type = response.header("content-type")

        if not declared:
            if content_type is not None:
                findings.add(
                    Code.RESPONSE_CONTENT_TYPE_UNKNOWN,
                    f"Response Content-Type '{content_type}' given but the {spec_response.status} response "
                    "declares no content",
                    f"{location}.headers.content-type",
                    spec_response.spec_location,
                    value=content_type,
                )
            if response.has_body:
                findings.add(
                    Code.RESPONSE_BODY_UNKNOWN,
                    f"Response body given but the {spec_response.status} response declares no body schema",
                    f"{location}.body",
                    spec_response.spec_location,
                )
            return

        if content_type is None:
            media_type = media.preferred_media_type(declared)
        else:
            media_type = media.find_media_type(content_type, declared)
            if media_type is None:
                findings.add(
                    Code.RESPONSE_CONTENT_TYPE_INCOMPATIBLE,
                    f"Response Content-Type '{content_type}' is not one of the produced media types: "
                    f"{', '.join(declared)}",
                    f"{location}.headers.content-type",
                    f"{spec_response.spec_location}.content",
                    value=content_type,
                    constraint="content",
                )
                return

        if response.has_body and media_type is not None:
            media_spec = declared[media_type]
            body = self._decode_body(response.body, media_type, media_spec)
            self._validate(
                findings, body, media_spec.media_schema, f"{location}.body", media_spec.spec_location,
                Code.RESPONSE_BODY_INCOMPATIBLE, "response",
            )

    # Value coercion

    def _coerce(self, raw: str, schema: Schema) -> Any:
        """Convert a string parameter value to the type its schema declares."""
        schema = self.matcher.resolve(schema)
        if isinstance(schema, ArraySchema):
            return [self._coerce(part.strip(), schema.items) for part in raw.split(",")] if raw else []
        if isinstance(schema, CompositeSchema):
            for child in schema.children:
                value = self._coerce(raw, child)
                if self.matcher.matches(value, child):
                    return value
            return raw

        if schema.kind == "integer" and _INTEGER.fullmatch(raw):
            return int(raw)
        if schema.kind == "number" and _NUMBER.fullmatch(raw):
            return int(raw) if _INTEGER.fullmatch(raw) else float(raw)
        if schema.kind == "boolean" and raw.lower() in ("true", "false"):
            return raw.lower() == "true"
        if schema.kind == "null" and raw in ("", "null"):
            return None
        return raw

    def _parameter_values(self, values: tuple[str, ...], schema: Schema) -> list[Any]:
        """Values to validate one by one: a single list for array schemas, else each value."""
        if isinstance(self.matcher.resolve(schema), ArraySchema):
            if len(values) == 1:
                return [self._coerce(values[0], schema)]
            items = self.matcher.resolve(schema).items
            return [[self._coerce(value, items) for value in values]]
        return [self._coerce(value, schema) for value in values]

    def _decode_body(self, body: Any, media_type: str, media_spec: MediaTypeSpec) -> Any:
        """Form bodies are recorded as strings; turn them into objects of typed fields."""
        if not isinstance(body, str) or media.parse_media_type(media_type) != FORM_MEDIA_TYPE:
            return body

        schema = self.matcher.resolve(media_spec.media_schema)
        properties = schema.properties if isinstance(schema, ObjectSchema) else {}
        decoded = {}
        for name, values in parse_qs(body, keep_blank_values=True).items():
            if name in properties:
                coerced = self._parameter_values(tuple(values), properties[name])
                decoded[name] = coerced[0] if len(coerced) == 1 else coerced
            else:
                decoded[name] = values[0] if len(values) == 1 else values
        return decoded


def find_response(endpoint: EndpointSpec, status: int) -> tuple[ResponseSpec | None, bool]:
    """The response definition for status, and whether only 'default' covered it."""
    key = str(status)
    if key in endpoint.responses:
        return endpoint.responses[key], False
    range_key = f"{key[0]}XX"
    if range_key in endpoint.responses:
        return endpoint.responses[range_key], False
    if "default" in endpoint.responses:
        return endpoint.responses["default"], True
    return None, False


def _has_credential(scheme: SecurityScheme, request: InteractionRequest) -> bool:
    if scheme.scheme_type == "apiKey":
        name = scheme.param_name or ""
        if scheme.location == "query":
            return name in request.query
        if scheme.location == "cookie":
            cookies = request.header("cookie") or ""
            return any(part.strip().startswith(f"{name}=") for part in cookies.split(";"))
        return request.header(name) is not None
    return request.header("authorization") is not None


def check(spec: Specification, interactions: Iterable[Interaction], options: CheckOptions) -> VerificationResult:
    """Check interactions against spec and return the verification result."""
    return CompatibilityChecker(spec, options).check(interactions)
