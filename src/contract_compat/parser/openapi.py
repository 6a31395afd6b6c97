"""OpenAPI / Swagger document loader.

Loads OpenAPI 3.x and Swagger 2.0 documents into a Specification,
resolving local $ref pointers and converting raw JSON Schema
dictionaries into typed Schema trees.
"""

import logging
import re
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import yaml
from pydantic import ValidationError

from contract_compat.errors import MalformedSpecification
from contract_compat.parser.base import (
    AnySchema,
    ArraySchema,
    BodySpec,
    BooleanSchema,
    CompositeSchema,
    EndpointSpec,
    MediaTypeSpec,
    NullSchema,
    NumberSchema,
    ObjectSchema,
    ParameterSpec,
    RefSchema,
    ResponseSpec,
    Schema,
    SecurityScheme,
    Specification,
    StringSchema,
)
from contract_compat.parser.detect import read_document

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")
SCHEMA_TYPES = ("object", "array", "string", "number", "integer", "boolean", "null", "file")
PARAMETER_LOCATIONS = ("path", "query", "header", "cookie")
# Header parameters with these names are ignored by OpenAPI 3.
RESERVED_HEADER_PARAMS = ("accept", "content-type", "authorization")

_PLACEHOLDER = re.compile(r"\{[^{}/]+\}")
_STATUS_KEY = re.compile(r"[1-5](\d\d|XX)")

_OBJECT_KEYWORDS = ("properties", "additionalProperties", "required", "minProperties", "maxProperties")
_STRING_KEYWORDS = ("minLength", "maxLength", "pattern")
_NUMBER_KEYWORDS = ("minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum", "multipleOf")
_SWAGGER_PARAM_KEYS = ("name", "in", "required", "description", "collectionFormat", "allowEmptyValue")


def load_specification(document: Any) -> Specification:
    """Load a parsed OpenAPI 3.x or Swagger 2.0 document."""
    if not isinstance(document, dict):
        raise MalformedSpecification("document must be a mapping")

    if "openapi" in document:
        version = str(document["openapi"])
        if not version.startswith("3."):
            raise MalformedSpecification(f"unsupported OpenAPI version {version}", "openapi")
        swagger = False
    elif str(document.get("swagger")) == "2.0":
        swagger = True
    else:
        raise MalformedSpecification("missing 'openapi: 3.x' or 'swagger: \"2.0\"' version field")

    return _SpecificationLoader(document, swagger=swagger).load()


def load_specification_file(file_path: Path) -> Specification:
    """Load an OpenAPI/Swagger file (YAML or JSON)."""
    try:
        document = read_document(file_path)
    except yaml.YAMLError as e:
        raise MalformedSpecification(f"cannot parse {file_path}: {e}") from e
    return load_specification(document)


def normalize_template(path: str) -> str:
    """Path template with placeholder names erased, for duplicate detection."""
    return _PLACEHOLDER.sub("{}", path.rstrip("/") or "/")


class _SchemaBuilder:
    """Converts raw JSON Schema dictionaries into Schema trees.

    Local references are inlined. A reference met again while it is still
    being expanded is recursive: it becomes a RefSchema back-reference and
    its expansion is recorded in ``definitions``.
    """

    def __init__(self, document: dict):
        self.document = document
        self.definitions: dict[str, Schema] = {}
        self._expanded: dict[str, Schema] = {}
        self._active: list[str] = []
        self._recursive: set[str] = set()

    def resolve_pointer(self, ref: Any, location: str) -> Any:
        if not isinstance(ref, str) or not ref.startswith("#/"):
            raise MalformedSpecification(
                f"unsupported reference {ref!r}, only local references are resolved", location
            )
        node: Any = self.document
        for token in ref[2:].split("/"):
            token = unquote(token).replace("~1", "/").replace("~0", "~")
            if isinstance(node, dict) and token in node:
                node = node[token]
            elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
                node = node[int(token)]
            else:
                raise MalformedSpecification(f"unresolved reference {ref}", location)
        return node

    def build(self, raw: Any, location: str) -> Schema:
        if raw is True:
            return AnySchema()
        if not isinstance(raw, dict):
            raise MalformedSpecification("schema must be a mapping", location)
        if "$ref" in raw:
            return self._build_ref(raw["$ref"], location)

        try:
            return self._build(raw, location)
        except ValidationError as e:
            raise MalformedSpecification(f"invalid schema keyword value: {e}", location) from e

    def _build_ref(self, ref: Any, location: str) -> Schema:
        if ref in self._expanded:
            return self._expanded[ref]
        if ref in self._active:
            self._recursive.add(ref)
            return RefSchema(ref=ref)

        target = self.resolve_pointer(ref, location)
        self._active.append(ref)
        try:
            node = self.build(target, ref[2:].replace("/", "."))
        finally:
            self._active.pop()

        self._expanded[ref] = node
        if ref in self._recursive:
            logger.debug("Recursive schema %s kept as a back-reference", ref)
            self.definitions[ref] = node
        return node

    def _build(self, raw: dict, location: str) -> Schema:
        nullable = bool(raw.get("nullable", False))
        declared = raw.get("type")
        if isinstance(declared, list):
            names = [str(t) for t in declared]
            if "null" in names and len(names) > 1:
                nullable = True
                names = [t for t in names if t != "null"]
        elif declared is None:
            inferred = _infer_type(raw)
            names = [inferred] if inferred else []
        else:
            names = [str(declared)]

        for name in names:
            if name not in SCHEMA_TYPES:
                raise MalformedSpecification(f"unknown schema type '{name}'", f"{location}.type")

        if "const" in raw:
            enum = (raw["const"],)
        elif "enum" in raw:
            if not isinstance(raw["enum"], list):
                raise MalformedSpecification("enum must be a list", f"{location}.enum")
            enum = tuple(raw["enum"])
        else:
            enum = None
        common = {
            "enum": enum,
            "read_only": bool(raw.get("readOnly", False)),
            "write_only": bool(raw.get("writeOnly", False)),
        }

        if not names:
            base: Schema = AnySchema(nullable=nullable, **common)
        elif len(names) == 1:
            base = self._typed(names[0], raw, location, nullable=nullable, **common)
        else:
            base = CompositeSchema(
                operator="anyOf",
                children=tuple(self._typed(name, raw, location, **common) for name in names),
                inline=True,
                nullable=nullable,
            )

        parts: list[Schema] = []
        for operator in ("allOf", "oneOf", "anyOf"):
            if operator not in raw:
                continue
            children = raw[operator]
            if not isinstance(children, list) or not children:
                raise MalformedSpecification(f"{operator} must be a non-empty list", f"{location}.{operator}")
            parts.append(CompositeSchema(
                operator=operator,
                children=tuple(
                    self.build(child, f"{location}.{operator}.{i}") for i, child in enumerate(children)
                ),
            ))

        if not parts:
            return base
        if isinstance(base, AnySchema) and base.enum is None:
            flags = {"nullable": nullable, "read_only": base.read_only, "write_only": base.write_only}
            if len(parts) == 1:
                return parts[0].model_copy(update=flags)
            return CompositeSchema(operator="allOf", children=tuple(parts), inline=True, **flags)
        return CompositeSchema(operator="allOf", children=(base, *parts), inline=True, nullable=nullable)

    def _typed(self, name: str, raw: dict, location: str, **common: Any) -> Schema:
        if name == "object":
            return self._object(raw, location, **common)
        if name == "array":
            items = raw.get("items")
            if items is None:
                items_schema: Schema = AnySchema()
            else:
                items_schema = self.build(items, f"{location}.items")
            return ArraySchema(
                items=items_schema,
                min_items=raw.get("minItems"),
                max_items=raw.get("maxItems"),
                unique_items=bool(raw.get("uniqueItems", False)),
                **common,
            )
        if name == "string":
            pattern = raw.get("pattern")
            if pattern is not None:
                try:
                    re.compile(pattern)
                except (re.error, TypeError) as e:
                    raise MalformedSpecification(f"invalid pattern {pattern!r}: {e}", f"{location}.pattern") from e
            return StringSchema(
                format=raw.get("format"),
                pattern=pattern,
                min_length=raw.get("minLength"),
                max_length=raw.get("maxLength"),
                **common,
            )
        if name in ("number", "integer"):
            return self._number(name, raw, **common)
        if name == "boolean":
            return BooleanSchema(**common)
        if name == "null":
            return NullSchema(**common)
        # Swagger 2.0 formData "file" parameters carry no checkable shape.
        return AnySchema(**common)

    def _object(self, raw: dict, location: str, **common: Any) -> ObjectSchema:
        properties = raw.get("properties") or {}
        if not isinstance(properties, dict):
            raise MalformedSpecification("properties must be a mapping", f"{location}.properties")
        required = raw.get("required") or []
        if not isinstance(required, list):
            raise MalformedSpecification("required must be a list of property names", f"{location}.required")

        additional = raw.get("additionalProperties")
        if isinstance(additional, dict):
            additional = self.build(additional, f"{location}.additionalProperties")
        elif additional is not None and not isinstance(additional, bool):
            raise MalformedSpecification(
                "additionalProperties must be a boolean or a schema", f"{location}.additionalProperties"
            )

        return ObjectSchema(
            properties={
                str(name): self.build(prop, f"{location}.properties.{name}")
                for name, prop in properties.items()
            },
            required=tuple(dict.fromkeys(str(name) for name in required)),
            additional_properties=additional,
            min_properties=raw.get("minProperties"),
            max_properties=raw.get("maxProperties"),
            **common,
        )

    @staticmethod
    def _number(name: str, raw: dict, **common: Any) -> NumberSchema:
        minimum = raw.get("minimum")
        maximum = raw.get("maximum")
        exclusive_minimum = raw.get("exclusiveMinimum")
        exclusive_maximum = raw.get("exclusiveMaximum")
        # OpenAPI 3.0 / Swagger use boolean flags that modify minimum/maximum.
        if isinstance(exclusive_minimum, bool):
            exclusive_minimum, minimum = (minimum, None) if exclusive_minimum else (None, minimum)
        if isinstance(exclusive_maximum, bool):
            exclusive_maximum, maximum = (maximum, None) if exclusive_maximum else (None, maximum)

        return NumberSchema(
            kind=name,
            format=raw.get("format"),
            minimum=minimum,
            maximum=maximum,
            exclusive_minimum=exclusive_minimum,
            exclusive_maximum=exclusive_maximum,
            multiple_of=raw.get("multipleOf"),
            **common,
        )


def _infer_type(raw: dict) -> str | None:
    """Guess the type of a schema that omits 'type' from the keywords it uses."""
    if any(key in raw for key in _OBJECT_KEYWORDS):
        return "object"
    if "items" in raw:
        return "array"
    if any(key in raw for key in _STRING_KEYWORDS):
        return "string"
    if any(key in raw for key in _NUMBER_KEYWORDS):
        return "number"
    return None


class _SpecificationLoader:
    def __init__(self, document: dict, swagger: bool):
        self.doc = document
        self.swagger = swagger
        self.schemas = _SchemaBuilder(document)

    def load(self) -> Specification:
        info = self.doc.get("info") or {}
        paths = self.doc.get("paths") or {}
        if not isinstance(paths, dict):
            raise MalformedSpecification("paths must be a mapping", "paths")

        security_schemes = self._load_security_schemes()
        endpoints: dict[tuple[str, str], EndpointSpec] = {}
        templates: dict[tuple[str, str], str] = {}

        for path, item in paths.items():
            path = str(path)
            location = f"paths.{path}"
            if not path.startswith("/"):
                raise MalformedSpecification("path template must start with '/'", location)
            item = self._deref(item, location)
            if not isinstance(item, dict):
                raise MalformedSpecification("path item must be a mapping", location)

            for method, operation in item.items():
                if str(method).lower() not in HTTP_METHODS:
                    continue
                endpoint = self._load_operation(path, str(method).upper(), operation, item, security_schemes)

                key = (normalize_template(path), endpoint.method)
                if key in templates:
                    raise MalformedSpecification(
                        f"{endpoint.method} {path} duplicates {endpoint.method} {templates[key]}", location
                    )
                templates[key] = path
                endpoints[(path, endpoint.method)] = endpoint

        logger.debug("Loaded %d endpoints from %s", len(endpoints), info.get("title", "specification"))
        return Specification(
            title=str(info.get("title", "")),
            version=str(info.get("version", "")),
            base_paths=self._base_paths(),
            endpoints=endpoints,
            security_schemes=security_schemes,
            definitions=self.schemas.definitions,
        )

    def _deref(self, obj: Any, location: str) -> Any:
        """Follow $ref chains for non-schema objects (parameters, responses, ...)."""
        seen: list[str] = []
        while isinstance(obj, dict) and "$ref" in obj:
            ref = obj["$ref"]
            if ref in seen:
                raise MalformedSpecification(f"circular reference {ref}", location)
            seen.append(ref)
            obj = self.schemas.resolve_pointer(ref, location)
        return obj

    def _base_paths(self) -> tuple[str, ...]:
        if self.swagger:
            candidates = [self.doc.get("basePath") or ""]
        else:
            candidates = [
                urlparse(str(server["url"])).path
                for server in self.doc.get("servers") or []
                if isinstance(server, dict) and "url" in server
            ]

        base_paths: list[str] = []
        for candidate in candidates:
            candidate = candidate.rstrip("/")
            if candidate and "{" not in candidate and candidate not in base_paths:
                base_paths.append(candidate)
        return tuple(base_paths)

    def _load_operation(
        self,
        path: str,
        method: str,
        operation: Any,
        path_item: dict,
        security_schemes: dict[str, SecurityScheme],
    ) -> EndpointSpec:
        location = f"paths.{path}.{method.lower()}"
        if not isinstance(operation, dict):
            raise MalformedSpecification("operation must be a mapping", location)

        parameters: list[ParameterSpec] = []
        body_params: list[tuple[dict, str]] = []
        form_params: list[tuple[dict, str]] = []
        for raw, param_location in self._collect_parameters(path, path_item, operation, location):
            where = raw["in"]
            if where == "body":
                body_params.append((raw, param_location))
            elif where == "formData":
                form_params.append((raw, param_location))
            elif where not in PARAMETER_LOCATIONS:
                raise MalformedSpecification(f"unknown parameter location '{where}'", param_location)
            elif where == "header" and str(raw["name"]).lower() in RESERVED_HEADER_PARAMS and not self.swagger:
                continue
            else:
                parameters.append(self._load_parameter(raw, param_location))

        if self.swagger:
            request_body = self._swagger_request_body(operation, body_params, form_params, location)
        else:
            request_body = self._request_body(operation.get("requestBody"), f"{location}.requestBody")

        return EndpointSpec(
            path=path,
            method=method,
            operation_id=operation.get("operationId"),
            summary=str(operation.get("summary", "")),
            parameters=tuple(parameters),
            request_body=request_body,
            responses=self._load_responses(operation, location),
            security=self._load_security(operation, location, security_schemes),
            spec_location=location,
        )

    def _collect_parameters(
        self, path: str, path_item: dict, operation: dict, location: str
    ) -> list[tuple[dict, str]]:
        """Path-level parameters overridden by operation-level ones with the same name and location."""
        merged: dict[tuple[str, str], tuple[dict, str]] = {}
        for raw_list, base in ((path_item.get("parameters"), f"paths.{path}"), (operation.get("parameters"), location)):
            if raw_list is None:
                continue
            if not isinstance(raw_list, list):
                raise MalformedSpecification("parameters must be a list", f"{base}.parameters")
            for i, raw in enumerate(raw_list):
                param_location = f"{base}.parameters.{i}"
                raw = self._deref(raw, param_location)
                if not isinstance(raw, dict) or "name" not in raw or "in" not in raw:
                    raise MalformedSpecification("parameter must declare 'name' and 'in'", param_location)
                merged[(str(raw["name"]), str(raw["in"]))] = (raw, param_location)
        return list(merged.values())

    def _parameter_schema(self, raw: dict, location: str) -> tuple[Schema, str]:
        if self.swagger:
            own = {k: v for k, v in raw.items() if k not in _SWAGGER_PARAM_KEYS}
            return self.schemas.build(own, location), location
        if "schema" in raw:
            return self.schemas.build(raw["schema"], f"{location}.schema"), f"{location}.schema"
        content = raw.get("content")
        if isinstance(content, dict) and content:
            media_type, media = next(iter(content.items()))
            schema_location = f"{location}.content.{media_type}.schema"
            if isinstance(media, dict) and "schema" in media:
                return self.schemas.build(media["schema"], schema_location), schema_location
        return AnySchema(), location

    def _load_parameter(self, raw: dict, location: str) -> ParameterSpec:
        schema, schema_location = self._parameter_schema(raw, location)
        return ParameterSpec(
            name=str(raw["name"]),
            location=raw["in"],
            required=raw["in"] == "path" or bool(raw.get("required", False)),
            param_schema=schema,
            spec_location=schema_location,
        )

    def _load_content(self, content: Any, location: str) -> dict[str, MediaTypeSpec]:
        if content is None:
            return {}
        if not isinstance(content, dict):
            raise MalformedSpecification("content must be a mapping", f"{location}.content")

        result = {}
        for media_type, media in content.items():
            schema_location = f"{location}.content.{media_type}.schema"
            if isinstance(media, dict) and media.get("schema") is not None:
                schema = self.schemas.build(media["schema"], schema_location)
            else:
                schema = AnySchema()
            result[str(media_type).strip().lower()] = MediaTypeSpec(media_schema=schema, spec_location=schema_location)
        return result

    def _request_body(self, raw: Any, location: str) -> BodySpec | None:
        if raw is None:
            return None
        raw = self._deref(raw, location)
        if not isinstance(raw, dict):
            raise MalformedSpecification("requestBody must be a mapping", location)
        return BodySpec(
            content=self._load_content(raw.get("content"), location),
            required=bool(raw.get("required", False)),
            spec_location=location,
        )

    def _swagger_request_body(
        self,
        operation: dict,
        body_params: list[tuple[dict, str]],
        form_params: list[tuple[dict, str]],
        location: str,
    ) -> BodySpec | None:
        consumes = operation.get("consumes", self.doc.get("consumes")) or ["application/json"]

        if body_params:
            raw, param_location = body_params[-1]
            schema_location = f"{param_location}.schema"
            schema = self.schemas.build(raw.get("schema", {}), schema_location)
            return BodySpec(
                content={
                    str(mt).lower(): MediaTypeSpec(media_schema=schema, spec_location=schema_location)
                    for mt in consumes
                },
                required=bool(raw.get("required", False)),
                spec_location=param_location,
            )

        if form_params:
            properties: dict[str, Schema] = {}
            required: list[str] = []
            for raw, param_location in form_params:
                properties[str(raw["name"])], _ = self._parameter_schema(raw, param_location)
                if raw.get("required"):
                    required.append(str(raw["name"]))
            schema = ObjectSchema(properties=properties, required=tuple(required))
            form_types = [mt for mt in consumes if "form" in str(mt)] or ["application/x-www-form-urlencoded"]
            return BodySpec(
                content={
                    str(mt).lower(): MediaTypeSpec(media_schema=schema, spec_location=f"{location}.parameters")
                    for mt in form_types
                },
                required=bool(required),
                spec_location=f"{location}.parameters",
            )

        return None

    def _load_responses(self, operation: dict, location: str) -> dict[str, ResponseSpec]:
        raw_responses = operation.get("responses") or {}
        if not isinstance(raw_responses, dict):
            raise MalformedSpecification("responses must be a mapping", f"{location}.responses")

        responses = {}
        for status, raw in raw_responses.items():
            status = str(status)
            if status.startswith("x-"):
                continue
            key = "default" if status.lower() == "default" else status.upper()
            response_location = f"{location}.responses.{status}"
            if key != "default" and not _STATUS_KEY.fullmatch(key):
                raise MalformedSpecification(f"invalid response status '{status}'", response_location)

            raw = self._deref(raw, response_location)
            if not isinstance(raw, dict):
                raise MalformedSpecification("response must be a mapping", response_location)

            if self.swagger:
                content = {}
                if raw.get("schema") is not None:
                    schema_location = f"{response_location}.schema"
                    schema = self.schemas.build(raw["schema"], schema_location)
                    produces = operation.get("produces", self.doc.get("produces")) or ["application/json"]
                    content = {
                        str(mt).lower(): MediaTypeSpec(media_schema=schema, spec_location=schema_location)
                        for mt in produces
                    }
            else:
                content = self._load_content(raw.get("content"), response_location)

            responses[key] = ResponseSpec(
                status=key,
                headers=self._response_headers(raw.get("headers"), response_location),
                content=content,
                spec_location=response_location,
            )
        return responses

    def _response_headers(self, raw_headers: Any, location: str) -> dict[str, ParameterSpec]:
        if not raw_headers:
            return {}
        if not isinstance(raw_headers, dict):
            raise MalformedSpecification("headers must be a mapping", f"{location}.headers")

        headers = {}
        for name, raw in raw_headers.items():
            header_location = f"{location}.headers.{name}"
            raw = self._deref(raw, header_location)
            if not isinstance(raw, dict):
                raise MalformedSpecification("header must be a mapping", header_location)
            if self.swagger:
                own = {k: v for k, v in raw.items() if k != "description"}
                schema, schema_location = self.schemas.build(own, header_location), header_location
            else:
                schema, schema_location = self._parameter_schema(raw, header_location)
            headers[str(name).lower()] = ParameterSpec(
                name=str(name),
                location="header",
                required=bool(raw.get("required", False)),
                param_schema=schema,
                spec_location=schema_location,
            )
        return headers

    def _load_security_schemes(self) -> dict[str, SecurityScheme]:
        if self.swagger:
            raw_schemes, base = self.doc.get("securityDefinitions"), "securityDefinitions"
        else:
            raw_schemes, base = (self.doc.get("components") or {}).get("securitySchemes"), "components.securitySchemes"

        schemes = {}
        for name, raw in (raw_schemes or {}).items():
            location = f"{base}.{name}"
            raw = self._deref(raw, location)
            if not isinstance(raw, dict) or "type" not in raw:
                raise MalformedSpecification("security scheme must declare a type", location)
            scheme_type = "http" if raw["type"] == "basic" else str(raw["type"])
            schemes[str(name)] = SecurityScheme(
                name=str(name),
                scheme_type=scheme_type,
                location=raw.get("in") if scheme_type == "apiKey" else None,
                param_name=raw.get("name") if scheme_type == "apiKey" else None,
            )
        return schemes

    def _load_security(
        self, operation: dict, location: str, schemes: dict[str, SecurityScheme]
    ) -> tuple[dict[str, tuple[str, ...]], ...] | None:
        if "security" in operation:
            raw, raw_location = operation["security"], f"{location}.security"
        else:
            raw, raw_location = self.doc.get("security"), "security"
        if raw is None:
            return None
        if not isinstance(raw, list):
            raise MalformedSpecification("security must be a list of requirements", raw_location)

        alternatives = []
        for i, requirement in enumerate(raw):
            if not isinstance(requirement, dict):
                raise MalformedSpecification("security requirement must be a mapping", f"{raw_location}.{i}")
            for name in requirement:
                if name not in schemes:
                    raise MalformedSpecification(f"unknown security scheme '{name}'", f"{raw_location}.{i}")
            alternatives.append({str(name): tuple(scopes or ()) for name, scopes in requirement.items()})
        return tuple(alternatives)
