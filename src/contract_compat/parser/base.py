"""Unified data models for provider specifications and consumer interactions.

The OpenAPI/Swagger loader and the Pact loader convert their input
documents into these models; the checker only ever works with them.
All models are frozen: they are built once per run and shared read-only.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _SchemaNode(BaseModel):
    """Keywords shared by every schema kind."""

    model_config = ConfigDict(frozen=True)

    enum: tuple[Any, ...] | None = None
    nullable: bool = False
    read_only: bool = False
    write_only: bool = False


class ObjectSchema(_SchemaNode):
    kind: Literal["object"] = "object"
    properties: dict[str, "Schema"] = Field(default_factory=dict)
    required: tuple[str, ...] = ()
    # None means the document did not declare additionalProperties at all.
    additional_properties: Union[bool, "Schema", None] = None
    min_properties: int | None = None
    max_properties: int | None = None


class ArraySchema(_SchemaNode):
    kind: Literal["array"] = "array"
    items: "Schema"
    min_items: int | None = None
    max_items: int | None = None
    unique_items: bool = False


class StringSchema(_SchemaNode):
    kind: Literal["string"] = "string"
    format: str | None = None
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None


class NumberSchema(_SchemaNode):
    kind: Literal["number", "integer"] = "number"
    format: str | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    exclusive_minimum: int | float | None = None
    exclusive_maximum: int | float | None = None
    multiple_of: int | float | None = None


class BooleanSchema(_SchemaNode):
    kind: Literal["boolean"] = "boolean"


class NullSchema(_SchemaNode):
    kind: Literal["null"] = "null"


class CompositeSchema(_SchemaNode):
    kind: Literal["composite"] = "composite"
    operator: Literal["allOf", "oneOf", "anyOf"]
    children: tuple["Schema", ...]
    # Inline composites are synthesized from one schema's own keywords
    # (e.g. type plus oneOf), so children share the parent's location.
    inline: bool = False


class RefSchema(_SchemaNode):
    """Back-reference to a recursive definition, resolved through Specification.definitions."""

    kind: Literal["ref"] = "ref"
    ref: str


class AnySchema(_SchemaNode):
    """A schema that places no type constraint on the value."""

    kind: Literal["any"] = "any"


Schema = Annotated[
    Union[
        ObjectSchema,
        ArraySchema,
        StringSchema,
        NumberSchema,
        BooleanSchema,
        NullSchema,
        CompositeSchema,
        RefSchema,
        AnySchema,
    ],
    Field(discriminator="kind"),
]

ObjectSchema.model_rebuild()
ArraySchema.model_rebuild()
CompositeSchema.model_rebuild()


class ParameterSpec(BaseModel):
    """A declared path, query, header or cookie parameter (or response header)."""

    model_config = ConfigDict(frozen=True)

    name: str
    location: Literal["path", "query", "header", "cookie"]
    required: bool = False
    param_schema: Schema = Field(default_factory=AnySchema)
    spec_location: str


class MediaTypeSpec(BaseModel):
    """The schema declared for one media type, and where it sits in the document."""

    model_config = ConfigDict(frozen=True)

    media_schema: Schema = Field(default_factory=AnySchema)
    spec_location: str


class BodySpec(BaseModel):
    """A request body: one schema per accepted media type."""

    model_config = ConfigDict(frozen=True)

    content: dict[str, MediaTypeSpec] = Field(default_factory=dict)
    required: bool = False
    spec_location: str


class ResponseSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str  # "201", "2XX" or "default"
    headers: dict[str, ParameterSpec] = Field(default_factory=dict)  # keyed by lower-cased name
    content: dict[str, MediaTypeSpec] = Field(default_factory=dict)
    spec_location: str


class SecurityScheme(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    scheme_type: str  # http / apiKey / oauth2 / openIdConnect
    location: str | None = None  # header / query / cookie, apiKey only
    param_name: str | None = None


class EndpointSpec(BaseModel):
    """A single operation: one path template and one HTTP method."""

    model_config = ConfigDict(frozen=True)

    path: str  # /users/{id}
    method: str  # GET / POST / ...
    operation_id: str | None = None
    summary: str = ""
    parameters: tuple[ParameterSpec, ...] = ()
    request_body: BodySpec | None = None
    responses: dict[str, ResponseSpec] = Field(default_factory=dict)
    # Alternatives of {scheme name: scopes}; None when nothing is declared.
    security: tuple[dict[str, tuple[str, ...]], ...] | None = None
    spec_location: str

    def parameters_in(self, location: str) -> list[ParameterSpec]:
        return [p for p in self.parameters if p.location == location]

    @property
    def produces(self) -> list[str]:
        """Media types of every declared response, in declaration order."""
        media_types: list[str] = []
        for response in self.responses.values():
            for media_type in response.content:
                if media_type not in media_types:
                    media_types.append(media_type)
        return media_types


class Specification(BaseModel):
    """A loaded provider specification."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    version: str = ""
    base_paths: tuple[str, ...] = ()
    endpoints: dict[tuple[str, str], EndpointSpec] = Field(default_factory=dict)
    security_schemes: dict[str, SecurityScheme] = Field(default_factory=dict)
    definitions: dict[str, Schema] = Field(default_factory=dict)


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    headers: dict[str, str] = Field(default_factory=dict)  # lower-cased names
    body: Any = None

    @property
    def has_body(self) -> bool:
        """True when the record carried a body, even a null one."""
        return "body" in self.model_fields_set

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


class InteractionRequest(_Message):
    method: str
    path: str
    query: dict[str, tuple[str, ...]] = Field(default_factory=dict)


class InteractionResponse(_Message):
    status: int


class Interaction(BaseModel):
    """One consumer expectation: a request and the response it relies on."""

    model_config = ConfigDict(frozen=True)

    index: int
    description: str = ""
    provider_state: str | None = None
    request: InteractionRequest
    response: InteractionResponse

    @property
    def location(self) -> str:
        return f"interaction[{self.index}]"


class Contract(BaseModel):
    """A consumer contract file: the parties and their interactions."""

    model_config = ConfigDict(frozen=True)

    consumer: str = ""
    provider: str = ""
    interactions: tuple[Interaction, ...] = ()
