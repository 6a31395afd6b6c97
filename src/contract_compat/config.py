"""Options controlling a check run."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_IGNORED_HEADERS = frozenset({
    "accept-encoding",
    "accept-language",
    "cache-control",
    "connection",
    "content-length",
    "date",
    "host",
    "transfer-encoding",
    "user-agent",
})


class AdditionalPropertiesPolicy(str, Enum):
    """How object keys are treated when a schema does not declare additionalProperties."""

    PERMISSIVE = "permissive"
    STRICT = "strict"


class CheckOptions(BaseModel):
    """Options for a single check run.

    The additionalProperties policy has no default: callers must choose
    whether undeclared keys are accepted or rejected.
    """

    model_config = ConfigDict(frozen=True)

    unspecified_additional_properties: AdditionalPropertiesPolicy
    workers: int = Field(default=1, ge=1)
    ignored_headers: frozenset[str] = DEFAULT_IGNORED_HEADERS

    @field_validator("ignored_headers")
    @classmethod
    def _lower_header_names(cls, value: frozenset[str]) -> frozenset[str]:
        return frozenset(name.lower() for name in value)
