"""Violation codes, violations and the verification result."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ViolationCode(str, Enum):
    """Stable vocabulary of compatibility findings."""

    REQUEST_PATH_OR_METHOD_UNKNOWN = "request.path-or-method.unknown"
    REQUEST_ACCEPT_INCOMPATIBLE = "request.accept.incompatible"
    REQUEST_ACCEPT_UNKNOWN = "request.accept.unknown"
    REQUEST_AUTHORIZATION_MISSING = "request.authorization.missing"
    REQUEST_BODY_INCOMPATIBLE = "request.body.incompatible"
    REQUEST_BODY_UNKNOWN = "request.body.unknown"
    REQUEST_CONTENT_TYPE_INCOMPATIBLE = "request.content-type.incompatible"
    REQUEST_CONTENT_TYPE_MISSING = "request.content-type.missing"
    REQUEST_CONTENT_TYPE_UNKNOWN = "request.content-type.unknown"
    REQUEST_HEADER_INCOMPATIBLE = "request.header.incompatible"
    REQUEST_HEADER_UNKNOWN = "request.header.unknown"
    REQUEST_QUERY_INCOMPATIBLE = "request.query.incompatible"
    REQUEST_QUERY_UNKNOWN = "request.query.unknown"
    RESPONSE_BODY_INCOMPATIBLE = "response.body.incompatible"
    RESPONSE_BODY_UNKNOWN = "response.body.unknown"
    RESPONSE_CONTENT_TYPE_INCOMPATIBLE = "response.content-type.incompatible"
    RESPONSE_CONTENT_TYPE_UNKNOWN = "response.content-type.unknown"
    RESPONSE_HEADER_INCOMPATIBLE = "response.header.incompatible"
    RESPONSE_HEADER_UNKNOWN = "response.header.unknown"
    RESPONSE_STATUS_DEFAULT = "response.status.default"
    RESPONSE_STATUS_UNKNOWN = "response.status.unknown"

    @property
    def severity(self) -> Severity:
        return Severity.WARNING if self in _WARNINGS else Severity.ERROR


_WARNINGS = frozenset({
    ViolationCode.REQUEST_ACCEPT_UNKNOWN,
    ViolationCode.REQUEST_BODY_UNKNOWN,
    ViolationCode.REQUEST_CONTENT_TYPE_MISSING,
    ViolationCode.REQUEST_CONTENT_TYPE_UNKNOWN,
    ViolationCode.REQUEST_HEADER_UNKNOWN,
    ViolationCode.REQUEST_QUERY_UNKNOWN,
    ViolationCode.RESPONSE_BODY_UNKNOWN,
    ViolationCode.RESPONSE_CONTENT_TYPE_UNKNOWN,
    ViolationCode.RESPONSE_HEADER_UNKNOWN,
    ViolationCode.RESPONSE_STATUS_DEFAULT,
})


class Violation(BaseModel):
    """One detected incompatibility or warning."""

    model_config = ConfigDict(frozen=True)

    code: ViolationCode
    severity: Severity
    message: str
    interaction_index: int
    interaction_description: str = ""
    interaction_location: str
    spec_location: str | None = None
    value: Any = None  # the offending concrete value, for incompatible codes
    constraint: str | None = None


def make_violation(
    code: ViolationCode,
    message: str,
    *,
    interaction_index: int,
    interaction_location: str,
    interaction_description: str = "",
    spec_location: str | None = None,
    value: Any = None,
    constraint: str | None = None,
) -> Violation:
    """Build a Violation whose severity follows from its code."""
    return Violation(
        code=code,
        severity=code.severity,
        message=message,
        interaction_index=interaction_index,
        interaction_description=interaction_description,
        interaction_location=interaction_location,
        spec_location=spec_location,
        value=value,
        constraint=constraint,
    )


class VerificationResult(BaseModel):
    """The outcome of checking a set of interactions against a specification."""

    model_config = ConfigDict(frozen=True)

    success: bool
    interaction_count: int = 0
    violations: tuple[Violation, ...] = Field(default_factory=tuple)

    @property
    def errors(self) -> list[Violation]:
        return [v for v in self.violations if v.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Violation]:
        return [v for v in self.violations if v.severity == Severity.WARNING]
