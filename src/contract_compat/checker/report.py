"""Aggregation and rendering of verification results."""

import json
from typing import Iterable, Sequence

from contract_compat.checker.result import Severity, VerificationResult, Violation
from contract_compat.parser.base import Interaction


def aggregate(results: Iterable[tuple[Interaction, Sequence[Violation]]]) -> VerificationResult:
    """Combine per-interaction findings into one result, ordered by interaction index.

    Within an interaction the discovery order is kept, so the output does
    not depend on the order in which interactions were checked.
    """
    ordered = sorted(results, key=lambda pair: pair[0].index)
    violations = tuple(v for _, found in ordered for v in found)
    return VerificationResult(
        success=not any(v.severity == Severity.ERROR for v in violations),
        interaction_count=len(ordered),
        violations=violations,
    )


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def summary_line(result: VerificationResult) -> str:
    status = "PASSED" if result.success else "FAILED"
    return (
        f"{status}: {_plural(result.interaction_count, 'interaction')}, "
        f"{_plural(len(result.errors), 'error')}, {_plural(len(result.warnings), 'warning')}"
    )


def render_text(result: VerificationResult, show_warnings: bool = True) -> str:
    """Human readable report."""
    lines = [summary_line(result)]
    for violation in result.violations:
        if violation.severity == Severity.WARNING and not show_warnings:
            continue
        lines.append("")
        lines.append(f"[{violation.severity.value}] {violation.code.value}")
        description = f' "{violation.interaction_description}"' if violation.interaction_description else ""
        lines.append(f"  interaction[{violation.interaction_index}]{description}")
        lines.append(f"  {violation.message}")
        lines.append(f"  at:   {violation.interaction_location}")
        if violation.spec_location:
            lines.append(f"  spec: {violation.spec_location}")
    return "\n".join(lines)


def render_json(result: VerificationResult, **metadata) -> str:
    """Machine readable report; extra keyword arguments are added at the top level."""
    data = result.model_dump(mode="json")
    data["error_count"] = len(result.errors)
    data["warning_count"] = len(result.warnings)
    data.update(metadata)
    return json.dumps(data, indent=2, ensure_ascii=False)
