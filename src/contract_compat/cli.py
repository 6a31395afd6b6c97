"""CLI entry point for contract-compat."""

import fnmatch
import logging
from pathlib import Path

import click

from contract_compat.checker.compatibility import check, find_response
from contract_compat.checker.report import render_json, render_text, summary_line
from contract_compat.checker.resolver import resolve as resolve_endpoint
from contract_compat.config import AdditionalPropertiesPolicy, CheckOptions
from contract_compat.errors import ContractCompatError, UnknownPathOrMethod
from contract_compat.parser.base import Interaction, Specification
from contract_compat.parser.detect import detect_file_format
from contract_compat.parser.openapi import load_specification_file
from contract_compat.parser.pact import load_pact_file

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONTRACT_COMPAT"


class LoadError(click.ClickException):
    """A specification or pact file could not be loaded."""

    exit_code = 2


def _load_spec(file_path: Path) -> Specification:
    fmt = detect_file_format(file_path)
    if fmt == "pact":
        raise LoadError(f"{file_path}: expected an OpenAPI or Swagger document, found a pact file")
    try:
        spec = load_specification_file(file_path)
    except ContractCompatError as e:
        raise LoadError(f"{file_path}: {e}") from e
    logger.info("Loaded %s: %d endpoints", file_path, len(spec.endpoints))
    return spec


def _load_interactions(pact_paths: tuple[Path, ...]) -> list[Interaction]:
    """Load every pact file, numbering interactions across files."""
    interactions: list[Interaction] = []
    for file_path in pact_paths:
        fmt = detect_file_format(file_path)
        if fmt in ("openapi", "swagger"):
            raise LoadError(f"{file_path}: expected a pact file, found a document in {fmt} format")
        try:
            contract = load_pact_file(file_path)
        except ContractCompatError as e:
            raise LoadError(f"{file_path}: {e}") from e
        logger.info(
            "Loaded %s: %s -> %s, %d interactions",
            file_path, contract.consumer or "?", contract.provider or "?", len(contract.interactions),
        )
        # Indices keep gaps left by skipped records, so continue after the last one.
        offset = interactions[-1].index + 1 if interactions else 0
        for interaction in contract.interactions:
            if offset:
                interaction = interaction.model_copy(update={"index": interaction.index + offset})
            interactions.append(interaction)
    return interactions


def _filter_interactions(interactions: list[Interaction], patterns: tuple[str, ...]) -> list[Interaction]:
    """Keep interactions matching any 'METHOD /path' or '/path' glob pattern."""
    selected = []
    for interaction in interactions:
        method = interaction.request.method
        path = interaction.request.path.split("?", 1)[0]
        for pattern in patterns:
            parts = pattern.split(None, 1)
            if len(parts) == 2:
                if parts[0].upper() == method and fnmatch.fnmatch(path, parts[1]):
                    selected.append(interaction)
                    break
            elif fnmatch.fnmatch(path, pattern):
                selected.append(interaction)
                break
    return selected


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log loading and checking progress.")
def main(verbose: bool):
    """contract-compat — check consumer contracts against a provider OpenAPI document."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("pact_paths", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--additional-properties",
    "policy",
    required=True,
    envvar=f"{ENV_PREFIX}_ADDITIONAL_PROPERTIES",
    type=click.Choice([p.value for p in AdditionalPropertiesPolicy]),
    help="How to treat keys not declared by schemas that do not set additionalProperties.",
)
@click.option(
    "--workers", default=1, show_default=True, envvar=f"{ENV_PREFIX}_WORKERS",
    type=click.IntRange(min=1), help="Number of interactions checked in parallel.",
)
@click.option("--format", "fmt", default="text", type=click.Choice(["text", "json"]), help="Report format.")
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Write the report to a file.")
@click.option("--fail-on-warnings", is_flag=True, help="Exit with status 1 when warnings are found.")
@click.option("--hide-warnings", is_flag=True, help="Leave warnings out of the text report.")
@click.option(
    "-i", "--interaction", "patterns", multiple=True,
    help="Only check interactions matching 'METHOD /path' or '/path' (glob, repeatable).",
)
def verify(
    spec_path: Path,
    pact_paths: tuple[Path, ...],
    policy: str,
    workers: int,
    fmt: str,
    output: Path | None,
    fail_on_warnings: bool,
    hide_warnings: bool,
    patterns: tuple[str, ...],
):
    """Verify PACT_PATHS interactions against the SPEC_PATH document."""
    spec = _load_spec(spec_path)
    interactions = _load_interactions(pact_paths)
    if patterns:
        interactions = _filter_interactions(interactions, patterns)
        click.echo(f"Selected {len(interactions)} interactions matching {', '.join(patterns)}", err=True)

    options = CheckOptions(unspecified_additional_properties=policy, workers=workers)
    click.echo(f"Undeclared additionalProperties policy: {options.unspecified_additional_properties.value}", err=True)

    try:
        result = check(spec, interactions, options)
    except ContractCompatError as e:
        raise LoadError(f"{spec_path}: {e}") from e

    if fmt == "json":
        report = render_json(
            result,
            specification=str(spec_path),
            pacts=[str(p) for p in pact_paths],
            additional_properties=options.unspecified_additional_properties.value,
        )
    else:
        report = render_text(result, show_warnings=not hide_warnings)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(report + "\n", encoding="utf-8")
        click.echo(summary_line(result))
        click.echo(f"Report saved to {output}")
    else:
        click.echo(report)

    if not result.success or (fail_on_warnings and result.warnings):
        raise SystemExit(1)


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def endpoints(spec_path: Path):
    """List the endpoints and response statuses declared by SPEC_PATH."""
    spec = _load_spec(spec_path)
    click.echo(f"{spec.title or spec_path.name} {spec.version}".rstrip())
    for (path, method), endpoint in sorted(spec.endpoints.items()):
        statuses = ", ".join(endpoint.responses) or "-"
        click.echo(f"  {method:7} {path}  [{statuses}]")
    if spec.base_paths:
        click.echo(f"Base paths: {', '.join(spec.base_paths)}")


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("method")
@click.argument("path")
@click.option("--status", default=None, type=int, help="Also show which response covers this status.")
def resolve(spec_path: Path, method: str, path: str, status: int | None):
    """Show which endpoint of SPEC_PATH a METHOD and PATH resolve to."""
    spec = _load_spec(spec_path)
    try:
        endpoint, path_params = resolve_endpoint(spec, method.upper(), path)
    except UnknownPathOrMethod as e:
        raise click.ClickException(str(e)) from e
    except ContractCompatError as e:
        raise LoadError(f"{spec_path}: {e}") from e

    click.echo(f"{endpoint.method} {endpoint.path}")
    for name, value in path_params.items():
        click.echo(f"  {name} = {value}")
    if status is not None:
        response, only_default = find_response(endpoint, status)
        if response is None:
            click.echo(f"  status {status}: not defined")
        else:
            suffix = " (default)" if only_default else ""
            click.echo(f"  status {status}: {response.status}{suffix}")
