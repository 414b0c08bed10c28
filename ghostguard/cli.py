"""GhostGuard CLI - entry point for scanning and redaction."""

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ghostguard.config import config
from ghostguard.detect.models import RedactionTarget, ScanMode, Severity

console = Console()
logger = logging.getLogger(__name__)

_SEVERITY_COLORS = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _check_config(mode: ScanMode | None) -> None:
    if mode in (None, ScanMode.REGEX):
        return
    errors = config.validate()
    if errors:
        for err in errors:
            console.print(f"[red]Config error:[/red] {err}")
        console.print("\nCopy .env.example to .env and fill in the classifier settings.")
        console.print("Or use --mode regex to scan without a classifier.")
        sys.exit(1)


def _load_scan_inputs(config_path: str | None, ignore_file: str | None):
    from ghostguard.ingest.ignore_list import IgnoreList
    from ghostguard.rule_config import ScanConfig

    scan_config = ScanConfig.load(Path(config_path) if config_path else None)
    ignore_list = IgnoreList.load(Path(ignore_file) if ignore_file else config.ignore_file)
    return scan_config, ignore_list


def _run_scan(paths, mode, scan_config, ignore_list, base=None):
    from ghostguard.pipeline import scan_paths

    try:
        return scan_paths(
            [Path(path) for path in paths],
            scan_config=scan_config,
            ignore_list=ignore_list,
            mode=mode,
            base=base,
        )
    except Exception as e:
        console.print(f"[red]Scan failed:[/red] {e}")
        logger.debug("Full traceback:", exc_info=True)
        sys.exit(1)


def _print_report(report) -> None:
    summary = report.summary
    console.print(f"\n{'=' * 60}")
    console.print(f"[bold]SCAN RESULTS: {summary.source_name}[/bold]")
    console.print(f"{'=' * 60}")
    console.print(f"  Scan: {summary.id} ({summary.mode.value} mode)")
    console.print(f"  Files scanned: {summary.totals.files}")
    console.print(
        f"  Findings: {summary.totals.findings} "
        f"(critical {summary.totals.critical}, high {summary.totals.high}, "
        f"medium {summary.totals.medium}, low {summary.totals.low}; "
        f"{summary.totals.ignored} ignored)"
    )
    console.print(f"  Risk score: {summary.risk_score} ({report.risk_level})")
    console.print(f"  Duration: {summary.duration_seconds:.1f}s")

    if summary.warnings:
        console.print("\n[bold yellow]Warnings:[/bold yellow]")
        for warning in summary.warnings:
            console.print(f"  [yellow]{warning.kind}[/yellow]: {warning.message}")

    if report.active_findings:
        console.print("\n[bold]Findings:[/bold]")
        for finding in report.active_findings:
            color = _SEVERITY_COLORS[finding.severity]
            extra = len(finding.occurrences) - 1
            console.print(
                f"  [{color}]{finding.severity.value.upper()}[/{color}] "
                f"{finding.secret_type.value} in {finding.file_path}:{finding.line_start}"
                f"{f' (+{extra} more)' if extra > 0 else ''} "
                f"confidence {finding.confidence:.2f} "
                f"[dim]{finding.fingerprint[:12]}[/dim]",
                highlight=False,
            )
    else:
        console.print("\n[bold green]No secrets found.[/bold green]")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """GhostGuard - find hardcoded secrets and move them into environment variables."""
    setup_logging(verbose)


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in ScanMode]),
    default=None,
    help="Detection mode (default: from .ghostguard.yml, else regex)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True),
    default=None,
    help="Path to .ghostguard.yml",
)
@click.option("--ignore-file", type=click.Path(), default=None, help="Fingerprint ignore list")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Where to save reports (default: GHOSTGUARD_OUTPUT_DIR)",
)
@click.option(
    "--format",
    "formats",
    type=click.Choice(["json", "sarif", "html"]),
    multiple=True,
    help="Report formats to save (default: all)",
)
@click.option(
    "--fail-above",
    type=click.IntRange(0, 100),
    default=None,
    help="Exit with status 2 when the risk score is above this value",
)
def scan(
    paths: tuple[str, ...],
    mode: str | None,
    config_path: str | None,
    ignore_file: str | None,
    output_dir: str | None,
    formats: tuple[str, ...],
    fail_above: int | None,
) -> None:
    """Scan files or a directory for hardcoded secrets."""
    from ghostguard.report.generator import REPORT_EXTENSIONS, REPORT_WRITERS, default_report_path

    console.print("\n[bold]GhostGuard[/bold] - Secret Detection\n")

    scan_mode = ScanMode(mode) if mode else None
    scan_config, ignore_list = _load_scan_inputs(config_path, ignore_file)
    _check_config(scan_mode or scan_config.mode)

    report = _run_scan(paths, scan_mode, scan_config, ignore_list)
    _print_report(report)

    reports_dir = Path(output_dir) if output_dir else config.output_dir
    console.print("\n[bold]Reports saved:[/bold]")
    for fmt in formats or ("html", "json", "sarif"):
        path = default_report_path(report, reports_dir, REPORT_EXTENSIONS[fmt])
        REPORT_WRITERS[fmt](report, path)
        console.print(f"  {fmt.upper()}: {path}")
    console.print()

    if fail_above is not None and report.summary.risk_score > fail_above:
        console.print(
            f"[red]Risk score {report.summary.risk_score} is above {fail_above}[/red]"
        )
        sys.exit(2)


def _parse_env_var_options(values: tuple[str, ...]) -> dict[str, str]:
    overrides = {}
    for value in values:
        key, sep, name = value.partition("=")
        if not sep or not key.strip() or not name.strip():
            raise click.BadParameter(f"expected FINGERPRINT=NAME, got {value!r}", param_hint="--env-var")
        overrides[key.strip().lower()] = name.strip()
    return overrides


def _resolve_fingerprint_keys(report, keys: dict[str, str]) -> dict[str, str]:
    """Map fingerprint prefixes given on the command line to finding ids."""
    resolved = {}
    for prefix, name in keys.items():
        matches = [f for f in report.findings if f.fingerprint.startswith(prefix)]
        if len(matches) != 1:
            problem = "no finding" if not matches else f"{len(matches)} findings"
            console.print(f"[red]Fingerprint prefix {prefix!r} matches {problem}[/red]")
            sys.exit(1)
        resolved[matches[0].id] = name
    return resolved


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option(
    "--env-var",
    "env_vars",
    multiple=True,
    help="Name the variable for a finding: FINGERPRINT_PREFIX=NAME (repeatable)",
)
@click.option(
    "--only",
    "only",
    multiple=True,
    help="Only redact findings with this fingerprint prefix (repeatable)",
)
@click.option("--mode", type=click.Choice([mode.value for mode in ScanMode]), default=None)
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
@click.option("--ignore-file", type=click.Path(), default=None)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Write sanitized copies and the .env file here",
)
@click.option("--in-place", is_flag=True, help="Rewrite the scanned files in place")
@click.option(
    "--target",
    type=click.Choice([target.value for target in RedactionTarget]),
    default=RedactionTarget.ENV.value,
    show_default=True,
)
def redact(
    path: str,
    env_vars: tuple[str, ...],
    only: tuple[str, ...],
    mode: str | None,
    config_path: str | None,
    ignore_file: str | None,
    output_dir: str | None,
    in_place: bool,
    target: str,
) -> None:
    """Scan PATH and replace its secrets with environment variable references."""
    from ghostguard.remediate.applier import RedactionApplier
    from ghostguard.remediate.planner import ValidationError, plan

    console.print("\n[bold]GhostGuard[/bold] - Redaction\n")

    scan_mode = ScanMode(mode) if mode else None
    scan_config, ignore_list = _load_scan_inputs(config_path, ignore_file)
    _check_config(scan_mode or scan_config.mode)
    root = Path(path) if Path(path).is_dir() else Path(path).resolve().parent
    report = _run_scan([path], scan_mode, scan_config, ignore_list, base=root)

    if not report.active_findings:
        console.print("[bold green]No secrets to redact.[/bold green]")
        return

    overrides = _resolve_fingerprint_keys(report, _parse_env_var_options(env_vars))
    finding_ids = None
    if only:
        finding_ids = list(_resolve_fingerprint_keys(report, {p.lower(): "" for p in only}))

    try:
        redaction_plan = plan(
            report.findings,
            env_var_overrides=overrides,
            target=RedactionTarget(target),
            finding_ids=finding_ids,
        )
    except ValidationError as e:
        for problem in e.problems:
            console.print(f"[red]Invalid plan:[/red] {problem}")
        sys.exit(1)

    applier = RedactionApplier(redaction_plan, report.findings)
    out_dir = Path(output_dir) if output_dir else config.output_dir / "redacted"

    if in_place:
        outcome = applier.apply_in_place(root)
    else:
        paths = {o.file_path for f in report.findings for o in f.occurrences}
        contents = {p: (root / p).read_bytes() for p in paths if (root / p).is_file()}
        outcome = applier.apply(contents)
        out_root = out_dir.resolve()
        destinations = {relative: (out_dir / relative).resolve() for relative in outcome.sanitized_files}
        escaping = [relative for relative, dest in destinations.items() if not dest.is_relative_to(out_root)]
        if escaping:
            for relative in escaping:
                console.print(f"[red]Refusing to write outside {out_dir}:[/red] {relative}")
            sys.exit(1)
        for relative, content in outcome.sanitized_files.items():
            destinations[relative].parent.mkdir(parents=True, exist_ok=True)
            destinations[relative].write_bytes(content)

    for entry in redaction_plan.entries:
        console.print(f"  {entry.env_var:<24} -> {entry.replacement}", highlight=False)

    for error in outcome.drift_errors:
        console.print(f"[yellow]Drift:[/yellow] {error}")

    if outcome.files_processed:
        out_dir.mkdir(parents=True, exist_ok=True)
        if redaction_plan.target == RedactionTarget.VAULT:
            secrets_path = out_dir / "secrets.json"
            secrets_path.write_text(json.dumps(outcome.secrets, indent=2), encoding="utf-8")
            console.print(f"\nSecrets for the vault written to {secrets_path}")
        else:
            env_path = out_dir / ".env"
            env_path.write_text(outcome.env_file_content, encoding="utf-8")
            console.print(f"\nEnvironment file written to {env_path}")

    console.print(
        f"\n[bold]{outcome.redacted_count} secrets replaced in "
        f"{outcome.files_processed} files[/bold] ({outcome.state.value})"
    )
    if not outcome.success:
        sys.exit(1)


@main.command()
@click.argument("fingerprint")
@click.option("--note", default=None, help="Why this finding is accepted")
@click.option("--ignore-file", type=click.Path(), default=None)
def ignore(fingerprint: str, note: str | None, ignore_file: str | None) -> None:
    """Mark a finding's fingerprint as ignored in future scans."""
    from ghostguard.ingest.ignore_list import IgnoreList

    ignore_list = IgnoreList.load(Path(ignore_file) if ignore_file else config.ignore_file)
    try:
        added = ignore_list.add(fingerprint, note=note)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if added:
        console.print(f"Ignoring {fingerprint[:12]} ({ignore_list.path})")
    else:
        console.print(f"{fingerprint[:12]} is already ignored")


@main.command()
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
def rules(config_path: str | None) -> None:
    """List the detection rules a scan would use."""
    from ghostguard.rule_config import ScanConfig

    scan_config = ScanConfig.load(Path(config_path) if config_path else None)
    table = Table(title="Detection rules")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Severity")
    table.add_column("Enabled")

    for rule in scan_config.build_rules():
        color = _SEVERITY_COLORS[rule.severity]
        table.add_row(
            rule.id,
            rule.name,
            rule.secret_type.value,
            f"[{color}]{rule.severity.value}[/{color}]",
            "yes" if rule.enabled else "[dim]no[/dim]",
        )
    console.print(table)


@main.command()
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding saved JSON reports (default: GHOSTGUARD_OUTPUT_DIR)",
)
def status(config_path: str | None, output_dir: str | None) -> None:
    """Show protection status from saved scan reports."""
    from ghostguard.rule_config import ScanConfig
    from ghostguard.status import derive_status, latest_summary, load_history, summarize_history

    scan_config = ScanConfig.load(Path(config_path) if config_path else None)
    history = load_history(Path(output_dir) if output_dir else config.output_dir)
    current = derive_status(latest_summary(history), scan_config.risk_threshold)
    stats = summarize_history(history)

    color = "green" if current.protected else "red"
    console.print(f"\n[bold]Status:[/bold] [{color}]{current.label}[/{color}]")
    if current.last_scan_id:
        console.print(
            f"  Latest scan: {current.last_scan_id} "
            f"(risk {current.risk_score}, {current.risk_level}; "
            f"threshold {scan_config.risk_threshold})"
        )
    console.print(f"  Scans: {stats.total_scans}")
    console.print(f"  Findings across scans: {stats.total_findings}")
    console.print(f"  Average risk: {stats.average_risk:.1f}\n")


@main.command()
def version() -> None:
    """Show version information."""
    from ghostguard.report.generator import GHOSTGUARD_VERSION

    console.print(f"GhostGuard v{GHOSTGUARD_VERSION}")


if __name__ == "__main__":
    main()
