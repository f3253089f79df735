from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import typer

app = typer.Typer(name="complianceprobe", help="Run compliance playbooks against this host")


def _new_run_dir(output_dir: Path) -> Path:
    run_id = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
    run_dir = output_dir / run_id
    suffix = 1
    while run_dir.exists():
        run_dir = output_dir / f"{run_id}_{suffix}"
        suffix += 1
    run_dir.mkdir(parents=True)
    return run_dir


def _load(playbook: str):
    import yaml
    from pydantic import ValidationError

    from complianceprobe.config import build_playbook, load_config
    from complianceprobe.errors import PlaybookError

    path = Path(playbook)
    if not path.exists():
        typer.echo(f"Error: playbook not found: {playbook}", err=True)
        raise typer.Exit(1)
    try:
        config = load_config(path)
        return config, build_playbook(config)
    except (PlaybookError, ValidationError, yaml.YAMLError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def run(
    playbook: str = typer.Argument(help="Path to playbook YAML"),
    output_dir: str = typer.Option("reports", help="Output directory for run results"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output to terminal"
    ),
    timeout: float | None = typer.Option(
        None, min=0.1, help="Default per-assertion timeout in seconds (overrides playbook)"
    ),
    shell: str | None = typer.Option(
        None, help="Shell to run commands with (default: bash, powershell on windows)"
    ),
    stop_on_error: bool = typer.Option(
        False, "--stop-on-error", help="Stop after the first assertion error"
    ),
    stop_on_fail: bool = typer.Option(
        False, "--stop-on-fail", help="Stop after the first failing assertion"
    ),
):
    """Run a playbook and write junit.xml, report.json and report.md."""
    from complianceprobe.reporting import write_reports
    from complianceprobe.runner import PlaybookRunner, RunState
    from complianceprobe.verbose import run_logger_name, setup_logger

    config, book = _load(playbook)
    settings = config.settings
    policy = settings.policy()
    if stop_on_error:
        policy.continue_on_error = False
    if stop_on_fail:
        policy.continue_on_fail = False

    run_dir = _new_run_dir(Path(output_dir))
    logger = setup_logger(
        run_dir / "debug.log",
        verbose=verbose,
        logger_name=run_logger_name(run_dir.name),
    )
    typer.echo(f"🚀 Running playbook: {book.title}")

    runner = PlaybookRunner(
        book,
        policy=policy,
        default_timeout=timeout if timeout is not None else settings.timeout,
        shell=shell or settings.shell,
        logger=logger,
    )
    result = runner.run()

    for r in result.results:
        status = {"PASS": "✅ PASS", "FAIL": "❌ FAIL", "NEUTRAL": "➖ NEUTRAL"}[r.score.name]
        typer.echo(f"    - {r.code} {r.title}: {status}")

    paths = write_reports(run_dir, result, Path(playbook))
    counts = result.counts()

    if result.state is RunState.ABORTED:
        typer.echo(f"Run aborted: {result.error['message']}", err=True)
    else:
        typer.echo(
            f"Run complete: {result.score.name} "
            f"(PASS: {counts['pass']}, FAIL: {counts['fail']}, NEUTRAL: {counts['neutral']})"
        )
    typer.echo(f"JSON Report: {paths['json']}")
    typer.echo(f"Markdown: {paths['markdown']}")
    if not verbose:
        typer.echo(f"Debug log: {run_dir / 'debug.log'}")

    if not result.passed:
        raise typer.Exit(1)


@app.command()
def validate(
    playbook: str = typer.Argument(help="Path to playbook YAML"),
):
    """Validate a playbook without running it."""
    config, book = _load(playbook)
    count = sum(1 for _ in book.iter_assertions())
    typer.echo(f"Playbook '{config.title}' is valid: {count} assertion(s)")


@app.command()
def schema(
    out: str = typer.Option(
        "schemas/complianceprobe.schema.json", help="Output path for JSON Schema"
    ),
    doc: str | None = typer.Option(None, help="Output path for schema docs"),
):
    """Generate JSON Schema (and optionally docs) for the playbook YAML format."""
    from complianceprobe.schema import write_json_schema, write_schema_doc

    out_path = Path(out)
    write_json_schema(out_path)
    typer.echo(f"Wrote schema: {out_path}")
    if doc is not None:
        doc_path = Path(doc)
        write_schema_doc(doc_path)
        typer.echo(f"Wrote docs: {doc_path}")
