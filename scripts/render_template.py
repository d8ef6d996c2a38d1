#!/usr/bin/env python3
"""
Render a template document locally, without the API or a database.

Use when:
- You want to preview a template against a directory of asset packs.
- You need to check which outputs a template produces before submitting it.

Run from project root:
  python scripts/render_template.py template.yaml --assets data/assets --output out
  # or
  python -m scripts.render_template template.json --assets data/assets --output out

Asset layout: <assets>/packs/<pack_id>/... and <assets>/assets/<asset_id>.
Outputs are written to <output>/<run_id>/.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv(PROJECT_ROOT / ".env")

from blueprint.core.bindings import PRIMARY_ALIAS, PrimaryAliasNamer
from blueprint.core.db import InMemoryRunRepository
from blueprint.core.orchestrator import RunOrchestrator, RunSummary
from blueprint.domain.models import RunStatus, Template
from blueprint.infra.storage import LocalAssetStore, LocalOutputStore

console = Console()


def load_template(path: Path) -> Template:
    """
    Read a template document from a JSON or YAML file.

    Raises:
        ValueError: If the file is not a mapping.
        pydantic.ValidationError: If the document is not a valid template.
    """
    text = path.read_text()
    if path.suffix.lower() == ".json":
        document = json.loads(text)
    else:
        document = yaml.safe_load(text)

    if not isinstance(document, dict):
        raise ValueError(f"{path} does not contain a template document")
    return Template.model_validate(document)


async def render(
    template: Template, assets: Path, output: Path, primary_alias: str = PRIMARY_ALIAS
) -> RunSummary:
    """Render every instance of a template with local stores."""
    asset_store = LocalAssetStore(assets)
    orchestrator = RunOrchestrator(
        asset_store,
        LocalOutputStore(output),
        InMemoryRunRepository(),
        namer=PrimaryAliasNamer(asset_store, alias=primary_alias),
    )
    run_id = await orchestrator.submit(template)
    return await orchestrator.run_template(run_id, template)


def print_summary(summary: RunSummary, output: Path) -> None:
    table = Table(title=f"Run {summary.run_id}")
    table.add_column("#", justify="right")
    table.add_column("Output")
    for number, name in enumerate(summary.outputs, start=1):
        table.add_row(str(number), name)
    console.print(table)

    style = "green" if summary.status == RunStatus.SUCCEEDED else "red"
    lines = [
        f"[bold {style}]{summary.status.value.upper()}[/bold {style}]",
        f"Instances: {summary.total}",
        f"Rendered: {summary.rendered}",
    ]
    if summary.skipped:
        lines.append(f"Skipped: {summary.skipped}")
    if summary.error:
        lines.append(f"Error: {summary.error}")
    lines.append(f"Output: {output / summary.run_id}")
    console.print(Panel("\n".join(lines), title="Blueprint", border_style=style))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Render a template document locally.")
    parser.add_argument("template", type=Path, help="Template document (.json, .yaml)")
    parser.add_argument("--assets", type=Path, required=True, help="Asset root directory")
    parser.add_argument("--output", type=Path, required=True, help="Output root directory")
    parser.add_argument(
        "--primary-alias",
        default=PRIMARY_ALIAS,
        help=f"Alias whose asset names each output (default: {PRIMARY_ALIAS})",
    )
    args = parser.parse_args(argv)

    try:
        template = load_template(args.template)
    except (OSError, ValueError, yaml.YAMLError, ValidationError) as e:
        console.print(f"[bold red][ERROR] Invalid template {args.template}:[/bold red] {e}")
        return 2

    summary = asyncio.run(render(template, args.assets, args.output, args.primary_alias))
    print_summary(summary, args.output)
    return 0 if summary.status == RunStatus.SUCCEEDED else 1


if __name__ == "__main__":
    sys.exit(main())
