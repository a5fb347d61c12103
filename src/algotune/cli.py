#!/usr/bin/env python3
"""
algotune CLI

Command-line interface for tuner configurations and status dumps.

Usage:
    algotune config init FILE [--seed SEED]
    algotune config show FILE
    algotune config validate FILE
    algotune status show DIRECTORY
"""

import json
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from algotune.config import TunerConfiguration
from algotune.errors import ConfigurationError

# Create Typer apps
app = typer.Typer(
	name="algotune",
	help="algotune - Inspect tuner configurations and status dumps",
	no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration commands")
status_app = typer.Typer(help="Status dump commands")
app.add_typer(config_app, name="config")
app.add_typer(status_app, name="status")

console = Console()


def load_configuration(path: Path) -> TunerConfiguration:
	"""Load a YAML configuration, turning every load problem into a CLI error."""
	try:
		return TunerConfiguration.load_yaml(str(path))
	except FileNotFoundError:
		rprint(f"[red]Error: {path} does not exist[/red]")
		raise typer.Exit(1)
	except (ValueError, TypeError, yaml.YAMLError) as e:
		rprint(f"[red]✗ Invalid configuration: {e}[/red]")
		raise typer.Exit(1)


def flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
	"""Nested options as (dotted.key, value) rows."""
	rows = []
	for key, value in data.items():
		name = f"{prefix}{key}"
		if isinstance(value, dict):
			rows.extend(flatten(value, f"{name}."))
		else:
			rows.append((name, value))
	return rows


# =============================================================================
# Config commands
# =============================================================================

@config_app.command("init")
def config_init(
	path: Path = typer.Argument(..., help="Output YAML file"),
	seed: Optional[int] = typer.Option(None, "--seed", "-s", help="Random seed of the run"),
	force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
	"""Write the default configuration."""
	if path.exists() and not force:
		rprint(f"[red]{path} exists, use --force to overwrite[/red]")
		raise typer.Exit(1)
	TunerConfiguration(random_seed=seed).save_yaml(str(path))
	rprint(f"[green]✓ Wrote default configuration to {path}[/green]")


@config_app.command("show")
def config_show(
	path: Path = typer.Argument(..., help="YAML configuration file"),
):
	"""Show all options of a configuration."""
	configuration = load_configuration(path)

	table = Table(title=f"Configuration {path.name}")
	table.add_column("Option", style="cyan")
	table.add_column("Value", style="white")
	for name, value in flatten(configuration.to_dict()):
		table.add_row(name, "-" if value is None else str(value))
	console.print(table)


@config_app.command("validate")
def config_validate(
	path: Path = typer.Argument(..., help="YAML configuration file"),
):
	"""Check a configuration for inconsistent options."""
	configuration = load_configuration(path)
	try:
		configuration.validate()
	except ConfigurationError as e:
		rprint(f"[red]✗ Invalid configuration: {e}[/red]")
		raise typer.Exit(1)

	rprint(f"[green]✓ {path} is valid[/green]")
	if configuration.requires_genetic_engineering:
		rprint("[yellow]Note: this configuration needs a surrogate model.[/yellow]")


# =============================================================================
# Status commands
# =============================================================================

def _population_sizes(population: dict[str, Any]) -> str:
	return f"{len(population['competitive'])} competitive / {len(population['non_competitive'])} non-competitive"


def _status_rows(name: str, data: dict[str, Any]) -> list[tuple[str, str]]:
	"""Key facts of one status file."""
	if name == "status.tuner.json":
		incumbent = data.get("incumbent")
		return [
			("Next generation", str(data["generation"])),
			("Strategy index", str(data["strategy_index"])),
			("Started strategies", ", ".join(str(i) for i in data["started_strategies"]) or "-"),
			("Population", _population_sizes(data["population"])),
			("Incumbent found in", "-" if incumbent is None else f"generation {incumbent['generation']}"),
		]
	if name == "status.gga.json":
		return [
			("Iterations", str(data["iteration_counter"])),
			("Incumbent kept", str(data["incumbent_kept_counter"])),
			("Population", _population_sizes(data["population"])),
			("Ranked genomes", str(len(data["all_known_ranks"]))),
		]
	if name in ("status.cma_strategy.json", "status.de_strategy.json"):
		sorting = data.get("most_recent_sorting")
		return [
			("Original incumbent", "-" if data.get("original_incumbent") is None else "yes"),
			("Instances", str(len(data.get("current_evaluation_instances", [])))),
			("Sorted points", "-" if sorting is None else str(len(sorting))),
		]
	return [(key, str(value)) for key, value in data.items() if not isinstance(value, (dict, list))]


@status_app.command("show")
def status_show(
	directory: Path = typer.Argument(..., help="Status directory of a tuning run"),
):
	"""Summarize the status files of a tuning run."""
	if not directory.is_dir():
		rprint(f"[red]Error: {directory} is not a directory[/red]")
		raise typer.Exit(1)

	files = sorted(directory.glob("status.*.json"))
	if not files:
		rprint("[dim]No status files found.[/dim]")
		return

	for file in files:
		try:
			with open(file, 'r') as f:
				data = json.load(f)
		except json.JSONDecodeError as e:
			rprint(f"[red]✗ {file.name}: {e}[/red]")
			continue

		metadata = data.pop("_metadata", None) or {}
		table = Table(title=f"{file.name} [dim]({metadata.get('type', '?')})[/dim]")
		table.add_column("Field", style="cyan")
		table.add_column("Value", style="white")
		try:
			rows = _status_rows(file.name, data)
		except KeyError as e:
			rprint(f"[red]✗ {file.name}: missing field {e}[/red]")
			continue
		for field_name, value in rows:
			table.add_row(field_name, value)
		console.print(table)


def main():
	"""Entry point for the CLI."""
	app()


if __name__ == "__main__":
	main()
