"""pacplan CLI — the main entry point for building and inspecting deployment plans."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from pacplan import __version__
from pacplan.config import load_settings, resolve_folders
from pacplan.errors import ConfigurationError, Severity
from pacplan.log import configure_logging
from pacplan.output.stage_flags import DEVOPS_TYPES

console = Console()


@click.group()
@click.version_option(version=__version__)
def main():
    """pacplan — policy-as-code deployment plan builder.

    Compares the policy resources authored in a definitions folder with
    what is deployed in a governance environment, and writes the plan a
    separate apply stage executes.
    """


def _select_environment(definitions_folder: str | None, pac_selector: str | None, interactive: bool) -> str:
    if pac_selector:
        return pac_selector
    settings = load_settings(resolve_folders(definitions_folder).definitions)
    if len(settings.selectors) == 1:
        return settings.selectors[0]
    if interactive:
        return click.prompt(
            "Environment (pacSelector)",
            type=click.Choice(settings.selectors),
            show_choices=True,
        )
    raise ConfigurationError(
        f"Several environments are defined ({', '.join(settings.selectors)}); select one with -e"
    )


# ── Build ────────────────────────────────────────────────────────────


@main.command()
@click.option("--pac-selector", "-e", "pac_selector", default=None, help="Environment to plan")
@click.option(
    "--definitions-folder",
    "-d",
    envvar="PAC_DEFINITIONS_FOLDER",
    default=None,
    help="Definitions folder (default: Definitions)",
)
@click.option(
    "--output-folder",
    "-o",
    envvar="PAC_OUTPUT_FOLDER",
    default=None,
    help="Output folder for plan files (default: Output)",
)
@click.option("--inventory", "-i", default=None, help="Inventory snapshot, overrides the environment setting")
@click.option("--interactive", is_flag=True, help="Prompt for missing options")
@click.option(
    "--devops-type",
    default="none",
    type=click.Choice(DEVOPS_TYPES),
    help="CI system to publish stage flags to",
)
@click.option("--verbose", "-v", is_flag=True, help="Log every classification")
def build(
    pac_selector: str | None,
    definitions_folder: str | None,
    output_folder: str | None,
    inventory: str | None,
    interactive: bool,
    devops_type: str,
    verbose: bool,
):
    """Build the deployment plans for one environment.

    Writes plans-<pacSelector>/policy-plan.json and roles-plan.json to the
    output folder when they have changes, and removes stale ones when not.
    """
    from pacplan.output.stage_flags import get_sink
    from pacplan.output.summary import print_issues, print_plan
    from pacplan.planning.pipeline import plan_environment

    configure_logging(verbose)

    try:
        pac_selector = _select_environment(definitions_folder, pac_selector, interactive)
        folders = resolve_folders(definitions_folder, output_folder)
        sink = get_sink(devops_type, folders.output)

        console.print(f"\n[bold blue]pacplan[/] — Building plans for: {pac_selector}\n")
        result = plan_environment(
            pac_selector,
            definitions_folder=folders.definitions,
            output_folder=folders.output,
            inventory=inventory,
        )
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        raise SystemExit(1)

    print_plan(console, result.resource_plan.to_dict(), result.role_plan.to_dict(), verbose=verbose)
    print_issues(console, result.issues)

    outcome = result.outcome
    for path in outcome.paths.values():
        console.print(f"[green]Plan written to:[/] {path}")
    if not outcome.paths:
        console.print("\n[green]No changes.[/] Nothing to deploy.")

    errors = [i for i in result.issues if i.severity == Severity.ERROR]
    if errors:
        console.print(f"\n[yellow]{len(errors)} error(s) skipped part of the desired state, see issues above.[/]")

    sink.publish(outcome)


# ── Show ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("plan_file", type=click.Path(dir_okay=False))
@click.option("--pac-selector", "-e", "pac_selector", default=None, help="Check the plan belongs to this environment")
@click.option("--definitions-folder", "-d", envvar="PAC_DEFINITIONS_FOLDER", default=None)
@click.option("--verbose", "-v", is_flag=True, help="List every changed entity")
def show(plan_file: str, pac_selector: str | None, definitions_folder: str | None, verbose: bool):
    """Summarize a plan file.

    With -e, the plan must carry the pacOwnerId of the definitions folder's
    settings and sit in that environment's plans folder.
    """
    from pacplan.output.summary import print_plan, roles_table
    from pacplan.planning.aggregator import ROLES_PLAN_FILE, load_plan

    try:
        expected_owner = None
        if pac_selector:
            settings = load_settings(resolve_folders(definitions_folder).definitions)
            settings.environment(pac_selector)
            expected_owner = settings.pac_owner_id
            if Path(plan_file).parent.name != f"plans-{pac_selector}":
                raise ConfigurationError(f"{plan_file} is not in the plans folder of '{pac_selector}'")
        data = load_plan(plan_file, expected_owner)
        role_plan = None
        roles_path = Path(plan_file).with_name(ROLES_PLAN_FILE)
        if "roleAssignments" not in data and roles_path.is_file():
            role_plan = load_plan(roles_path, data.get("pacOwnerId"))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        raise SystemExit(1)

    if "roleAssignments" in data:
        role_assignments = data["roleAssignments"]
        console.print(
            f"Role assignments: {len(role_assignments.get('added') or [])} added, "
            f"{len(role_assignments.get('removed') or [])} removed"
        )
        console.print(roles_table(data))
        return

    print_plan(console, data, role_plan, verbose=verbose)


if __name__ == "__main__":
    main()
