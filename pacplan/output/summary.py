"""Console summary of a plan — counts per kind, issues, orphans."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pacplan.errors import IssueCode, PlanIssue, Severity

KIND_TITLES = {
    "policyDefinitions": "Policy definitions",
    "policySetDefinitions": "Policy set definitions",
    "assignments": "Assignments",
    "exemptions": "Exemptions",
}

_SEVERITY_STYLE = {
    Severity.ERROR: "[red]x[/]",
    Severity.WARNING: "[yellow]![/]",
    Severity.INFO: "[dim]-[/]",
}


def counts_table(policy_plan: dict[str, Any]) -> Table:
    """Per-kind counts of a serialized resource plan."""
    table = Table(title="Policy resources")
    table.add_column("Kind", style="cyan")
    for column in ("New", "Update", "Replace", "Delete"):
        table.add_column(column, justify="right")
    table.add_column("Unchanged", justify="right", style="dim")
    table.add_column("Orphans", justify="right", style="yellow")

    for key, title in KIND_TITLES.items():
        plan_set = policy_plan.get(key) or {}
        orphans = plan_set.get("numberOfOrphans")
        table.add_row(
            title,
            str(len(plan_set.get("new") or {})),
            str(len(plan_set.get("update") or {})),
            str(len(plan_set.get("replace") or {})),
            str(len(plan_set.get("delete") or {})),
            str(plan_set.get("numberUnchanged", 0)),
            "" if orphans is None else str(orphans),
        )
    return table


def roles_table(role_plan: dict[str, Any]) -> Table:
    role_assignments = role_plan.get("roleAssignments") or {}
    table = Table(title="Role assignments")
    table.add_column("Change", style="cyan")
    table.add_column("Role", style="dim")
    table.add_column("Scope")
    table.add_column("Assignment")
    for change, style in (("added", "green"), ("removed", "red")):
        for role in role_assignments.get(change) or []:
            table.add_row(
                f"[{style}]{change}[/]",
                str(role.get("roleDefinitionId", "")).rsplit("/", 1)[-1],
                str(role.get("scope", "")),
                str(role.get("assignmentDisplayName") or role.get("assignmentId", "")),
            )
    return table


def changed_entities(policy_plan: dict[str, Any]) -> list[tuple[str, str, str, str]]:
    """(kind, classification, name, reasons) for every changed entity."""
    rows = []
    for key, title in KIND_TITLES.items():
        plan_set = policy_plan.get(key) or {}
        for classification in ("new", "update", "replace", "delete"):
            for entity in (plan_set.get(classification) or {}).values():
                rows.append((title, classification, entity.get("name", ""), "; ".join(entity.get("reasons") or [])))
    return rows


def print_plan(
    console: Console,
    policy_plan: dict[str, Any],
    role_plan: dict[str, Any] | None = None,
    verbose: bool = False,
) -> None:
    header = f"pacOwnerId: {policy_plan.get('pacOwnerId', '')}\ncreatedOn:  {policy_plan.get('createdOn', '')}"
    if policy_plan.get("sourceCommit"):
        header += f"\ncommit:     {policy_plan['sourceCommit']}"
    console.print(Panel(header, title="Plan"))
    console.print(counts_table(policy_plan))

    if verbose:
        for kind, classification, name, reasons in changed_entities(policy_plan):
            console.print(f"  [cyan]{classification:<8}[/] {kind}: {name}  [dim]{reasons}[/]")

    if role_plan is not None:
        role_assignments = role_plan.get("roleAssignments") or {}
        if role_assignments.get("numberOfChanges"):
            console.print(roles_table(role_plan))
        else:
            console.print("[dim]No role assignment changes.[/]")


def print_issues(console: Console, issues: list[PlanIssue]) -> None:
    if not issues:
        return

    degraded = [i for i in issues if i.code == IssueCode.EXEMPTIONS_UNMANAGED]
    orphans = [i for i in issues if i.code == IssueCode.ORPHANED_EXEMPTION]
    others = [i for i in issues if i not in degraded and i not in orphans]

    if degraded:
        console.print("\n[yellow]Degraded stages:[/]")
        for issue in degraded:
            console.print(f"  [yellow]![/] {issue.message}")
    if orphans:
        console.print("\n[yellow]Orphaned exemptions (left in place):[/]")
        for issue in orphans:
            console.print(f"  [yellow]![/] {issue.name}: {issue.message}")
    if others:
        console.print("\n[bold]Issues:[/]")
        for issue in others:
            console.print(f"  {_SEVERITY_STYLE[issue.severity]} {issue}")
