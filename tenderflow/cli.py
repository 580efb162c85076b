"""Command line interface for tenderflow approval workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
import yaml

from tenderflow.config import load_config
from tenderflow.contracts import InstanceStatus
from tenderflow.engine import WorkflowEngine
from tenderflow.errors import WorkflowError
from tenderflow.persistence import get_repository
from tenderflow.scheduler import TimeoutScheduler

app = typer.Typer(help="CLI for tenderflow approval workflows")

# Command groups
template_app = typer.Typer(help="Commands for managing workflow templates")
workflow_app = typer.Typer(help="Commands for running workflow instances")
scheduler_app = typer.Typer(help="Commands for the timeout scheduler")

app.add_typer(template_app, name="template")
app.add_typer(workflow_app, name="workflow")
app.add_typer(scheduler_app, name="scheduler")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    """tenderflow CLI entry point."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _engine() -> WorkflowEngine:
    config = load_config()
    return WorkflowEngine.from_config(config, repository=get_repository())


def _split(values: Optional[List[str]]) -> List[str]:
    return [v for raw in values or [] for v in raw.split(",") if v]


def _run(coro):
    """Run an engine coroutine and turn workflow errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except WorkflowError as e:
        typer.secho(f"Error ({e.kind.value}): {e.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# Templates
@template_app.command("load")
def template_load(path: Path) -> None:
    """
    Create a workflow template from a YAML file.

    Example:
        tenderflow template load ./templates/purchase_order.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    data = yaml.safe_load(path.read_text()) or {}
    template = _run(_engine().templates.create_from_mapping(data))
    typer.echo(f"Created template {template.id} ({template.name} v{template.version})")


@template_app.command("list")
def template_list(
    all_versions: bool = typer.Option(
        False, "--all", help="Include deactivated template versions"
    ),
) -> None:
    """List workflow templates."""
    templates = _run(_engine().templates.list_templates(active_only=not all_versions))
    if not templates:
        typer.echo("No templates found")
        return
    for t in templates:
        state = "active" if t.active else "inactive"
        typer.echo(f"{t.id}\t{t.name}\tv{t.version}\t{t.entity_type}\t{state}")


@template_app.command("deactivate")
def template_deactivate(template_id: str) -> None:
    """Stop a template from being used for new workflows."""
    template = _run(_engine().templates.deactivate_template(template_id))
    typer.echo(f"Deactivated template {template.id}")


# ----------------------------------------------------------------------
# Workflows
@workflow_app.command("start")
def workflow_start(
    template_id: str,
    entity_type: str,
    entity_id: str,
    initiator: str = typer.Option(..., "--initiator", help="Principal starting the workflow"),
    context: Optional[str] = typer.Option(
        None, "--context", help="JSON object with workflow context"
    ),
) -> None:
    """
    Start a workflow instance for an entity.

    Example:
        tenderflow workflow start <template-id> purchase_order PO-1 \\
            --initiator u1 --context '{"amount": 5000}'
    """
    try:
        ctx = json.loads(context) if context else {}
    except json.JSONDecodeError as e:
        typer.secho(f"Invalid context JSON: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    instance = _run(
        _engine().start_workflow(template_id, entity_type, entity_id, initiator, ctx)
    )
    typer.echo(f"Started workflow {instance.id}: {instance.status.value}")


@workflow_app.command("list")
def workflow_list(
    status: Optional[InstanceStatus] = typer.Option(None, "--status"),
    entity_type: Optional[str] = typer.Option(None, "--entity-type"),
    page: int = typer.Option(1, "--page"),
    limit: int = typer.Option(10, "--limit"),
) -> None:
    """List workflow instances, newest first."""
    items, total = _run(
        _engine().list_instances(
            status=status, entity_type=entity_type, page=page, limit=limit
        )
    )
    if not items:
        typer.echo("No workflows found")
        return
    for wf in items:
        typer.echo(
            f"{wf.id}\t{wf.status.value}\t{wf.entity_type}/{wf.entity_id}"
            f"\tstep {wf.current_step_order}"
        )
    typer.echo(f"Showing {len(items)} of {total}")


@workflow_app.command("show")
def workflow_show(instance_id: str) -> None:
    """Show an instance and its steps."""
    engine = _engine()

    async def _load():
        return await engine.get_instance(instance_id), await engine.get_steps(instance_id)

    try:
        wf, steps = asyncio.run(_load())
    except WorkflowError:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.id}: {wf.status.value}")
    typer.echo(f"Entity: {wf.entity_type}/{wf.entity_id}")
    if wf.context:
        typer.echo(f"Context: {json.dumps(wf.context, default=str)}")
    for step in steps:
        approvers = ", ".join(step.approver_ids) or "-"
        typer.echo(
            f"{step.order}. {step.name}: {step.status.value}"
            f" (role={step.approver_role or '-'}, ids={approvers})"
            + (f" - {step.comments}" if step.comments else "")
        )


@workflow_app.command("history")
def workflow_history(instance_id: str) -> None:
    """Show the audit trail of an instance."""
    actions = _run(_engine().get_history(instance_id))
    if not actions:
        typer.echo("No history recorded")
        return
    for action in actions:
        detail = ""
        if action.result is not None:
            detail = action.result.message or action.result.error or ""
        typer.echo(
            f"{action.created_at.isoformat()}\t{action.type.value}\t{action.trigger.value}"
            f"\t{action.status.value}\t{action.executed_by}\t{detail}"
        )


@workflow_app.command("pending")
def workflow_pending(principal_id: str) -> None:
    """List steps awaiting a decision from a principal."""
    steps = _run(_engine().get_pending_approvals(principal_id))
    if not steps:
        typer.echo("No pending approvals")
        return
    for step in steps:
        typer.echo(f"{step.id}\t{step.instance_id}\t{step.name}")


@workflow_app.command("approve")
def workflow_approve(
    step_id: str,
    approver: str = typer.Option(..., "--as", help="Approving principal"),
    comments: str = typer.Option("", "--comments"),
) -> None:
    """Approve an active step."""
    step = _run(_engine().approve_step(step_id, approver, comments))
    typer.echo(f"Step {step.id}: {step.status.value}")


@workflow_app.command("reject")
def workflow_reject(
    step_id: str,
    rejector: str = typer.Option(..., "--as", help="Rejecting principal"),
    reason: str = typer.Option("", "--reason"),
) -> None:
    """Reject an active step, terminating its workflow."""
    step = _run(_engine().reject_step(step_id, rejector, reason))
    typer.echo(f"Step {step.id}: {step.status.value}")


@workflow_app.command("revert")
def workflow_revert(
    instance_id: str, user: str = typer.Option(..., "--as", help="Acting principal")
) -> None:
    """Move a workflow back to its previous step."""
    wf = _run(_engine().revert(instance_id, user))
    typer.echo(f"Workflow {wf.id} now at step {wf.current_step_order}")


@workflow_app.command("escalate")
def workflow_escalate(
    instance_id: str, user: str = typer.Option(..., "--as", help="Acting principal")
) -> None:
    """Hand the current step over to its escalation approvers."""
    wf = _run(_engine().escalate(instance_id, user))
    typer.echo(f"Workflow {wf.id} escalated at step {wf.current_step_order}")


@workflow_app.command("assign")
def workflow_assign(
    instance_id: str,
    user: str = typer.Option(..., "--as", help="Acting principal"),
    approver_ids: Optional[List[str]] = typer.Option(
        None, "--approver", help="Approver id; repeat or comma-separate"
    ),
    role: Optional[str] = typer.Option(None, "--role"),
) -> None:
    """Replace the approvers of the current step."""
    wf = _run(_engine().assign(instance_id, user, _split(approver_ids), role))
    typer.echo(f"Workflow {wf.id} step {wf.current_step_order} reassigned")


@workflow_app.command("cancel")
def workflow_cancel(
    instance_id: str,
    user: str = typer.Option(..., "--as", help="Acting principal"),
    reason: str = typer.Option("", "--reason"),
) -> None:
    """Cancel a running workflow."""
    wf = _run(_engine().cancel_workflow(instance_id, user, reason))
    typer.echo(f"Workflow {wf.id}: {wf.status.value}")


# ----------------------------------------------------------------------
# Scheduler
@scheduler_app.command("run")
def scheduler_run(
    lifespan: Optional[float] = typer.Option(
        None, "--lifespan", help="Stop after this many seconds"
    ),
    poll_interval: Optional[float] = typer.Option(None, "--poll-interval"),
) -> None:
    """
    Run the timeout scheduler.

    Fires overdue step timeouts once at startup, then polls the timer table.

    Example:
        tenderflow scheduler run --lifespan 300
    """
    config = load_config()
    engine = WorkflowEngine.from_config(config, repository=get_repository())
    scheduler = TimeoutScheduler(
        engine,
        poll_interval=poll_interval or config.scheduler.poll_interval_seconds,
    )
    typer.echo("Starting timeout scheduler")
    asyncio.run(
        scheduler.run(lifespan=lifespan, recover=config.scheduler.recovery_sweep)
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
