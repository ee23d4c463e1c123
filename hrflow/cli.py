"""Command line interface for inspecting and driving hrflow workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, List, Optional, TypeVar

import typer

from hrflow.adapters import get_adapter
from hrflow.config import load_config
from hrflow.contracts import Actor, PerformanceScores, PerformanceStepResult, StepResult
from hrflow.exceptions import HrflowError, NotFoundError
from hrflow.manager import WorkflowManager
from hrflow.persistence import get_repository
from hrflow.persistence.models import (
    HistoryFilters,
    InstanceFilters,
    InstanceStatus,
    WorkflowInstance,
    WorkflowType,
)
from hrflow.stats import WorkflowStats
from hrflow.utils.retry import retry_on_conflict

T = TypeVar("T")

app = typer.Typer(help="CLI for hrflow workflows")

instance_app = typer.Typer(help="Commands for managing workflow instances")
app.add_typer(instance_app, name="instance")


@app.callback()
def main() -> None:
    """hrflow CLI entry point."""
    pass


def _manager() -> WorkflowManager:
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())
    return WorkflowManager(repository=get_repository(), config=config)


def _run(coro: Awaitable[T]) -> T:
    try:
        return asyncio.run(coro)
    except HrflowError as exc:
        typer.secho(f"Error ({exc.code}): {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_instance(instance: WorkflowInstance) -> None:
    typer.echo(f"Instance {instance.id}: {instance.status.value}")
    typer.echo(f"Name: {instance.name}")
    typer.echo(f"Type: {instance.type.value}  Priority: {instance.priority.value}  Version: {instance.version}")
    typer.echo(f"Step: {instance.current_step_index}/{len(instance.steps)}")
    if instance.cancel_reason:
        typer.echo(f"Cancel reason: {instance.cancel_reason}")
    for position, step in enumerate(instance.steps, start=1):
        marker = "*" if position == instance.current_step_index else " "
        assignee = step.assignee_id or f"role:{step.assignee_role}"
        typer.echo(
            f"{marker} {position}. {step.name} [{step.status.value}] -> {assignee}"
            + (f" result={step.result}" if step.result else "")
        )


@instance_app.command("list")
def instance_list(
    company: str = typer.Option(..., help="Company (tenant) id"),
    type: Optional[WorkflowType] = typer.Option(None, help="Filter by workflow type"),
    status: Optional[InstanceStatus] = typer.Option(None, help="Filter by status"),
    limit: Optional[int] = typer.Option(None, min=1),
    skip: int = typer.Option(0, min=0),
) -> None:
    """
    List workflow instances of a company, newest first.

    Example:
        hrflow instance list --company acme --type recruitment --status active
    """
    manager = _manager()
    limit = limit or manager.config.pagination.default_limit
    instances = _run(
        manager.get_instances(
            InstanceFilters(company_id=company, type=type, status=status, limit=limit, skip=skip)
        )
    )
    if not instances:
        typer.echo("No instances found")
        return
    for instance in instances:
        typer.echo(f"{instance.id}\t{instance.type.value}\t{instance.status.value}\t{instance.name}")


@instance_app.command("show")
def instance_show(
    instance_id: str,
    company: str = typer.Option(..., help="Company (tenant) id"),
) -> None:
    """Show an instance with its steps; the active step is starred."""
    manager = _manager()
    instance = _run(manager.get_instance_by_id(instance_id, company))
    if instance is None:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)
    _echo_instance(instance)


@instance_app.command("advance")
def instance_advance(
    instance_id: str,
    step_id: str = typer.Option(..., help="Id of the active step"),
    result: str = typer.Option(..., help="Outcome of the step, e.g. passed or approved"),
    company: str = typer.Option(..., help="Company (tenant) id"),
    actor_id: str = typer.Option(..., help="Acting user id"),
    actor_name: str = typer.Option(""),
    actor_role: str = typer.Option(""),
    comments: Optional[str] = typer.Option(None),
    advance: bool = typer.Option(True, help="Move to the next step after completing this one"),
    self_score: Optional[float] = typer.Option(None, help="Performance self score"),
    reviewer_score: Optional[float] = typer.Option(None, help="Performance reviewer score"),
    final_score: Optional[float] = typer.Option(None, help="Performance final score"),
) -> None:
    """
    Complete the active step of an instance.

    Conflicting concurrent writes are retried a few times before giving up.

    Example:
        hrflow instance advance <id> --step-id <step> --result passed --company acme --actor-id u1
    """
    manager = _manager()
    actor = Actor(id=actor_id, name=actor_name, role=actor_role, company_id=company)
    fields = dict(step_id=step_id, result=result, comments=comments, advance_to_next=advance)
    if any(score is not None for score in (self_score, reviewer_score, final_score)):
        step_result: StepResult = PerformanceStepResult(
            **fields,
            scores=PerformanceScores(
                self_score=self_score, reviewer_score=reviewer_score, final_score=final_score
            ),
        )
    else:
        step_result = StepResult(**fields)

    async def advance_once() -> WorkflowInstance:
        instance = await manager.get_instance_by_id(instance_id, company)
        if instance is None:
            raise NotFoundError("workflow_instance", instance_id)
        adapter = get_adapter(manager, instance.type)
        return await adapter.advance(instance_id, step_result, actor)

    instance = _run(retry_on_conflict(advance_once))
    typer.echo(f"Instance {instance.id}: {instance.status.value} (step {instance.current_step_index}/{len(instance.steps)})")


@instance_app.command("approve")
def instance_approve(
    instance_id: str,
    company: str = typer.Option(..., help="Company (tenant) id"),
    actor_id: str = typer.Option(..., help="Acting user id"),
    comments: Optional[str] = typer.Option(None),
) -> None:
    """Approve the active approval step and move on."""
    manager = _manager()
    actor = _actor(actor_id, company)

    async def approve_once() -> WorkflowInstance:
        instance = await manager.get_instance_by_id(instance_id, company)
        if instance is None:
            raise NotFoundError("workflow_instance", instance_id)
        return await get_adapter(manager, instance.type).approve(instance_id, actor, comments)

    instance = _run(retry_on_conflict(approve_once))
    typer.echo(f"Instance {instance.id}: {instance.status.value} (step {instance.current_step_index}/{len(instance.steps)})")


def _actor(actor_id: str, company: str) -> Actor:
    return Actor(id=actor_id, company_id=company)


@instance_app.command("pause")
def instance_pause(
    instance_id: str,
    company: str = typer.Option(..., help="Company (tenant) id"),
    actor_id: str = typer.Option(..., help="Acting user id"),
) -> None:
    """Pause an active instance."""
    instance = _run(_manager().pause_instance(instance_id, _actor(actor_id, company)))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


@instance_app.command("resume")
def instance_resume(
    instance_id: str,
    company: str = typer.Option(..., help="Company (tenant) id"),
    actor_id: str = typer.Option(..., help="Acting user id"),
) -> None:
    """Resume a paused instance."""
    instance = _run(_manager().resume_instance(instance_id, _actor(actor_id, company)))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


@instance_app.command("cancel")
def instance_cancel(
    instance_id: str,
    reason: str = typer.Option(..., help="Why the instance is cancelled"),
    company: str = typer.Option(..., help="Company (tenant) id"),
    actor_id: str = typer.Option(..., help="Acting user id"),
) -> None:
    """Cancel an instance without touching its related records."""
    instance = _run(_manager().cancel_instance(instance_id, reason, _actor(actor_id, company)))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


@app.command("history")
def history(
    company: str = typer.Option(..., help="Company (tenant) id"),
    instance: Optional[str] = typer.Option(None, help="Only entries of this instance"),
    type: Optional[WorkflowType] = typer.Option(None, help="Only entries of this workflow type"),
) -> None:
    """Print the audit trail in chronological order."""
    entries = _run(
        _manager().get_history(HistoryFilters(company_id=company, instance_id=instance, type=type))
    )
    if not entries:
        typer.echo("No history found")
        return
    for entry in entries:
        typer.echo(
            f"{entry.created_at.isoformat()}\t{entry.action.value}\t{entry.actor_id}\t{entry.description}"
        )


@app.command("stats")
def stats(
    company: str = typer.Option(..., help="Company (tenant) id"),
    type: WorkflowType = typer.Option(..., help="Workflow type"),
) -> None:
    """Show counts per status, average duration and completion rate."""
    manager = _manager()

    async def compute() -> WorkflowStats:
        return await get_adapter(manager, type).get_stats(company, type)

    result = _run(compute())
    typer.echo(f"Total: {result.total}")
    for status, count in result.by_status.items():
        typer.echo(f"  {status.value}: {count}")
    typer.echo(f"Average time: {result.avg_time}")
    typer.echo(f"{result.rate_name}: {result.rate:.2f}%")


@app.command("pending")
def pending(
    company: str = typer.Option(..., help="Company (tenant) id"),
    user: Optional[str] = typer.Option(None, help="Assignee user id"),
    role: Optional[List[str]] = typer.Option(None, help="Assignee role; repeatable"),
) -> None:
    """List active steps waiting on a user or any of the given roles."""
    items = _run(_manager().get_pending_steps(company, user, tuple(role or ())))
    if not items:
        typer.echo("No pending steps")
        return
    for item in items:
        typer.echo(f"{item.instance_id}\t{item.step.id}\t{item.step.name}\t{item.instance_name}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
