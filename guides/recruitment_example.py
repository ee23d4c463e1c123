"""Run a recruitment workflow end to end against the in-memory store."""

import asyncio

from hrflow import Actor, RecruitmentWorkflowAdapter, StepResult, WorkflowManager
from hrflow.persistence import InMemoryWorkflowRepository
from hrflow.persistence.models import EntityKind, HistoryFilters


async def main():
    repo = InMemoryWorkflowRepository()
    await repo.put_entity(
        EntityKind.CANDIDATE, "c1", {"company_id": "acme", "name": "张三", "status": "new"}
    )
    await repo.put_entity(EntityKind.JOB, "j1", {"company_id": "acme", "title": "后端工程师"})

    manager = WorkflowManager(repository=repo)
    recruitment = RecruitmentWorkflowAdapter(manager)
    hr = Actor(id="u-hr", name="HR小王", role="hr", company_id="acme")

    instance = await recruitment.create_recruitment_workflow("acme", "c1", "j1", hr.id, hr.name)
    print(f"✅ Created {instance.name} ({instance.id})")

    while instance.current_step is not None and not instance.is_terminal:
        step = instance.current_step
        instance = await recruitment.advance_recruitment_step(
            instance.id, StepResult(step_id=step.id, result="passed"), hr
        )
        candidate = await repo.get_entity(EntityKind.CANDIDATE, "c1")
        print(f"➡️  {step.name} done, candidate is {candidate['status']}")

    print(f"🏁 Instance status: {instance.status.value}")
    for entry in await manager.get_history(HistoryFilters(company_id="acme", instance_id=instance.id)):
        print(f"  {entry.action.value:15} {entry.description}")

    stats = await recruitment.get_recruitment_stats("acme")
    print(f"📊 {stats.as_dict()}")


if __name__ == "__main__":
    asyncio.run(main())
