"""Shared fixtures: a seeded in-memory store, a ticking clock and adapters."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from hrflow.adapters import (
    AttendanceWorkflowAdapter,
    EmployeeWorkflowAdapter,
    PayrollWorkflowAdapter,
    PerformanceWorkflowAdapter,
    PointsWorkflowAdapter,
    RecruitmentWorkflowAdapter,
    ResignationWorkflowAdapter,
    TrainingWorkflowAdapter,
)
from hrflow.config import HrflowConfig
from hrflow.contracts import Actor
from hrflow.manager import WorkflowManager
from hrflow.persistence import InMemoryWorkflowRepository
from hrflow.persistence.models import EntityKind

COMPANY = "acme"
OTHER_COMPANY = "globex"


class TickingClock:
    """Deterministic clock that moves forward one second per reading."""

    def __init__(self, start=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


ENTITIES = {
    EntityKind.CANDIDATE: {
        "c1": {"company_id": COMPANY, "name": "张三", "phone": "13800000000", "email": "zs@example.com", "status": "new"},
        "c-other": {"company_id": OTHER_COMPANY, "name": "外部候选人", "status": "new"},
    },
    EntityKind.JOB: {
        "j1": {"company_id": COMPANY, "title": "后端工程师"},
    },
    EntityKind.DEPARTMENT: {
        "d1": {"company_id": COMPANY, "name": "研发部", "manager_id": "u-dept-lead"},
        "d2": {"company_id": COMPANY, "name": "产品部", "manager_id": "u-product-lead"},
    },
    EntityKind.POSITION: {
        "p1": {"company_id": COMPANY, "name": "工程师"},
        "p2": {"company_id": COMPANY, "name": "高级工程师"},
        "p3": {"company_id": COMPANY, "name": "产品经理"},
    },
    EntityKind.EMPLOYEE: {
        "e1": {
            "company_id": COMPANY,
            "name": "李四",
            "user_id": "u-e1",
            "manager_id": "u-mgr",
            "department_id": "d1",
            "position_id": "p1",
            "salary": 10000,
            "employment_status": "active",
            "hire_date": "2026-01-05",
            "points": 800,
        },
        "e2": {"company_id": COMPANY, "name": "王五", "salary": 8000, "employment_status": "active"},
    },
    EntityKind.PERFORMANCE_CYCLE: {
        "pc1": {"company_id": COMPANY, "name": "2026 Q1"},
    },
    EntityKind.PERFORMANCE_RECORD: {
        "pr1": {
            "company_id": COMPANY,
            "employee_id": "e1",
            "goals": "完成支付系统重构",
            "status": "draft",
            "metadata": {"source": "import"},
        },
    },
    EntityKind.RESIGNATION: {
        "r1": {
            "company_id": COMPANY,
            "employee_id": "e1",
            "expected_last_date": "2026-03-31",
            "reason": "个人发展",
            "reason_category": "career",
            "status": "pending",
        },
    },
    EntityKind.TRAINING_COURSE: {
        "tc1": {
            "company_id": COMPANY,
            "title": "Python 进阶",
            "duration": 16,
            "price": 2000,
            "type": "online",
            "category": "技术",
            "is_active": True,
        },
        "tc-draft": {"company_id": COMPANY, "title": "领导力入门", "is_active": False, "status": "draft"},
    },
    EntityKind.TRAINING_RECORD: {
        "tr1": {"company_id": COMPANY, "course_id": "tc1", "employee_id": "e1", "status": "enrolled", "progress": 0},
    },
    EntityKind.LEAVE_REQUEST: {
        "lr-annual": {
            "company_id": COMPANY,
            "employee_id": "e1",
            "leave_type": "annual",
            "start_date": "2026-02-02",
            "end_date": "2026-02-03",
            "days": 2,
            "reason": "回家",
            "status": "pending",
        },
        "lr-marriage": {
            "company_id": COMPANY,
            "employee_id": "e2",
            "leave_type": "marriage",
            "start_date": "2026-05-01",
            "end_date": "2026-05-10",
            "days": 10,
            "reason": "结婚",
            "status": "pending",
        },
    },
    EntityKind.OVERTIME_REQUEST: {
        "ot1": {
            "company_id": COMPANY,
            "employee_id": "e1",
            "overtime_date": "2026-02-07",
            "start_time": "09:00",
            "end_time": "15:00",
            "hours": 6,
            "reason": "版本发布",
            "status": "pending",
        },
    },
    EntityKind.POINTS_REQUEST: {
        "pq1": {
            "company_id": COMPANY,
            "employee_id": "e1",
            "points": 1200,
            "category": "创新",
            "reason": "专利申请",
            "status": "pending",
        },
    },
    EntityKind.POINTS_EXCHANGE: {
        "px1": {"company_id": COMPANY, "employee_id": "e1", "item_id": "gift-1", "item_name": "耳机", "points": 500},
        "px-big": {"company_id": COMPANY, "employee_id": "e1", "item_id": "gift-2", "item_name": "电脑", "points": 5000},
    },
    EntityKind.POINTS_RULE: {
        "rule1": {"company_id": COMPANY, "name": "技术分享奖励", "points": 50, "is_active": False, "status": "draft"},
    },
}


async def seed_entities(repo) -> None:
    for kind, records in ENTITIES.items():
        for entity_id, data in records.items():
            await repo.put_entity(kind, entity_id, data)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def repo():
    repository = InMemoryWorkflowRepository()
    asyncio.run(seed_entities(repository))
    return repository


@pytest.fixture
def manager(repo, clock):
    return WorkflowManager(repository=repo, config=HrflowConfig(), clock=clock)


@pytest.fixture
def hr_actor():
    return Actor(id="u-hr", name="HR小王", role="hr", company_id=COMPANY)


@pytest.fixture
def recruitment(manager):
    return RecruitmentWorkflowAdapter(manager)


@pytest.fixture
def employee_flows(manager):
    return EmployeeWorkflowAdapter(manager)


@pytest.fixture
def performance(manager):
    return PerformanceWorkflowAdapter(manager)


@pytest.fixture
def resignation(manager):
    return ResignationWorkflowAdapter(manager)


@pytest.fixture
def training(manager):
    return TrainingWorkflowAdapter(manager)


@pytest.fixture
def attendance(manager):
    return AttendanceWorkflowAdapter(manager)


@pytest.fixture
def points(manager):
    return PointsWorkflowAdapter(manager)


@pytest.fixture
def payroll(manager):
    return PayrollWorkflowAdapter(manager)
