"""Typed errors raised by the workflow engine and its adapters."""

from __future__ import annotations

from typing import Any, Optional


class HrflowError(Exception):
    """Base class for all hrflow errors.

    ``code`` is a stable, machine-readable identifier that callers (HTTP
    handlers, the CLI) can map to responses without parsing messages.
    """

    code = "hrflow_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details = details


class NotFoundError(HrflowError):
    """A workflow instance or a referenced business record does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str]) -> None:
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class StepMismatchError(HrflowError):
    """The submitted step is not the instance's active step."""

    code = "step_mismatch"

    def __init__(self, instance_id: str, expected: Optional[str], received: str) -> None:
        super().__init__(
            f"Step {received} is not the active step of instance {instance_id} (expected {expected})",
            instance_id=instance_id,
            expected=expected,
            received=received,
        )
        self.instance_id = instance_id
        self.expected = expected
        self.received = received


class InvalidTransitionError(HrflowError):
    """Status transition outside the instance state machine."""

    code = "invalid_transition"

    def __init__(self, instance_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Instance {instance_id} cannot go from {current} to {target}",
            instance_id=instance_id,
            current=current,
            target=target,
        )
        self.instance_id = instance_id
        self.current = current
        self.target = target


class InvalidStepGraphError(HrflowError):
    """A supplied step graph is empty or malformed."""

    code = "invalid_step_graph"


class UnsupportedWorkflowTypeError(HrflowError, ValueError):
    """No adapter owns the requested workflow type."""

    code = "unsupported_workflow_type"

    def __init__(self, workflow_type: str, owner: Optional[str] = None) -> None:
        where = f"{owner} does not handle" if owner else "No adapter handles"
        super().__init__(f"{where} {workflow_type} workflows", workflow_type=workflow_type)
        self.workflow_type = workflow_type


class NotApprovalStepError(HrflowError):
    """Approve was called while the active step is not an approval."""

    code = "not_approval_step"

    def __init__(self, instance_id: str, step_name: Optional[str]) -> None:
        super().__init__(
            f"Active step {step_name} of instance {instance_id} is not an approval step",
            instance_id=instance_id,
            step_name=step_name,
        )
        self.instance_id = instance_id


class InsufficientPointsError(HrflowError):
    code = "insufficient_points"

    def __init__(self, employee_id: str, balance: float, required: float) -> None:
        super().__init__(
            f"Employee {employee_id} has {balance} points, {required} required",
            employee_id=employee_id,
            balance=balance,
            required=required,
        )


class StoreFailureError(HrflowError):
    """The persistence backend failed."""

    code = "store_failure"


class ConcurrencyConflictError(HrflowError):
    """An instance write lost an optimistic concurrency race."""

    code = "concurrency_conflict"

    def __init__(self, instance_id: str, expected_version: int) -> None:
        super().__init__(
            f"Instance {instance_id} was modified concurrently (expected version {expected_version})",
            instance_id=instance_id,
            expected_version=expected_version,
        )
        self.instance_id = instance_id
        self.expected_version = expected_version


__all__ = [
    "HrflowError",
    "NotFoundError",
    "StepMismatchError",
    "InvalidTransitionError",
    "InvalidStepGraphError",
    "UnsupportedWorkflowTypeError",
    "NotApprovalStepError",
    "InsufficientPointsError",
    "StoreFailureError",
    "ConcurrencyConflictError",
]
