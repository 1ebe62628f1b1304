"""
Saga Pattern Implementation for multi-step transaction management

Orchestrates a sequence of steps, each with a forward action and an optional
compensation. State is persisted after every step so an attempt can be replayed
by its saga id and recovered after a restart.

A step marked as the pivot is the point of no return: once it completes, later
failures leave the saga FAILED without running any compensation.
"""

import asyncio
import logging
from typing import List, Dict, Any, Callable, Optional
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from boxoffice.core.exceptions import BoxOfficeException
from boxoffice.models.saga_state import SagaState, SagaStateStatus

logger = logging.getLogger(__name__)


class SagaStatus(str, Enum):
    """Saga execution status"""
    STARTED = "started"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"


class StepStatus(str, Enum):
    """Individual step status"""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"


@dataclass
class SagaStep:
    """
    Individual step in a Saga transaction
    """
    name: str
    action: Callable[..., Any]
    compensation: Optional[Callable[..., Any]] = None
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    error: Optional[Exception] = None
    executed_at: Optional[datetime] = None
    compensated_at: Optional[datetime] = None
    pivot: bool = False

    max_retries: int = 0
    retry_count: int = 0


@dataclass
class SagaTransaction:
    """
    Represents a complete Saga transaction with all steps

    Actions receive ``context`` and may write JSON-serializable results into it.
    """
    saga_id: str
    name: str
    steps: List[SagaStep] = field(default_factory=list)
    status: SagaStatus = SagaStatus.STARTED
    context: Dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[Exception] = None
    pivot_reached: bool = False

    @property
    def error_code(self) -> Optional[str]:
        if isinstance(self.error, BoxOfficeException):
            return self.error.code
        if self.error is not None:
            return "SAGA_STEP_FAILED"
        return None


class SagaOrchestrator:
    """
    Orchestrator for managing Saga transactions with persistent state
    Handles forward execution, compensation, and recovery after restarts
    """

    TERMINAL_STATUSES = (SagaStatus.COMPLETED, SagaStatus.FAILED, SagaStatus.COMPENSATED)

    def __init__(self, session_factory: async_sessionmaker, retry_backoff_cap: float = 10.0):
        self.session_factory = session_factory
        self.retry_backoff_cap = retry_backoff_cap
        self.logger = logging.getLogger(__name__)

    def create_saga(
        self,
        name: str,
        context: Dict[str, Any] = None,
        saga_id: Optional[str] = None
    ) -> SagaTransaction:
        """Create a new Saga transaction"""
        return SagaTransaction(
            saga_id=saga_id or str(uuid.uuid4()),
            name=name,
            context=context or {}
        )

    def add_step(
        self,
        saga: SagaTransaction,
        name: str,
        action: Callable,
        compensation: Optional[Callable] = None,
        max_retries: int = 0,
        pivot: bool = False
    ) -> SagaStep:
        """Add a step to the Saga"""
        step = SagaStep(
            name=name,
            action=action,
            compensation=compensation,
            max_retries=max_retries,
            pivot=pivot
        )
        saga.steps.append(step)
        return step

    async def claim(self, saga: SagaTransaction) -> Optional[Dict[str, Any]]:
        """
        Register the saga id before any step runs

        Returns None when the claim succeeded, otherwise the snapshot of the
        attempt that already owns this saga id.
        """
        try:
            async with self.session_factory() as db:
                db.add(SagaState(
                    saga_id=saga.saga_id,
                    saga_name=saga.name,
                    status=SagaStateStatus.STARTED,
                    context=saga.context,
                    steps_data=[],
                    completed_steps=0,
                    started_at=saga.started_at
                ))
                await db.commit()
            return None
        except IntegrityError:
            existing = await self.get_saga_status(saga.saga_id)
            if existing is None:
                raise
            self.logger.info(f"Saga {saga.saga_id} already claimed with status {existing['status']}")
            return existing

    async def _persist_saga_state(self, saga: SagaTransaction):
        """
        Persist saga state to database for replay and recovery
        """
        steps_data = [
            {
                'name': step.name,
                'status': step.status.value,
                'pivot': step.pivot,
                'retry_count': step.retry_count,
                'error': str(step.error) if step.error else None,
                'executed_at': step.executed_at.isoformat() if step.executed_at else None,
                'compensated_at': step.compensated_at.isoformat() if step.compensated_at else None
            }
            for step in saga.steps
        ]

        try:
            async with self.session_factory() as db:
                result = await db.execute(select(SagaState).where(SagaState.saga_id == saga.saga_id))
                saga_state = result.scalar_one_or_none()

                if saga_state is None:
                    saga_state = SagaState(
                        saga_id=saga.saga_id,
                        saga_name=saga.name,
                        started_at=saga.started_at
                    )
                    db.add(saga_state)

                saga_state.status = SagaStateStatus(saga.status.value)
                saga_state.context = dict(saga.context)
                saga_state.steps_data = steps_data
                saga_state.completed_steps = len([s for s in saga.steps if s.status == StepStatus.COMPLETED])
                if saga.status in self.TERMINAL_STATUSES:
                    saga_state.completed_at = saga.completed_at or datetime.now(timezone.utc)
                if saga.error:
                    saga_state.error_code = saga.error_code
                    saga_state.error_message = str(saga.error)

                await db.commit()

        except Exception as e:
            self.logger.error(f"Failed to persist saga state for {saga.saga_id}: {e}")

    async def execute_saga(self, saga: SagaTransaction) -> bool:
        """
        Execute all steps in the Saga
        Returns True if successful, False if the saga failed
        """
        self.logger.info(f"Starting saga execution: {saga.name} ({saga.saga_id})")
        saga.status = SagaStatus.EXECUTING
        await self._persist_saga_state(saga)

        executed_steps: List[SagaStep] = []

        for step in saga.steps:
            success = await self._execute_step(saga, step)

            if success:
                executed_steps.append(step)
                if step.pivot:
                    saga.pivot_reached = True
                await self._persist_saga_state(saga)
                continue

            saga.error = step.error
            saga.status = SagaStatus.FAILED

            if saga.pivot_reached:
                self.logger.critical(
                    f"Saga {saga.name} ({saga.saga_id}) failed at step {step.name} after its pivot; "
                    f"manual reconciliation required: {step.error}",
                    extra={"saga_id": saga.saga_id, "step": step.name}
                )
                saga.completed_at = datetime.now(timezone.utc)
                await self._persist_saga_state(saga)
                return False

            self.logger.warning(f"Step {step.name} failed, starting compensation")
            await self._persist_saga_state(saga)
            await self._compensate_saga(saga, executed_steps)
            return False

        saga.status = SagaStatus.COMPLETED
        saga.completed_at = datetime.now(timezone.utc)
        await self._persist_saga_state(saga)
        self.logger.info(f"Saga completed successfully: {saga.name} ({saga.saga_id})")
        return True

    async def _execute_step(self, saga: SagaTransaction, step: SagaStep) -> bool:
        """Execute a single step with retry logic"""
        step.status = StepStatus.EXECUTING

        for attempt in range(step.max_retries + 1):
            try:
                self.logger.debug(f"Executing step {step.name} (attempt {attempt + 1})")

                step.result = await step.action(saga.context)
                step.status = StepStatus.COMPLETED
                step.executed_at = datetime.now(timezone.utc)

                self.logger.debug(f"Step {step.name} completed")
                return True

            except BoxOfficeException as e:
                # Business rejections are not retried
                step.retry_count = attempt + 1
                step.error = e
                step.status = StepStatus.FAILED
                self.logger.info(f"Step {step.name} rejected: {e.code} {e.message}")
                return False

            except Exception as e:
                step.retry_count = attempt + 1
                step.error = e

                self.logger.warning(f"Step {step.name} failed (attempt {attempt + 1}): {e}", exc_info=True)

                if attempt < step.max_retries:
                    wait_time = min(2 ** attempt, self.retry_backoff_cap)
                    await asyncio.sleep(wait_time)

        step.status = StepStatus.FAILED
        return False

    async def _compensate_saga(self, saga: SagaTransaction, executed_steps: List[SagaStep]):
        """Compensate executed steps in reverse order"""
        self.logger.info(f"Starting compensation for saga {saga.name} ({saga.saga_id})")
        saga.status = SagaStatus.COMPENSATING
        await self._persist_saga_state(saga)

        all_compensated = True
        for step in reversed(executed_steps):
            if step.status == StepStatus.COMPLETED and step.compensation is not None:
                all_compensated = await self._compensate_step(saga, step) and all_compensated

        saga.status = SagaStatus.COMPENSATED if all_compensated else SagaStatus.FAILED
        saga.completed_at = datetime.now(timezone.utc)
        await self._persist_saga_state(saga)
        self.logger.info(f"Saga compensation finished: {saga.name} ({saga.status.value})")

    async def _compensate_step(self, saga: SagaTransaction, step: SagaStep) -> bool:
        """Compensate a single step"""
        step.status = StepStatus.COMPENSATING

        try:
            await step.compensation(saga.context)
            step.status = StepStatus.COMPENSATED
            step.compensated_at = datetime.now(timezone.utc)
            self.logger.info(f"Step {step.name} compensated successfully")
            return True

        except Exception as e:
            step.status = StepStatus.FAILED
            self.logger.critical(
                f"Compensation failed for step {step.name} of saga {saga.saga_id}: {e}",
                exc_info=True,
                extra={"saga_id": saga.saga_id, "step": step.name}
            )
            return False

    async def recover_incomplete_sagas(self) -> int:
        """
        Mark sagas interrupted by a restart as failed
        Should be called during application startup
        """
        async with self.session_factory() as db:
            stmt = select(SagaState).where(
                SagaState.status.in_([
                    SagaStateStatus.STARTED,
                    SagaStateStatus.EXECUTING,
                    SagaStateStatus.COMPENSATING
                ])
            )
            result = await db.execute(stmt)
            incomplete_sagas = result.scalars().all()

            self.logger.info(f"Found {len(incomplete_sagas)} incomplete sagas to recover")

            for saga_state in incomplete_sagas:
                saga_state.status = SagaStateStatus.FAILED
                saga_state.error_code = saga_state.error_code or "SAGA_INTERRUPTED"
                saga_state.error_message = "Server restart during execution - requires manual investigation"
                saga_state.completed_at = datetime.now(timezone.utc)

                self.logger.warning(
                    f"Marked saga {saga_state.saga_id} ({saga_state.saga_name}) as failed due to server restart"
                )

            await db.commit()
            return len(incomplete_sagas)

    async def get_saga_status(self, saga_id: str) -> Optional[dict]:
        """Get current status of a saga by ID"""
        async with self.session_factory() as db:
            result = await db.execute(select(SagaState).where(SagaState.saga_id == saga_id))
            saga_state = result.scalar_one_or_none()

            if saga_state is None:
                return None

            return {
                'saga_id': saga_state.saga_id,
                'saga_name': saga_state.saga_name,
                'status': saga_state.status.value,
                'context': saga_state.context or {},
                'started_at': saga_state.started_at.isoformat() if saga_state.started_at else None,
                'completed_at': saga_state.completed_at.isoformat() if saga_state.completed_at else None,
                'completed_steps': saga_state.completed_steps,
                'error_code': saga_state.error_code,
                'error_message': saga_state.error_message
            }
