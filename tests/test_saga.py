"""
Saga orchestrator with persisted state
"""

import pytest
import pytest_asyncio

from boxoffice.core.exceptions import PaymentError
from boxoffice.core.saga import SagaOrchestrator, SagaStatus, StepStatus


class TestSagaOrchestrator:
    """Test the core Saga orchestrator functionality"""

    @pytest_asyncio.fixture
    async def orchestrator(self, session_factory):
        return SagaOrchestrator(session_factory, retry_backoff_cap=0)

    @pytest.mark.asyncio
    async def test_saga_creation(self, orchestrator):
        saga = orchestrator.create_saga(
            name="test_saga",
            context={"test_key": "test_value"}
        )

        assert saga.name == "test_saga"
        assert saga.context["test_key"] == "test_value"
        assert saga.status == SagaStatus.STARTED
        assert len(saga.steps) == 0

    @pytest.mark.asyncio
    async def test_successful_saga_execution(self, orchestrator):
        saga = orchestrator.create_saga("test_success", saga_id="saga-ok")

        async def step1_action(context):
            context["step1"] = "done"
            return {"step1": "completed"}

        async def step2_action(context):
            return {"step2": context["step1"]}

        orchestrator.add_step(saga, "step1", step1_action)
        orchestrator.add_step(saga, "step2", step2_action)

        success = await orchestrator.execute_saga(saga)

        assert success is True
        assert saga.status == SagaStatus.COMPLETED
        assert saga.steps[1].result == {"step2": "done"}

        state = await orchestrator.get_saga_status("saga-ok")
        assert state["status"] == "completed"
        assert state["completed_steps"] == 2
        assert state["context"]["step1"] == "done"

    @pytest.mark.asyncio
    async def test_failure_compensates_in_reverse(self, orchestrator):
        saga = orchestrator.create_saga("test_failure", saga_id="saga-fail")
        compensated = []

        async def ok(context):
            return None

        def compensation(name):
            async def _compensate(context):
                compensated.append(name)
            return _compensate

        async def boom(context):
            raise RuntimeError("step 3 failed")

        orchestrator.add_step(saga, "first", ok, compensation("first"))
        orchestrator.add_step(saga, "second", ok, compensation("second"))
        orchestrator.add_step(saga, "third", boom, compensation("third"))

        success = await orchestrator.execute_saga(saga)

        assert success is False
        assert saga.status == SagaStatus.COMPENSATED
        assert compensated == ["second", "first"]
        assert saga.error_code == "SAGA_STEP_FAILED"
        assert (await orchestrator.get_saga_status("saga-fail"))["status"] == "compensated"

    @pytest.mark.asyncio
    async def test_no_compensation_after_pivot(self, orchestrator):
        saga = orchestrator.create_saga("test_pivot", saga_id="saga-pivot")
        compensated = []

        async def ok(context):
            return None

        async def undo(context):
            compensated.append("reserve")

        async def boom(context):
            raise RuntimeError("could not record")

        orchestrator.add_step(saga, "reserve", ok, undo)
        orchestrator.add_step(saga, "charge", ok, pivot=True)
        orchestrator.add_step(saga, "record", boom)

        success = await orchestrator.execute_saga(saga)

        assert success is False
        assert saga.status == SagaStatus.FAILED
        assert saga.pivot_reached is True
        assert compensated == []
        assert (await orchestrator.get_saga_status("saga-pivot"))["status"] == "failed"

    @pytest.mark.asyncio
    async def test_failed_compensation_leaves_saga_failed(self, orchestrator):
        saga = orchestrator.create_saga("test_bad_compensation")

        async def ok(context):
            return None

        async def broken_undo(context):
            raise RuntimeError("undo failed")

        async def boom(context):
            raise RuntimeError("step failed")

        orchestrator.add_step(saga, "reserve", ok, broken_undo)
        orchestrator.add_step(saga, "charge", boom)

        assert await orchestrator.execute_saga(saga) is False
        assert saga.status == SagaStatus.FAILED
        assert saga.steps[0].status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_retried(self, orchestrator):
        saga = orchestrator.create_saga("test_retry")
        attempts = []

        async def flaky(context):
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("transient")
            return "ok"

        orchestrator.add_step(saga, "flaky", flaky, max_retries=2)

        assert await orchestrator.execute_saga(saga) is True
        assert len(attempts) == 3
        assert saga.steps[0].retry_count == 2

    @pytest.mark.asyncio
    async def test_business_rejections_are_not_retried(self, orchestrator):
        saga = orchestrator.create_saga("test_reject")
        attempts = []

        async def declined(context):
            attempts.append(1)
            raise PaymentError("Your card was declined", code="CARD_DECLINED")

        orchestrator.add_step(saga, "charge", declined, max_retries=3)

        assert await orchestrator.execute_saga(saga) is False
        assert len(attempts) == 1
        assert saga.error_code == "CARD_DECLINED"

    @pytest.mark.asyncio
    async def test_claim_returns_existing_attempt(self, orchestrator):
        first = orchestrator.create_saga("order", context={"n": 1}, saga_id="key-1")
        second = orchestrator.create_saga("order", context={"n": 2}, saga_id="key-1")

        assert await orchestrator.claim(first) is None
        existing = await orchestrator.claim(second)

        assert existing["saga_id"] == "key-1"
        assert existing["status"] == "started"
        assert existing["context"] == {"n": 1}

    @pytest.mark.asyncio
    async def test_recover_incomplete_sagas(self, orchestrator):
        stuck = orchestrator.create_saga("order", saga_id="stuck")
        await orchestrator.claim(stuck)
        done = orchestrator.create_saga("order", saga_id="done")
        await orchestrator.execute_saga(done)

        recovered = await orchestrator.recover_incomplete_sagas()

        assert recovered == 1
        state = await orchestrator.get_saga_status("stuck")
        assert state["status"] == "failed"
        assert state["error_code"] == "SAGA_INTERRUPTED"
        assert (await orchestrator.get_saga_status("done"))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_unknown_saga(self, orchestrator):
        assert await orchestrator.get_saga_status("missing") is None
