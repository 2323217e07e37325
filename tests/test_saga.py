"""Tests for saga steps, chains and compensation."""

import pytest
from kungfu import Result, Ok, Error, LazyCoroResult

from cartflow import saga as S

from helpers import ok, err


def succeed[T](value: T) -> LazyCoroResult[T, str]:
    async def execute() -> Result[T, str]:
        return Ok(value)

    return LazyCoroResult(execute)


def fail(reason: str) -> LazyCoroResult[int, str]:
    async def execute() -> Result[int, str]:
        return Error(reason)

    return LazyCoroResult(execute)


class Journal:
    """Records compensator calls in order."""

    def __init__(self) -> None:
        self.undone: list[object] = []

    def undo(self, label: str):
        async def compensate(value: object) -> None:
            self.undone.append((label, value))

        return compensate

    def broken(self, label: str):
        async def compensate(value: object) -> None:
            raise RuntimeError(f"cannot undo {label}")

        return compensate


@pytest.fixture
def journal():
    return Journal()


class TestTransaction:
    async def test_compensators_run_in_reverse(self, journal):
        tx = S.Transaction("order")
        ok(await tx.step(S.step(succeed("order-1"), journal.undo("void"), name="create")))
        ok(await tx.step(S.step(succeed(8), journal.undo("restock"), name="decrement")))
        error = err(await tx.step(S.step(fail("cart down"), journal.undo("never"), name="clear")))

        failure = await tx.abort(error)

        assert journal.undone == [("restock", 8), ("void", "order-1")]
        assert failure.error == "cart down"
        assert failure.step_failed == 3
        assert failure.failed_step == "clear"
        assert failure.rollback.undone == ("decrement", "create")
        assert failure.rollback_complete is True

    async def test_failing_compensator_does_not_stop_the_rest(self, journal):
        tx = S.Transaction("order")
        ok(await tx.step(S.step(succeed(1), journal.undo("first"), name="first")))
        ok(await tx.step(S.step(succeed(2), journal.broken("second"), name="second")))

        failure = await tx.abort("boom")

        assert journal.undone == [("first", 1)]
        assert failure.rollback.failed == ("second",)
        assert failure.compensators_failed == 1
        assert failure.rollback_complete is False

    async def test_commit_forgets_compensators(self, journal):
        tx = S.Transaction("order")
        ok(await tx.step(S.step(succeed(1), journal.undo("first"))))

        result = tx.commit("done")

        assert result.value == "done"
        assert result.compensators_recorded == 1
        assert tx.compensators_recorded == 0
        assert (await tx.rollback()).undone == ()
        assert journal.undone == []

    async def test_rollback_is_not_repeated(self, journal):
        tx = S.Transaction("order")
        ok(await tx.step(S.step(succeed(1), journal.undo("first"))))

        assert (await tx.rollback()).undone == ("step",)
        assert (await tx.rollback()).undone == ()
        assert journal.undone == [("first", 1)]

    async def test_step_without_compensator_records_nothing(self):
        tx = S.Transaction("order")
        ok(await tx.step(S.step(succeed(1))))

        assert tx.compensators_recorded == 0


class TestCommit:
    async def test_result_names_every_step(self, journal):
        tx = S.Transaction("order")
        ok(await tx.step(S.step(succeed(2), journal.undo("a"), name="create")))
        ok(await tx.step(S.step(succeed(20), name="clear")))

        result = tx.commit(20)

        assert result.steps == ("create", "clear")
        assert result.steps_executed == 2
        assert journal.undone == []


class TestFromAsync:
    async def test_exception_becomes_error(self):
        async def explode() -> int:
            raise ConnectionError("down")

        tx = S.Transaction("order")
        error = err(await tx.step(S.from_async(explode, on_error=lambda e: f"wrapped: {e}")))

        assert error == "wrapped: down"
        assert tx.compensators_recorded == 0

    async def test_value_passes_through_and_records_compensator(self, journal):
        async def answer() -> int:
            return 7

        tx = S.Transaction("order")
        step = S.from_async(answer, on_error=str, compensate=journal.undo("answer"), name="answer")

        assert ok(await tx.step(step)) == 7
        failure = await tx.abort("later step failed")
        assert failure.rollback.undone == ("answer",)
        assert journal.undone == [("answer", 7)]
