"""
Scheduler のユニットテスト

テスト対象:
  - 空のステップ列の設定エラー
  - 登録順の逐次実行と各ステップの一度だけの実行
  - 非致命的失敗（継続）と致命的失敗（停止・残りを破棄）
  - PollUntil のポーリングタスク停止
  - RunContext の状態遷移
  - 進捗出力と失敗レポート
"""

from __future__ import annotations

import asyncio
import io
from unittest.mock import MagicMock, call

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from steptest.core.executor import StepExecutor
from steptest.core.model import Step, StepKind
from steptest.core.plan import StepPlan
from steptest.core.progress import ProgressPrinter
from steptest.core.scheduler import (
    NoStepsError,
    RunContext,
    RunResult,
    RunState,
    Scheduler,
    StepOutcome,
)


def step_names() -> st.SearchStrategy[str]:
    """ステップ名のストラテジー。"""
    return st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789 -_", min_size=1, max_size=20)


def _boom() -> None:
    raise RuntimeError("boom")


def _make_scheduler() -> Scheduler:
    return Scheduler(StepExecutor(wait_interval_ms=1), poll_interval_ms=1)


def _passing_operation(kind: StepKind, index: int, executed: list[int]):
    """種別ごとに成功する操作を生成する（実行時に index を記録）。"""
    def operation():
        executed.append(index)
        if kind is StepKind.ASSERT_THROWS:
            raise ValueError("expected")
        return True

    return operation


# ===========================================================================
# テスト: 設定エラー
# ===========================================================================

class TestNoSteps:
    """空のステップ列のテスト。"""

    async def test_empty_raises(self, scheduler: Scheduler) -> None:
        with pytest.raises(NoStepsError, match="No steps in test runner"):
            await scheduler.run([])

    def test_is_value_error(self) -> None:
        assert issubclass(NoStepsError, ValueError)

    @pytest.mark.parametrize("interval", [0, -5])
    def test_invalid_poll_interval(self, interval: float) -> None:
        with pytest.raises(ValueError):
            Scheduler(StepExecutor(), poll_interval_ms=interval)


# ===========================================================================
# テスト: 逐次実行
# ===========================================================================

class TestSequencing:
    """逐次実行のテスト。"""

    async def test_all_pass(self, scheduler: Scheduler) -> None:
        executed: list[str] = []
        plan = StepPlan()
        plan.add_step("a", lambda: executed.append("a"))
        plan.add_assert("b", lambda: executed.append("b") is None)
        plan.add_cleanup(lambda: executed.append("c"))

        result = await scheduler.run(plan.freeze(), test_name="AllPass")

        assert executed == ["a", "b", "c"]
        assert result.status == "passed"
        assert result.passed is True
        assert result.halted is False
        assert [o.status for o in result.outcomes] == ["passed"] * 3
        assert [o.index for o in result.outcomes] == [0, 1, 2]
        assert result.test_name == "AllPass"
        assert result.started_at is not None
        assert result.finished_at is not None
        assert result.failure_reports == []

    async def test_next_step_waits_for_poll(self, scheduler: Scheduler) -> None:
        """PollUntil が解決するまで次のステップが始まらないこと。"""
        events: list[str] = []
        counter = {"calls": 0}

        def ready() -> bool:
            counter["calls"] += 1
            events.append(f"poll{counter['calls']}")
            return counter["calls"] >= 3

        plan = StepPlan()
        plan.add_wait_until("wait", ready, timeout=1000)
        plan.add_step("after", lambda: events.append("after"))

        result = await scheduler.run(plan.freeze())

        assert events == ["poll1", "poll2", "poll3", "after"]
        assert result.outcomes[0].elapsed_ms == 3

    async def test_poll_task_stops_after_resolution(self, scheduler: Scheduler) -> None:
        """解決後は述語が評価されないこと。"""
        calls = {"n": 0}

        def ready() -> bool:
            calls["n"] += 1
            return True

        plan = StepPlan()
        plan.add_wait_until("wait", ready)
        await scheduler.run(plan.freeze())
        await asyncio.sleep(0.02)
        assert calls["n"] == 1

    async def test_background_work_from_action(self, scheduler: Scheduler) -> None:
        """Action が開始したバックグラウンド処理を PollUntil で待機できること。"""
        state: dict[str, str] = {}

        async def fetch() -> None:
            await asyncio.sleep(0.02)
            state["country"] = "Canada"

        tasks = []
        plan = StepPlan()
        plan.add_step("fetch", lambda: tasks.append(asyncio.ensure_future(fetch())))
        plan.add_wait_until("fetched", lambda: "country" in state, timeout=10_000)
        plan.add_assert("is canada", lambda: state["country"] == "Canada")

        result = await scheduler.run(plan.freeze())

        assert result.passed is True
        await asyncio.gather(*tasks)


# ===========================================================================
# テスト: 失敗時の継続・停止
# ===========================================================================

class TestFailurePolicy:
    """非致命的失敗・致命的失敗のテスト。"""

    async def test_soft_failure_continues(self, scheduler: Scheduler) -> None:
        executed: list[str] = []
        plan = StepPlan()
        plan.add_assert("fails", lambda: False)
        plan.add_step("runs", lambda: executed.append("runs"))
        plan.add_assert_throws("no throw", lambda: True)
        plan.add_wait_until("times out", lambda: False, timeout=3)
        plan.add_step("still runs", lambda: executed.append("still runs"))

        result = await scheduler.run(plan.freeze())

        assert executed == ["runs", "still runs"]
        assert result.status == "failed"
        assert result.halted is False
        assert [o.status for o in result.outcomes] == [
            "failed", "passed", "failed", "failed", "passed",
        ]
        assert result.outcomes[3].fail_reason.message == "Timed out"
        assert result.outcomes[3].elapsed_ms == 3

    async def test_hard_failure_halts(self, scheduler: Scheduler) -> None:
        executed: list[str] = []
        plan = StepPlan()
        plan.add_step("ok", lambda: executed.append("ok"))
        plan.add_step("boom", _boom)
        plan.add_step("never", lambda: executed.append("never"))
        plan.add_cleanup(lambda: executed.append("cleanup step"))

        result = await scheduler.run(plan.freeze())

        assert executed == ["ok"]
        assert result.status == "failed"
        assert result.halted is True
        assert [o.status for o in result.outcomes] == [
            "passed", "failed", "skipped", "skipped",
        ]
        assert result.outcomes[1].fail_reason.fatal is True
        assert result.outcomes[2].fail_reason is None

    async def test_hard_failure_in_poll_halts(self, scheduler: Scheduler) -> None:
        executed: list[str] = []

        def predicate() -> bool:
            raise ConnectionError("lost")

        plan = StepPlan()
        plan.add_wait_until("wait", predicate)
        plan.add_step("never", lambda: executed.append("never"))

        result = await scheduler.run(plan.freeze())

        assert executed == []
        assert result.halted is True
        assert result.outcomes[0].fail_reason.elapsed_ms == 1

    async def test_set_then_assert_then_boom(self, scheduler: Scheduler) -> None:
        """[x=1, x==1, boom, never] → 0,1 成功・2 致命的失敗・3 未実行。"""
        state = {"x": 0}
        executed: list[str] = []

        def set_x() -> None:
            state["x"] = 1

        def never() -> bool:
            executed.append("never")
            return True

        plan = StepPlan()
        plan.add_step("set x=1", set_x)
        plan.add_assert("x==1", lambda: state["x"] == 1)
        plan.add_step("boom", _boom)
        plan.add_assert("never runs", never)

        result = await scheduler.run(plan.freeze())

        assert [o.status for o in result.outcomes] == [
            "passed", "passed", "failed", "skipped",
        ]
        assert executed == []
        assert result.status == "failed"

    async def test_single_soft_failure(self, scheduler: Scheduler) -> None:
        """[1==2] のみ → 非致命的失敗、停止なし、集約は失敗。"""
        plan = StepPlan()
        plan.add_assert("1==2", lambda: 1 == 2)

        result = await scheduler.run(plan.freeze())

        assert result.status == "failed"
        assert result.halted is False
        assert result.outcomes[0].fail_reason.message == "Assertion failed"

    async def test_late_resolution_ignored(self, scheduler: Scheduler) -> None:
        """解決済みステップへの遅れた通知で結果が変わらないこと。"""
        plan = StepPlan()
        plan.add_step("ok", lambda: None)
        steps = plan.freeze()
        result = await scheduler.run(steps)

        assert steps[0].fail("late", error=RuntimeError("late")) is False
        assert result.passed is True
        assert result.outcomes[0].fail_reason is None


# ===========================================================================
# テスト: 進捗出力
# ===========================================================================

class TestProgressOutput:
    """Scheduler の進捗出力テスト。"""

    async def test_lines_and_failure_block(self, scheduler: Scheduler, stream: io.StringIO) -> None:
        plan = StepPlan()
        plan.add_step("create", lambda: None)
        plan.add_assert("check", lambda: False)

        result = await scheduler.run(plan.freeze())
        output = stream.getvalue()

        assert "\U0001F538 [Step #0] create" in output
        assert "\U0001F539 [Step #1] check" in output
        assert "[Step #1] Failed" in output
        assert "   - Reason: Assertion failed" in output
        assert len(result.failure_reports) == 1
        assert result.failure_reports[0] in output

    async def test_progress_hooks_called(self) -> None:
        """開始・失敗のフックがステップごとに呼ばれること。"""
        progress = MagicMock(spec=ProgressPrinter)
        scheduler = Scheduler(StepExecutor(wait_interval_ms=1), poll_interval_ms=1, progress=progress)
        plan = StepPlan()
        plan.add_step("create", lambda: None)
        plan.add_assert("check", lambda: False)
        steps = plan.freeze()

        await scheduler.run(steps)

        assert progress.step_started.call_args_list == [call(0, steps[0]), call(1, steps[1])]
        progress.step_failed.assert_called_once_with(1, steps[1].fail_reason)


# ===========================================================================
# テスト: RunContext
# ===========================================================================

class TestRunContext:
    """RunContext の状態遷移テスト。"""

    def _steps(self, n: int) -> tuple[Step, ...]:
        return tuple(
            Step(name=f"s{i}", kind=StepKind.ACTION, operation=lambda: None) for i in range(n)
        )

    def test_initial_state(self) -> None:
        context = RunContext(steps=self._steps(2))
        assert context.state is RunState.IDLE
        assert context.finished is False

    def test_success_advances_then_completes(self) -> None:
        context = RunContext(steps=self._steps(2))
        step = context.activate(0)
        step.finish()
        context.resolve(step, 0.0)
        assert context.state is RunState.RUNNING

        step = context.activate(1)
        step.finish()
        context.resolve(step, 0.0)
        assert context.state is RunState.COMPLETED
        assert context.failed is False

    def test_soft_failure_marks_failed(self) -> None:
        context = RunContext(steps=self._steps(2))
        step = context.activate(0)
        step.fail("Assertion failed")
        outcome = context.resolve(step, 0.0)
        assert outcome.status == "failed"
        assert context.failed is True
        assert context.state is RunState.RUNNING

    def test_hard_failure_halts(self) -> None:
        context = RunContext(steps=self._steps(3))
        step = context.activate(0)
        step.fail("RuntimeError was thrown", error=RuntimeError())
        context.resolve(step, 0.0)
        assert context.state is RunState.HALTED
        assert context.finished is True

        context.discard_remaining()
        assert [o.status for o in context.outcomes] == ["failed", "skipped", "skipped"]

    def test_hard_failure_on_last_step_halts(self) -> None:
        context = RunContext(steps=self._steps(1))
        step = context.activate(0)
        step.fail("boom", error=RuntimeError())
        context.resolve(step, 0.0)
        assert context.state is RunState.HALTED


class TestResultDefaults:
    """結果データクラスのデフォルト値テスト。"""

    def test_run_result_defaults(self) -> None:
        result = RunResult(test_name="t")
        assert result.status == "passed"
        assert result.halted is False
        assert result.outcomes == []

    def test_step_outcome_defaults(self) -> None:
        outcome = StepOutcome(index=0, name="s", kind=StepKind.ASSERT)
        assert outcome.status == "passed"
        assert outcome.fail_reason is None
        assert outcome.elapsed_ms is None


# ===========================================================================
# プロパティテスト
# ===========================================================================

class TestSchedulingProperties:
    """任意のステップ列に対する順序性のプロパティテスト。"""

    @settings(max_examples=30, deadline=None)
    @given(st.lists(st.tuples(step_names(), st.sampled_from(list(StepKind))), min_size=1, max_size=8))
    def test_passing_steps_run_once_in_order(self, entries) -> None:
        """失敗のない列では全ステップが登録順に一度ずつ実行されること。"""
        executed: list[int] = []
        steps = [
            Step(name=name, kind=kind, operation=_passing_operation(kind, i, executed))
            for i, (name, kind) in enumerate(entries)
        ]

        result = asyncio.run(_make_scheduler().run(steps))

        assert executed == list(range(len(entries)))
        assert result.status == "passed"
        assert [o.name for o in result.outcomes] == [name for name, _ in entries]

    @settings(max_examples=30, deadline=None)
    @given(st.integers(min_value=1, max_value=8), st.data())
    def test_failure_position(self, n: int, data) -> None:
        """位置 i の非致命的失敗は後続を止めず、致命的失敗は後続を止めること。"""
        i = data.draw(st.integers(min_value=0, max_value=n - 1))
        fatal = data.draw(st.booleans())
        executed: list[int] = []

        def make(index: int):
            def operation() -> bool:
                executed.append(index)
                if index == i:
                    if fatal:
                        raise RuntimeError("boom")
                    return False
                return True

            return operation

        steps = [Step(name=f"s{k}", kind=StepKind.ASSERT, operation=make(k)) for k in range(n)]
        result = asyncio.run(_make_scheduler().run(steps))

        assert result.status == "failed"
        assert result.halted is fatal
        if fatal:
            assert executed == list(range(i + 1))
            assert all(o.status == "skipped" for o in result.outcomes[i + 1:])
        else:
            assert executed == list(range(n))
        assert len(result.outcomes) == n
