"""
ステップモデルのユニットテスト

テスト対象:
  - StepKind の値とアサーション判定
  - Step.finish / Step.fail の一度だけの解決
  - elapsed_ms の記録（PollUntil のみ）
  - 生成後のステップ種別の変更拒否
  - FailReason の致命性判定と location
"""

from __future__ import annotations

import pytest

from steptest.core.callsite import Frame
from steptest.core.model import (
    ASSERTION_FAILED,
    FailReason,
    Step,
    StepKind,
    thrown_message,
)


def _make_step(kind: StepKind = StepKind.ACTION, **kwargs) -> Step:
    return Step(name=kwargs.pop("name", "step"), kind=kind, operation=lambda: None, **kwargs)


# ===========================================================================
# テスト: StepKind
# ===========================================================================

class TestStepKind:
    """StepKind のテスト。"""

    def test_values(self) -> None:
        """表示用の値が種別名であること。"""
        assert [k.value for k in StepKind] == [
            "Action", "PollUntil", "Assert", "AssertThrows", "Cleanup",
        ]

    def test_is_assertion(self) -> None:
        """Assert / AssertThrows のみがアサーション扱いであること。"""
        assert StepKind.ASSERT.is_assertion
        assert StepKind.ASSERT_THROWS.is_assertion
        assert not StepKind.ACTION.is_assertion
        assert not StepKind.POLL_UNTIL.is_assertion
        assert not StepKind.CLEANUP.is_assertion


# ===========================================================================
# テスト: Step の解決
# ===========================================================================

class TestStepResolution:
    """Step.finish / Step.fail のテスト。"""

    def test_initial_state(self) -> None:
        """生成直後は未解決・失敗理由なしであること。"""
        step = _make_step()
        assert step.completed is False
        assert step.fail_reason is None
        assert step.elapsed_ms is None

    def test_finish(self) -> None:
        """finish() で完了扱いになること。"""
        step = _make_step()
        assert step.finish() is True
        assert step.completed is True
        assert step.fail_reason is None

    def test_fail_sets_reason(self) -> None:
        """fail() で失敗理由が設定されること。"""
        step = _make_step(StepKind.ASSERT)
        assert step.fail(ASSERTION_FAILED) is True
        assert step.completed is True
        assert step.fail_reason is not None
        assert step.fail_reason.message == ASSERTION_FAILED
        assert step.fail_reason.step is step

    def test_resolves_only_once(self) -> None:
        """2 回目以降の解決は無視されること。"""
        step = _make_step()
        step.finish()
        assert step.fail("late", error=RuntimeError("late")) is False
        assert step.fail_reason is None

    def test_fail_then_finish_ignored(self) -> None:
        """失敗後の完了通知で失敗理由が消えないこと。"""
        step = _make_step()
        step.fail("first")
        assert step.finish() is False
        assert step.fail_reason is not None
        assert step.fail_reason.message == "first"

    def test_elapsed_recorded_for_poll_until(self) -> None:
        """PollUntil は成功時の待機時間を記録すること。"""
        step = _make_step(StepKind.POLL_UNTIL)
        step.finish(elapsed_ms=12)
        assert step.elapsed_ms == 12

    def test_elapsed_ignored_for_other_kinds(self) -> None:
        """PollUntil 以外は待機時間を記録しないこと。"""
        step = _make_step(StepKind.ASSERT)
        step.fail(ASSERTION_FAILED, elapsed_ms=5)
        assert step.elapsed_ms is None
        assert step.fail_reason.elapsed_ms is None

    def test_kind_is_immutable(self) -> None:
        """生成後にステップ種別を変更できないこと。"""
        step = _make_step(StepKind.ASSERT, name="check")
        with pytest.raises(AttributeError, match="check"):
            step.kind = StepKind.ACTION
        assert step.kind is StepKind.ASSERT

    def test_other_fields_remain_writable(self) -> None:
        step = _make_step()
        step.name = "renamed"
        assert step.name == "renamed"


# ===========================================================================
# テスト: FailReason
# ===========================================================================

class TestFailReason:
    """FailReason のテスト。"""

    def test_fatal_iff_error(self) -> None:
        """error の有無のみで致命性が決まること。"""
        step = _make_step()
        assert FailReason(step=step, message="soft").fatal is False
        assert FailReason(step=step, message="hard", error=ValueError()).fatal is True

    def test_thrown_message(self) -> None:
        """例外クラス名を含むメッセージが生成されること。"""
        assert thrown_message(KeyError("x")) == "KeyError was thrown"

    def test_location_from_call_stack(self) -> None:
        """登録時のコールスタックから location が求められること。"""
        frames = (
            Frame("steptest.core.plan", "/lib/steptest/core/plan.py", 10, "_append"),
            Frame("tests.test_example", "/work/tests/test_example.py", 42, "create_test_steps"),
        )
        step = _make_step(call_stack=frames)
        step.fail("boom", error=RuntimeError("boom"))
        assert step.fail_reason.location == "/work/tests/test_example.py:42"

    def test_location_unknown_without_stack(self) -> None:
        """コールスタックがない場合は unknown location になること。"""
        step = _make_step()
        step.fail("boom")
        assert step.fail_reason.location == "unknown location"
