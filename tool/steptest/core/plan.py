"""
StepPlan — ステップ登録 API

テスト作成者が実行順にステップを登録するための追記専用ビルダー。
各登録呼び出しの時点でコールスタックを捕捉し、失敗時の位置表示に使用する。

使用例::

    plan = StepPlan()
    plan.add_step("Create user", create_user)
    plan.add_wait_until("Country fetched", lambda: state.country is not None, timeout=10_000)
    plan.add_assert("Country is Canada", lambda: state.country == "Canada")
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Optional, Union

from .callsite import capture_call_stack
from .model import Step, StepKind

logger = logging.getLogger(__name__)

# タイムアウト指定: ミリ秒（数値）または timedelta。None は無制限
Timeout = Union[int, float, timedelta, None]


def to_timeout_ms(timeout: Timeout) -> Optional[float]:
    """タイムアウト指定をミリ秒に正規化する。

    Raises:
        ValueError: 負のタイムアウトが指定された場合
    """
    if timeout is None:
        return None
    if isinstance(timeout, timedelta):
        ms = timeout.total_seconds() * 1000
    else:
        ms = float(timeout)
    if ms < 0:
        raise ValueError(f"タイムアウトに負の値は指定できません: {timeout!r}")
    return ms


class StepPlan:
    """実行順に並んだステップの追記専用リスト。

    freeze() 後は追加できない（実行中のリスト変更を防ぐ）。
    """

    def __init__(self) -> None:
        self._steps: list[Step] = []
        self._frozen = False

    # -------------------------------------------------------------------
    # 登録 API
    # -------------------------------------------------------------------

    def add_step(self, name: str, procedure: Callable[[], Any]) -> None:
        """Action ステップを登録する。"""
        self._append(name, StepKind.ACTION, procedure)

    def add_wait_until(
        self,
        name: str,
        predicate: Callable[[], Any],
        timeout: Timeout = None,
    ) -> None:
        """PollUntil ステップを登録する。

        Args:
            name: 表示名
            predicate: 真になるまで繰り返し評価される述語
            timeout: タイムアウト（ミリ秒または timedelta）。None で無制限
        """
        self._append(name, StepKind.POLL_UNTIL, predicate, to_timeout_ms(timeout))

    def add_assert(self, name: str, predicate: Callable[[], Any]) -> None:
        """Assert ステップを登録する。"""
        self._append(name, StepKind.ASSERT, predicate)

    def add_assert_throws(self, name: str, predicate: Callable[[], Any]) -> None:
        """AssertThrows ステップを登録する（述語が例外を送出すれば成功）。"""
        self._append(name, StepKind.ASSERT_THROWS, predicate)

    def add_cleanup(self, procedure: Callable[[], Any]) -> None:
        """Cleanup ステップを登録する。"""
        self._append("Cleanup", StepKind.CLEANUP, procedure)

    # -------------------------------------------------------------------
    # 参照
    # -------------------------------------------------------------------

    @property
    def steps(self) -> tuple[Step, ...]:
        """登録済みステップのスナップショット。"""
        return tuple(self._steps)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> tuple[Step, ...]:
        """以降の登録を禁止し、登録済みステップを返す。"""
        self._frozen = True
        return self.steps

    def __len__(self) -> int:
        return len(self._steps)

    # -------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------

    def _append(
        self,
        name: str,
        kind: StepKind,
        operation: Callable[[], Any],
        timeout_ms: Optional[float] = None,
    ) -> None:
        if self._frozen:
            raise RuntimeError(
                f"実行開始後はステップを追加できません: {name}"
            )
        if not callable(operation):
            raise TypeError(
                f"ステップ '{name}' の operation は呼び出し可能である必要があります: "
                f"{type(operation).__name__}"
            )
        step = Step(
            name=name,
            kind=kind,
            operation=operation,
            timeout_ms=timeout_ms,
            call_stack=capture_call_stack(),
        )
        self._steps.append(step)
        logger.debug("ステップを登録しました: #%d %s (%s)", len(self._steps) - 1, name, kind.value)
