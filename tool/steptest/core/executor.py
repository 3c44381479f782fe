"""
StepExecutor — ステップ種別ごとの実行と完了・失敗判定

ステップ種別（StepKind）に応じたハンドラへディスパッチし、
ユーザー提供の手続き・述語を実行してステップを解決する。

判定規則:
  - Action / Cleanup: 正常終了で完了、例外で致命的失敗
  - Assert: 真で完了、偽で非致命的失敗、例外で致命的失敗
  - AssertThrows: 例外で完了、正常終了（真偽を問わない）で非致命的失敗
  - PollUntil: 一定間隔で述語を再評価。真で完了、タイムアウトで非致命的失敗、
    例外で致命的失敗（いずれも待機時間を記録）
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from .model import (
    ASSERTION_FAILED,
    DID_NOT_THROW,
    TIMED_OUT,
    Step,
    StepKind,
    thrown_message,
)
from .progress import ProgressPrinter

logger = logging.getLogger(__name__)

Handler = Callable[[Step, int], Awaitable[Optional["asyncio.Task[None]"]]]


async def call_operation(operation: Callable[[], Any]) -> Any:
    """手続き・述語を呼び出す。awaitable が返された場合は await する。"""
    result = operation()
    if inspect.isawaitable(result):
        result = await result
    return result


class StepExecutor:
    """ステップ種別ごとの実行ロジック。

    使用例::

        executor = StepExecutor(wait_interval_ms=1)
        task = await executor.dispatch(step, index)
    """

    def __init__(
        self,
        wait_interval_ms: float = 1.0,
        progress: Optional[ProgressPrinter] = None,
    ) -> None:
        """StepExecutor を初期化する。

        Args:
            wait_interval_ms: PollUntil の述語評価間隔（ミリ秒）
            progress: 進捗出力先。None の場合は出力しない

        Raises:
            ValueError: 評価間隔が 0 以下の場合
        """
        if wait_interval_ms <= 0:
            raise ValueError(f"wait_interval_ms は正の値である必要があります: {wait_interval_ms}")
        self._wait_interval_ms = wait_interval_ms
        self._progress = progress or ProgressPrinter(enabled=False)
        self._handlers: dict[StepKind, Handler] = {
            StepKind.ACTION: self._run_procedure,
            StepKind.CLEANUP: self._run_procedure,
            StepKind.ASSERT: self._run_assert,
            StepKind.ASSERT_THROWS: self._run_assert_throws,
            StepKind.POLL_UNTIL: self._start_poll,
        }
        missing = set(StepKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"未対応のステップ種別があります: {sorted(k.value for k in missing)}")

    @property
    def wait_interval_ms(self) -> float:
        return self._wait_interval_ms

    async def dispatch(self, step: Step, index: int) -> Optional[asyncio.Task[None]]:
        """ステップ種別に応じたハンドラを実行する。

        Args:
            step: 実行対象のステップ
            index: ステップインデックス

        Returns:
            PollUntil の場合はポーリングタスク、それ以外は None
        """
        logger.debug("ステップ #%d '%s' (%s) を実行します", index, step.name, step.kind.value)
        return await self._handlers[step.kind](step, index)

    # -------------------------------------------------------------------
    # Action / Cleanup
    # -------------------------------------------------------------------

    async def _run_procedure(self, step: Step, index: int) -> None:
        try:
            await call_operation(step.operation)
        except Exception as exc:
            step.fail(thrown_message(exc), error=exc)
        else:
            step.finish()

    # -------------------------------------------------------------------
    # Assert / AssertThrows
    # -------------------------------------------------------------------

    async def _run_assert(self, step: Step, index: int) -> None:
        try:
            holds = await call_operation(step.operation)
        except Exception as exc:
            step.fail(thrown_message(exc), error=exc)
            return
        if holds:
            step.finish()
        else:
            step.fail(ASSERTION_FAILED)

    async def _run_assert_throws(self, step: Step, index: int) -> None:
        # 戻り値の真偽は判定に使わない
        try:
            await call_operation(step.operation)
        except Exception as exc:
            logger.debug("ステップ #%d は想定どおり %s を送出しました", index, type(exc).__name__)
            step.finish()
        else:
            step.fail(DID_NOT_THROW)

    # -------------------------------------------------------------------
    # PollUntil
    # -------------------------------------------------------------------

    async def _start_poll(self, step: Step, index: int) -> asyncio.Task[None]:
        return asyncio.create_task(
            self._poll(step, index), name=f"steptest-wait => {step.name}"
        )

    async def _poll(self, step: Step, index: int) -> None:
        """述語が真になるかタイムアウトするまで一定間隔で評価する。

        待機時間はティック数 × 評価間隔で数える。
        """
        timeout = step.timeout_ms
        interval = self._wait_interval_ms
        waited = 0.0

        while not step.completed:
            waited += interval
            if timeout is not None and waited >= timeout:
                logger.debug("ステップ #%d '%s' がタイムアウトしました", index, step.name)
                step.fail(TIMED_OUT, elapsed_ms=timeout)
                return

            try:
                holds = await call_operation(step.operation)
            except Exception as exc:
                step.fail(thrown_message(exc), error=exc, elapsed_ms=waited)
                return

            if holds:
                if step.finish(elapsed_ms=waited):
                    self._progress.wait_completed(index, step)
                return

            await asyncio.sleep(interval / 1000.0)
