"""
Scheduler — ステップ列の逐次実行エンジン

登録順にステップを 1 つずつ実行し、完了をポーリングで検出して
継続・停止を判定する。

状態遷移:
  IDLE → RUNNING(i) → RUNNING(i+1) | HALTED | COMPLETED

主な機能:
  - RunState / RunContext: 実行ごとの状態（暗黙のグローバル状態を持たない）
  - StepOutcome / RunResult: 実行結果データクラス
  - Scheduler: ポーリングによる逐次実行と停止判定
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Sequence

from .executor import StepExecutor
from .model import FailReason, Step, StepKind
from .progress import ProgressPrinter, format_failure

logger = logging.getLogger(__name__)


class NoStepsError(ValueError):
    """ステップが 1 つも登録されていない場合の設定エラー。"""

    def __init__(self, message: str = "No steps in test runner") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# 実行状態
# ---------------------------------------------------------------------------

class RunState(str, Enum):
    """実行の状態。"""

    IDLE = "idle"
    RUNNING = "running"
    HALTED = "halted"
    COMPLETED = "completed"


@dataclass
class StepOutcome:
    """単一ステップの実行結果。

    Attributes:
        index: ステップインデックス（0始まり）
        name: ステップ名
        kind: ステップ種別
        status: 実行結果（passed / failed / skipped）
        fail_reason: 失敗理由（失敗時のみ）
        elapsed_ms: PollUntil の待機時間
        duration_ms: 実行時間（ミリ秒）
    """

    index: int
    name: str
    kind: StepKind
    status: Literal["passed", "failed", "skipped"] = "passed"
    fail_reason: Optional[FailReason] = None
    elapsed_ms: Optional[float] = None
    duration_ms: float = 0.0


@dataclass
class RunResult:
    """実行全体の集約結果。

    Attributes:
        test_name: テスト名
        status: 全体結果（passed / failed）
        halted: 致命的失敗で停止したかどうか
        outcomes: 各ステップの結果（未実行ステップは skipped）
        duration_ms: 全体実行時間（ミリ秒）
        started_at: 実行開始日時
        finished_at: 実行終了日時
    """

    test_name: str
    status: Literal["passed", "failed"] = "passed"
    halted: bool = False
    outcomes: list[StepOutcome] = field(default_factory=list)
    duration_ms: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    @property
    def failure_reports(self) -> list[str]:
        """失敗した各ステップのレポートブロック。"""
        return [
            format_failure(o.fail_reason, o.index)
            for o in self.outcomes
            if o.fail_reason is not None
        ]


@dataclass
class RunContext:
    """1 回の実行が所有する状態。

    ステップ列は実行中に並べ替え・変更されない。
    failed / state はポーリングによる解決処理からのみ更新される。
    """

    steps: tuple[Step, ...]
    state: RunState = RunState.IDLE
    current_index: int = -1
    failed: bool = False
    outcomes: list[StepOutcome] = field(default_factory=list)

    def activate(self, index: int) -> Step:
        """index 番目のステップを実行中にする。"""
        self.state = RunState.RUNNING
        self.current_index = index
        return self.steps[index]

    def resolve(self, step: Step, duration_ms: float) -> StepOutcome:
        """解決済みステップの結果を記録し、継続・停止を判定する。"""
        reason = step.fail_reason
        outcome = StepOutcome(
            index=self.current_index,
            name=step.name,
            kind=step.kind,
            status="failed" if reason is not None else "passed",
            fail_reason=reason,
            elapsed_ms=step.elapsed_ms,
            duration_ms=duration_ms,
        )
        self.outcomes.append(outcome)

        if reason is not None:
            self.failed = True
            if reason.fatal:
                self.state = RunState.HALTED
                return outcome
        if self.current_index + 1 >= len(self.steps):
            self.state = RunState.COMPLETED
        return outcome

    def discard_remaining(self) -> None:
        """未実行のステップを実行せずに skipped として記録する。"""
        for index in range(self.current_index + 1, len(self.steps)):
            step = self.steps[index]
            self.outcomes.append(
                StepOutcome(index=index, name=step.name, kind=step.kind, status="skipped")
            )

    @property
    def finished(self) -> bool:
        return self.state in (RunState.HALTED, RunState.COMPLETED)


# ---------------------------------------------------------------------------
# Scheduler 本体
# ---------------------------------------------------------------------------

class Scheduler:
    """ステップ列を 1 つずつ実行し、完了をポーリングで待機する。

    使用例::

        scheduler = Scheduler(executor, poll_interval_ms=1)
        result = await scheduler.run(plan.freeze(), test_name="ExampleTest")
    """

    def __init__(
        self,
        executor: StepExecutor,
        poll_interval_ms: float = 1.0,
        progress: Optional[ProgressPrinter] = None,
    ) -> None:
        """Scheduler を初期化する。

        Args:
            executor: ステップの実行を担当する StepExecutor
            poll_interval_ms: 完了確認のポーリング間隔（ミリ秒）
            progress: 進捗出力先。None の場合は出力しない
        """
        if poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms は正の値である必要があります: {poll_interval_ms}")
        self._executor = executor
        self._poll_interval_ms = poll_interval_ms
        self._progress = progress or ProgressPrinter(enabled=False)

    async def run(self, steps: Sequence[Step], test_name: str = "") -> RunResult:
        """ステップを登録順に実行し、集約結果を返す。

        Args:
            steps: 実行対象のステップ列
            test_name: 結果に記録するテスト名

        Returns:
            実行全体の結果

        Raises:
            NoStepsError: ステップが空の場合
        """
        if not steps:
            raise NoStepsError()

        context = RunContext(steps=tuple(steps))
        result = RunResult(test_name=test_name, started_at=datetime.now())
        start_time = time.perf_counter()
        logger.info("実行を開始します: %s（%d ステップ）", test_name, len(context.steps))

        index = 0
        while not context.finished:
            step = context.activate(index)
            await self._run_step(context, step, index)
            index += 1

        if context.state is RunState.HALTED:
            logger.warning(
                "ステップ #%d で致命的な失敗が発生したため、残り %d ステップを破棄します",
                context.current_index,
                len(context.steps) - context.current_index - 1,
            )
            context.discard_remaining()

        result.outcomes = context.outcomes
        result.halted = context.state is RunState.HALTED
        result.status = "failed" if context.failed else "passed"
        result.finished_at = datetime.now()
        result.duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info("実行を終了しました: %s [%s]", test_name, result.status)
        return result

    async def _run_step(self, context: RunContext, step: Step, index: int) -> None:
        """1 ステップを実行し、解決まで待機して結果を記録する。"""
        self._progress.step_started(index, step)
        step_start = time.perf_counter()

        task = await self._executor.dispatch(step, index)
        try:
            await self._wait_resolved(step, task)
        finally:
            if task is not None:
                await _cancel(task)

        outcome = context.resolve(step, (time.perf_counter() - step_start) * 1000)
        if outcome.fail_reason is not None:
            self._progress.step_failed(index, outcome.fail_reason)

    async def _wait_resolved(
        self, step: Step, task: Optional[asyncio.Task[None]] = None
    ) -> None:
        """step.completed が True になるまでポーリング間隔で待機する。

        Raises:
            RuntimeError: ポーリングタスクがステップを解決せずに終了した場合
        """
        while not step.completed:
            if task is not None and task.done():
                task.result()
                if not step.completed:
                    raise RuntimeError(
                        f"ステップ '{step.name}' のポーリングが解決前に終了しました"
                    )
                break
            await asyncio.sleep(self._poll_interval_ms / 1000.0)


async def _cancel(task: asyncio.Task[None]) -> None:
    """ポーリングタスクを停止し、終了を待つ。"""
    if task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
