"""
StepTest — テストのライフサイクル API

setup() → create_test_steps()（ステップ登録）→ Scheduler による逐次実行
→ cleanup() → 集約結果の報告 の順に実行する抽象基底クラス。

pytest からは test_steps() が 1 つのテストとして収集され、
失敗時は cleanup() 完了後に StepRunFailedError を 1 度だけ送出する。

使用例::

    class TestCountry(StepTest):
        def setup(self): ...
        def cleanup(self): ...

        def create_test_steps(self):
            self.add_step("Fetch country", self.fetch_country)
            self.add_wait_until("Country fetched", lambda: self.country is not None, timeout=10_000)
            self.add_assert("Country is Canada", lambda: self.country == "Canada")
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Callable, Optional

from .core.config import RunnerConfig, load_config
from .core.executor import StepExecutor
from .core.plan import StepPlan, Timeout
from .core.progress import ProgressPrinter
from .core.reporting import Reporter
from .core.scheduler import NoStepsError, RunResult, Scheduler

logger = logging.getLogger(__name__)


class StepRunFailedError(AssertionError):
    """集約結果が失敗だった場合にホストへ報告する例外。

    Attributes:
        result: 実行全体の結果（各ステップの失敗レポートを含む）
    """

    def __init__(self, result: RunResult) -> None:
        self.result = result
        reports = "".join(result.failure_reports)
        super().__init__(f"Failed: {result.test_name}\n{reports}")


class StepTest(abc.ABC):
    """ステップ指向テストの抽象基底クラス。

    サブクラスは setup / cleanup / create_test_steps を実装し、
    create_test_steps() の中で add_* メソッドを実行順に呼び出す。
    """

    # サブクラスで上書き可能な実行設定（None の場合は load_config() の結果）
    config: Optional[RunnerConfig] = None

    _plan: Optional[StepPlan] = None

    @abc.abstractmethod
    def setup(self) -> None:
        """全ステップの前に 1 度だけ呼び出される。"""

    @abc.abstractmethod
    def cleanup(self) -> None:
        """実行の完了・停止後に必ず 1 度だけ呼び出される。"""

    @abc.abstractmethod
    def create_test_steps(self) -> None:
        """ステップを実行順に登録する。"""

    # -------------------------------------------------------------------
    # 登録 API
    # -------------------------------------------------------------------

    def add_step(self, name: str, procedure: Callable[[], Any]) -> None:
        self._registering().add_step(name, procedure)

    def add_wait_until(
        self, name: str, predicate: Callable[[], Any], timeout: Timeout = None
    ) -> None:
        self._registering().add_wait_until(name, predicate, timeout)

    def add_assert(self, name: str, predicate: Callable[[], Any]) -> None:
        self._registering().add_assert(name, predicate)

    def add_assert_throws(self, name: str, predicate: Callable[[], Any]) -> None:
        self._registering().add_assert_throws(name, predicate)

    def add_cleanup(self, procedure: Callable[[], Any]) -> None:
        self._registering().add_cleanup(procedure)

    def _registering(self) -> StepPlan:
        if self._plan is None or self._plan.frozen:
            raise RuntimeError(
                "ステップは create_test_steps() の実行中にのみ登録できます"
            )
        return self._plan

    # -------------------------------------------------------------------
    # 実行
    # -------------------------------------------------------------------

    @property
    def title(self) -> str:
        return type(self).__name__

    async def run_async(
        self,
        config: Optional[RunnerConfig] = None,
        progress: Optional[ProgressPrinter] = None,
    ) -> RunResult:
        """テストを実行し、集約結果を返す。

        Args:
            config: 実行設定。None の場合はクラス属性 config、それもなければ load_config()
            progress: 進捗出力先。None の場合は config.quiet に従って標準出力へ出力

        Returns:
            実行全体の結果

        Raises:
            NoStepsError: ステップが 1 つも登録されなかった場合（cleanup() は呼ばれない）
        """
        config = config or self.config or load_config()
        if progress is None:
            progress = ProgressPrinter(enabled=not config.quiet)

        self.setup()
        progress.test_started(self.title)

        plan = StepPlan()
        self._plan = plan
        try:
            self.create_test_steps()
        finally:
            steps = plan.freeze()

        if not steps:
            raise NoStepsError()

        scheduler = Scheduler(
            StepExecutor(wait_interval_ms=config.wait_interval_ms, progress=progress),
            poll_interval_ms=config.poll_interval_ms,
            progress=progress,
        )
        try:
            result = await scheduler.run(steps, test_name=self.title)
        finally:
            self.cleanup()

        if config.report_dir is not None:
            Reporter().generate(result, config.report_dir, config.report_formats)
        return result

    def run(
        self,
        config: Optional[RunnerConfig] = None,
        progress: Optional[ProgressPrinter] = None,
    ) -> RunResult:
        """run_async() をイベントループ上で同期的に実行する。"""
        return asyncio.run(self.run_async(config, progress))

    def test_steps(self) -> None:
        """テストを実行し、失敗していれば StepRunFailedError を送出する。"""
        result = self.run()
        if not result.passed:
            logger.info("テストが失敗しました: %s", self.title)
            raise StepRunFailedError(result)
