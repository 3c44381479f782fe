"""
テスト共通フィクスチャ定義

全テストモジュールで共有するフィクスチャを提供する。
"""

import io

import pytest

from steptest.core.config import RunnerConfig
from steptest.core.executor import StepExecutor
from steptest.core.progress import ProgressPrinter
from steptest.core.scheduler import Scheduler


# ---------------------------------------------------------------------------
# pytest フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """ホスト環境の STEPTEST_* 環境変数がテストに影響しないようにする。"""
    for key in (
        "STEPTEST_POLL_INTERVAL_MS",
        "STEPTEST_WAIT_INTERVAL_MS",
        "STEPTEST_QUIET",
        "STEPTEST_REPORT_DIR",
        "STEPTEST_REPORT_FORMATS",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fast_config() -> RunnerConfig:
    """ポーリング間隔 1ms・進捗出力なしの実行設定。"""
    return RunnerConfig(poll_interval_ms=1, wait_interval_ms=1, quiet=True)


@pytest.fixture
def stream() -> io.StringIO:
    """進捗出力の書き込み先。"""
    return io.StringIO()


@pytest.fixture
def printer(stream: io.StringIO) -> ProgressPrinter:
    """stream へ書き込む ProgressPrinter。"""
    return ProgressPrinter(stream=stream)


@pytest.fixture
def executor(printer: ProgressPrinter) -> StepExecutor:
    """評価間隔 1ms の StepExecutor。"""
    return StepExecutor(wait_interval_ms=1, progress=printer)


@pytest.fixture
def scheduler(executor: StepExecutor, printer: ProgressPrinter) -> Scheduler:
    """ポーリング間隔 1ms の Scheduler。"""
    return Scheduler(executor, poll_interval_ms=1, progress=printer)
