"""
steptest — ステップ指向のテスト実行エンジン

「X を実行し、Y が成立するまで（タイムアウト付きで）待機し、Z を検証する」
という手順を、ポーリングループを自前で書かずに記述するためのライブラリ。
"""

from .core import (
    ConfigError,
    FailReason,
    NoStepsError,
    ProgressPrinter,
    Reporter,
    RunResult,
    RunnerConfig,
    Scheduler,
    Step,
    StepExecutor,
    StepKind,
    StepOutcome,
    StepPlan,
    load_config,
)
from .suite import StepRunFailedError, StepTest

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "FailReason",
    "NoStepsError",
    "ProgressPrinter",
    "Reporter",
    "RunResult",
    "RunnerConfig",
    "Scheduler",
    "Step",
    "StepExecutor",
    "StepKind",
    "StepOutcome",
    "StepPlan",
    "StepRunFailedError",
    "StepTest",
    "load_config",
]
