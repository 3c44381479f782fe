# コアモジュール
# ステップモデル、登録 API、Executor、Scheduler、進捗出力、レポート生成、設定を提供

from .config import ConfigError, RunnerConfig, load_config
from .executor import StepExecutor
from .model import FailReason, Step, StepKind
from .plan import StepPlan
from .progress import ProgressPrinter, format_failure
from .reporting import Reporter
from .scheduler import NoStepsError, RunContext, RunResult, RunState, Scheduler, StepOutcome

__all__ = [
    "ConfigError",
    "FailReason",
    "NoStepsError",
    "ProgressPrinter",
    "Reporter",
    "RunContext",
    "RunResult",
    "RunState",
    "RunnerConfig",
    "Scheduler",
    "Step",
    "StepExecutor",
    "StepKind",
    "StepOutcome",
    "StepPlan",
    "format_failure",
    "load_config",
]
