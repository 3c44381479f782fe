"""
ステップモデル — テスト作業の単位と失敗理由

主な構成:
  - StepKind: ステップ種別（Action / PollUntil / Assert / AssertThrows / Cleanup）
  - Step: 1 つのテスト作業単位。エンジンにより一度だけ解決される
  - FailReason: 失敗したステップの結果。error の有無のみが致命性を決める
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .callsite import UNKNOWN_LOCATION, Frame, resolve_location

logger = logging.getLogger(__name__)

# FailReason のメッセージ
ASSERTION_FAILED = "Assertion failed"
DID_NOT_THROW = "Unit did not throw"
TIMED_OUT = "Timed out"


def thrown_message(error: BaseException) -> str:
    """例外から "<例外クラス名> was thrown" 形式のメッセージを生成する。"""
    return f"{type(error).__name__} was thrown"


# ---------------------------------------------------------------------------
# ステップ種別
# ---------------------------------------------------------------------------

class StepKind(str, Enum):
    """ステップ種別（生成時に固定され、変更されない）。"""

    ACTION = "Action"
    POLL_UNTIL = "PollUntil"
    ASSERT = "Assert"
    ASSERT_THROWS = "AssertThrows"
    CLEANUP = "Cleanup"

    @property
    def is_assertion(self) -> bool:
        """アサーション系のステップかどうか（進捗表示のアイコン切り替えに使用）。"""
        return self in (StepKind.ASSERT, StepKind.ASSERT_THROWS)


# ---------------------------------------------------------------------------
# 失敗理由
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FailReason:
    """失敗したステップの結果。

    Attributes:
        step: 失敗したステップ
        message: 失敗原因（"Assertion failed", "Timed out" 等）
        error: 送出された例外。存在する場合は致命的（後続ステップを破棄）
        elapsed_ms: 待機時間（PollUntil のみ）
        location: 登録位置から求めた `file:line`、または "unknown location"
    """

    step: Step = field(repr=False)
    message: str
    error: Optional[BaseException] = None
    elapsed_ms: Optional[float] = None
    location: str = UNKNOWN_LOCATION

    @property
    def fatal(self) -> bool:
        """例外を伴う失敗かどうか。"""
        return self.error is not None

    @classmethod
    def for_step(
        cls,
        step: Step,
        message: str,
        error: Optional[BaseException] = None,
        elapsed_ms: Optional[float] = None,
    ) -> FailReason:
        """ステップの登録時コールスタックから location を求めて FailReason を生成する。"""
        return cls(
            step=step,
            message=message,
            error=error,
            elapsed_ms=elapsed_ms,
            location=resolve_location(step.call_stack),
        )


# ---------------------------------------------------------------------------
# ステップ
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Step:
    """1 つのテスト作業単位。

    Attributes:
        name: 表示名
        kind: ステップ種別（生成後は変更不可）
        operation: 引数なしの手続き（Action / Cleanup）または述語（その他）。
            awaitable を返した場合は await される
        timeout_ms: PollUntil のタイムアウト（ミリ秒）。None で無制限
        call_stack: 登録時に捕捉したコールスタック
        completed: エンジンが解決済みかどうか
        fail_reason: 失敗時のみ設定される
        elapsed_ms: PollUntil の待機時間（成功・失敗とも）
    """

    name: str
    kind: StepKind
    operation: Callable[[], Any]
    timeout_ms: Optional[float] = None
    call_stack: tuple[Frame, ...] = field(default=(), repr=False)
    completed: bool = field(default=False, init=False)
    fail_reason: Optional[FailReason] = field(default=None, init=False)
    elapsed_ms: Optional[float] = field(default=None, init=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "kind" and "kind" in self.__dict__:
            raise AttributeError(f"ステップ種別は生成後に変更できません: {self.name}")
        super().__setattr__(name, value)

    def finish(self, elapsed_ms: Optional[float] = None) -> bool:
        """ステップを成功として解決する。

        Returns:
            今回の呼び出しで解決された場合は True（解決済みなら False）
        """
        if self.completed:
            logger.debug("解決済みのステップへの完了通知を無視します: %s", self.name)
            return False
        if self.kind is StepKind.POLL_UNTIL:
            self.elapsed_ms = elapsed_ms
        self.completed = True
        return True

    def fail(
        self,
        message: str,
        error: Optional[BaseException] = None,
        elapsed_ms: Optional[float] = None,
    ) -> bool:
        """ステップを失敗として解決する。

        elapsed_ms は PollUntil の場合のみ記録される。

        Returns:
            今回の呼び出しで解決された場合は True（解決済みなら False）
        """
        if self.completed:
            logger.debug("解決済みのステップへの失敗通知を無視します: %s", self.name)
            return False
        if self.kind is not StepKind.POLL_UNTIL:
            elapsed_ms = None
        self.elapsed_ms = elapsed_ms
        self.fail_reason = FailReason.for_step(self, message, error, elapsed_ms)
        self.completed = True
        return True
