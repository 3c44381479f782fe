"""
進捗出力 — ステップ開始行と失敗レポートの表示

出力先ストリームはホスト側で差し替え可能（既定は書き込み時点の sys.stdout）。
制御フローには関与しない観測用のフック。
"""

from __future__ import annotations

import logging
import sys
import traceback
from typing import TYPE_CHECKING, Optional, TextIO

if TYPE_CHECKING:
    from .model import FailReason, Step

logger = logging.getLogger(__name__)

ICON_TEST = "\U0001F536"  # 🔶
ICON_STEP = "\U0001F538"  # 🔸
ICON_ASSERT = "\U0001F539"  # 🔹
ICON_WAIT = "\u23F3"  # ⏳
ICON_FAILED = "\U0001F4A5"  # 💥


def format_ms(ms: Optional[float]) -> str:
    """ミリ秒を整数表記に丸める。"""
    return f"{int(ms or 0)}ms"


def format_failure(reason: FailReason, index: int) -> str:
    """失敗したステップのレポートブロックを生成する。

    Args:
        reason: ステップの失敗理由
        index: ステップインデックス（0始まり）

    Returns:
        複数行のレポート文字列
    """
    header = f" {ICON_FAILED} [Step #{index}] Failed"
    if reason.elapsed_ms is not None:
        header += f" (Waited {format_ms(reason.elapsed_ms)})"

    lines = [
        "",
        header,
        f"   - Step: {reason.step.name} ({reason.step.kind.value})",
        f"   - Reason: {reason.message}",
        f"   - At: {reason.location}",
    ]
    if reason.error is not None:
        lines.append("   - Exception: ")
        lines.append(
            "".join(
                traceback.format_exception(
                    type(reason.error), reason.error, reason.error.__traceback__
                )
            ).rstrip("\n")
        )
    lines.append("")
    return "\n".join(lines) + "\n"


class ProgressPrinter:
    """人間向けの進捗行をストリームへ書き出す。

    Attributes:
        stream: 出力先。None の場合は書き込み時点の sys.stdout
        enabled: False の場合は何も出力しない
    """

    def __init__(self, stream: Optional[TextIO] = None, enabled: bool = True) -> None:
        self.stream = stream
        self.enabled = enabled

    def test_started(self, test_name: str) -> None:
        self._write(" ")
        self._write(f" {ICON_TEST} Test: {test_name} ")
        self._write(" ")

    def step_started(self, index: int, step: Step) -> None:
        icon = ICON_ASSERT if step.kind.is_assertion else ICON_STEP
        self._write(f" {icon} [Step #{index}] {step.name}")

    def wait_completed(self, index: int, step: Step) -> None:
        self._write(f' {ICON_WAIT} [Step #{index}] "{step.name}" Took {format_ms(step.elapsed_ms)}')

    def step_failed(self, index: int, reason: FailReason) -> None:
        logger.debug("ステップ #%d の失敗レポートを出力します: %s", index, reason.message)
        self._write(format_failure(reason, index))

    def _write(self, text: str) -> None:
        if not self.enabled:
            return
        print(text, file=self.stream if self.stream is not None else sys.stdout)
