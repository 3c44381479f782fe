"""
呼び出し位置の捕捉 — 失敗箇所をユーザーのテストコードに結び付ける

ステップ登録時にコールスタックを捕捉し、失敗時に
エンジン内部ではない最初のフレームを `file:line` 形式で返す。

主な機能:
  - capture_call_stack(): 登録スレッドのコールスタックを内側から順に取得
  - resolve_location(): 内部名前空間を除外した最初のフレームを整形
"""

from __future__ import annotations

import sys
from typing import NamedTuple, Sequence

# 呼び出し位置の候補から除外するモジュール名前空間
INTERNAL_PREFIXES: tuple[str, ...] = (
    "steptest",
    "asyncio",
    "threading",
    "concurrent.futures",
)

UNKNOWN_LOCATION = "unknown location"


class Frame(NamedTuple):
    """捕捉済みのスタックフレーム（フレームオブジェクト自体は保持しない）。"""

    module: str
    filename: str
    lineno: int
    function: str


def capture_call_stack() -> tuple[Frame, ...]:
    """呼び出し元スレッドのコールスタックを内側から順に返す。

    Returns:
        最も内側（呼び出し元）から外側へ並んだ Frame のタプル
    """
    frames: list[Frame] = []
    frame = sys._getframe(1)
    while frame is not None:
        frames.append(
            Frame(
                module=frame.f_globals.get("__name__", ""),
                filename=frame.f_code.co_filename,
                lineno=frame.f_lineno,
                function=frame.f_code.co_name,
            )
        )
        frame = frame.f_back
    return tuple(frames)


def is_internal(module: str, prefixes: Sequence[str] = INTERNAL_PREFIXES) -> bool:
    """モジュール名が内部名前空間（またはそのサブモジュール）に属するかを返す。"""
    return any(module == p or module.startswith(p + ".") for p in prefixes)


def resolve_location(
    frames: Sequence[Frame],
    prefixes: Sequence[str] = INTERNAL_PREFIXES,
) -> str:
    """内部名前空間に属さない最初のフレームを `file:line` 形式で返す。

    Args:
        frames: capture_call_stack() で捕捉したフレーム列
        prefixes: 除外するモジュール名前空間

    Returns:
        `file:line` 文字列。該当フレームがない場合は "unknown location"
    """
    for frame in frames:
        if not is_internal(frame.module, prefixes):
            return f"{frame.filename}:{frame.lineno}"
    return UNKNOWN_LOCATION
