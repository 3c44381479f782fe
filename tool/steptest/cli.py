"""
CLI エントリポイント — Typer ベースのコマンドラインインターフェース

steptest コマンドとして以下のサブコマンドを提供する:
  - init: 設定ファイルテンプレート（steptest.yaml）生成
  - run: StepTest サブクラスの実行
  - list-kinds: ステップ種別と登録メソッドの一覧
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Typer アプリ定義
# ---------------------------------------------------------------------------

app = typer.Typer(
    help=(
        "steptest — ステップ指向テスト実行ツール\n\n"
        "基本の流れ:\n"
        "  1. StepTest を継承したクラスでステップを登録\n"
        "  2. steptest run path/to/test.py:MyTest  で実行\n\n"
        "詳しくは各コマンドに --help を付けてください。"
    ),
    no_args_is_help=True,
)

# ステップ種別の説明（list-kinds で表示）
_KIND_DESCRIPTIONS: dict[str, tuple[str, str]] = {
    "Action": ("add_step", "手続きを実行する。例外で実行停止"),
    "PollUntil": ("add_wait_until", "述語が真になるまで一定間隔で再評価する（タイムアウト可）"),
    "Assert": ("add_assert", "述語が真であることを検証する。偽なら失敗して継続"),
    "AssertThrows": ("add_assert_throws", "述語が例外を送出することを検証する"),
    "Cleanup": ("add_cleanup", "後片付けの手続きを実行する"),
}

_CONFIG_TEMPLATE = (
    "# steptest 実行設定\n"
    "# 環境変数（STEPTEST_*）と CLI オプションがこのファイルより優先されます\n"
    "poll_interval_ms: 1\n"
    "wait_interval_ms: 1\n"
    "quiet: false\n"
    "# report_dir: reports\n"
    "report_formats: [json, junit]\n"
)


# ---------------------------------------------------------------------------
# init コマンド
# ---------------------------------------------------------------------------

@app.command()
def init(
    project_dir: Path = typer.Argument(
        Path("."), help="プロジェクトディレクトリ（デフォルト: カレント）",
    ),
) -> None:
    """設定ファイルテンプレート（steptest.yaml）を生成する。"""
    from .core.config import DEFAULT_CONFIG_FILE

    try:
        project_dir.mkdir(parents=True, exist_ok=True)
        config_path = project_dir / DEFAULT_CONFIG_FILE
        if config_path.exists():
            typer.echo(f"既存の設定ファイルを保持します: {config_path}")
            return
        config_path.write_text(_CONFIG_TEMPLATE, encoding="utf-8")
        typer.echo(f"設定ファイルを生成しました: {config_path.resolve()}")
    except OSError as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# run コマンド
# ---------------------------------------------------------------------------

@app.command()
def run(
    target: str = typer.Argument(
        ..., help="実行する StepTest（module:Class または path/to/file.py:Class）",
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="設定ファイル（デフォルト: ./steptest.yaml があれば使用）",
    ),
    poll_interval: Optional[float] = typer.Option(
        None, "--poll-interval", min=0.001, help="完了確認のポーリング間隔（ミリ秒）",
    ),
    wait_interval: Optional[float] = typer.Option(
        None, "--wait-interval", min=0.001, help="PollUntil の述語評価間隔（ミリ秒）",
    ),
    report_dir: Optional[Path] = typer.Option(
        None, "--report-dir", "-r", help="レポート出力ディレクトリ",
    ),
    quiet: Optional[bool] = typer.Option(
        None, "--quiet/--verbose", "-q", help="ステップ進捗の出力を抑止する",
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level", help="ログレベル（DEBUG / INFO / WARNING / ERROR）",
    ),
) -> None:
    """StepTest サブクラスを実行する。失敗時は終了コード 1。"""
    from .core.config import ConfigError, apply_overrides, load_config
    from .core.scheduler import NoStepsError

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(config_file)
        apply_overrides(
            config,
            poll_interval_ms=poll_interval,
            wait_interval_ms=wait_interval,
            report_dir=report_dir,
            quiet=quiet,
        )
        test_cls = load_test_class(target)
        result = test_cls().run(config)
    except (ConfigError, NoStepsError, ImportError, AttributeError, TypeError) as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)

    passed = sum(1 for o in result.outcomes if o.status == "passed")
    failed = sum(1 for o in result.outcomes if o.status == "failed")
    skipped = sum(1 for o in result.outcomes if o.status == "skipped")

    typer.echo(f"テスト: {result.test_name}")
    typer.echo(f"ステータス: {result.status}{' (halted)' if result.halted else ''}")
    typer.echo(f"実行時間: {result.duration_ms:.0f}ms")
    typer.echo(
        f"ステップ: {len(result.outcomes)} "
        f"(passed={passed}, failed={failed}, skipped={skipped})"
    )
    if config.report_dir is not None:
        typer.echo(f"レポート: {config.report_dir}")

    if not result.passed:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# list-kinds コマンド
# ---------------------------------------------------------------------------

@app.command("list-kinds")
def list_kinds() -> None:
    """ステップ種別と登録メソッドの一覧を表示する。"""
    from .core.model import StepKind

    for kind in StepKind:
        method, description = _KIND_DESCRIPTIONS[kind.value]
        typer.echo(f"  {kind.value:<14} {method:<20} {description}")


# ---------------------------------------------------------------------------
# ヘルパー関数
# ---------------------------------------------------------------------------

def load_test_class(target: str) -> type:
    """`module:Class` または `path/to/file.py:Class` から StepTest サブクラスを読み込む。

    Raises:
        ImportError: モジュール・ファイルを読み込めない場合
        AttributeError: クラスが存在しない場合
        TypeError: StepTest のサブクラスでない場合
    """
    from .suite import StepTest

    module_ref, sep, class_name = target.rpartition(":")
    if not sep or not module_ref or not class_name:
        raise ImportError(f"ターゲットの形式が不正です（module:Class）: {target}")

    if module_ref.endswith(".py"):
        path = Path(module_ref)
        if not path.is_file():
            raise ImportError(f"ファイルが見つかりません: {path}")
        module_name = f"_steptest_target_{path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"モジュールを読み込めません: {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
    else:
        module = importlib.import_module(module_ref)

    test_cls = getattr(module, class_name)
    if not isinstance(test_cls, type) or not issubclass(test_cls, StepTest):
        raise TypeError(f"{target} は StepTest のサブクラスではありません")
    return test_cls


if __name__ == "__main__":
    app()
