"""
実行設定 — 設定ファイル・環境変数・CLI 引数からの設定読み込み

CLI 引数 > 環境変数 > 設定ファイル（steptest.yaml）> デフォルト値 の優先順位で適用される。

環境変数一覧:
  STEPTEST_POLL_INTERVAL_MS : 完了確認のポーリング間隔（ミリ秒, デフォルト: 1）
  STEPTEST_WAIT_INTERVAL_MS : PollUntil の述語評価間隔（ミリ秒, デフォルト: 1）
  STEPTEST_QUIET            : 進捗出力を抑止するか（true/false, デフォルト: false）
  STEPTEST_REPORT_DIR       : レポート出力ディレクトリ（デフォルト: なし）
  STEPTEST_REPORT_FORMATS   : レポート形式（カンマ区切り: json,html,junit）
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "steptest.yaml"

ReportFormat = Literal["json", "html", "junit"]
REPORT_FORMATS: tuple[str, ...] = ("json", "html", "junit")

# ---------------------------------------------------------------------------
# 環境変数キー定数
# ---------------------------------------------------------------------------

_ENV_POLL_INTERVAL = "STEPTEST_POLL_INTERVAL_MS"
_ENV_WAIT_INTERVAL = "STEPTEST_WAIT_INTERVAL_MS"
_ENV_QUIET = "STEPTEST_QUIET"
_ENV_REPORT_DIR = "STEPTEST_REPORT_DIR"
_ENV_REPORT_FORMATS = "STEPTEST_REPORT_FORMATS"


class ConfigError(ValueError):
    """設定ファイルの読み込み・検証エラー。"""


# ---------------------------------------------------------------------------
# 設定データクラス
# ---------------------------------------------------------------------------

@dataclass
class RunnerConfig:
    """実行時設定。

    Attributes:
        poll_interval_ms: ステップ完了確認のポーリング間隔（ミリ秒）
        wait_interval_ms: PollUntil の述語評価間隔（ミリ秒）
        quiet: 進捗出力を抑止するか
        report_dir: レポート出力ディレクトリ。None の場合はファイル出力なし
        report_formats: 出力するレポート形式
    """

    poll_interval_ms: float = 1.0
    wait_interval_ms: float = 1.0
    quiet: bool = False
    report_dir: Optional[Path] = None
    report_formats: list[str] = field(default_factory=lambda: ["json", "junit"])


# ---------------------------------------------------------------------------
# 設定ファイルスキーマ
# ---------------------------------------------------------------------------

class ConfigFile(BaseModel):
    """steptest.yaml のスキーマ。"""

    model_config = ConfigDict(extra="forbid")

    poll_interval_ms: Optional[float] = Field(default=None, gt=0, description="完了確認のポーリング間隔（ミリ秒）")
    wait_interval_ms: Optional[float] = Field(default=None, gt=0, description="PollUntil の述語評価間隔（ミリ秒）")
    quiet: Optional[bool] = Field(default=None, description="進捗出力を抑止するか")
    report_dir: Optional[Path] = Field(default=None, description="レポート出力ディレクトリ")
    report_formats: Optional[list[ReportFormat]] = Field(default=None, description="レポート形式")

    @field_validator("report_formats")
    @classmethod
    def _dedupe_formats(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        return list(dict.fromkeys(v))


# ---------------------------------------------------------------------------
# 読み込み
# ---------------------------------------------------------------------------

def _parse_bool(value: str) -> bool:
    """文字列を bool に変換する。

    Args:
        value: "true", "1", "yes" → True、それ以外 → False
    """
    return value.lower() in ("true", "1", "yes")


def _parse_formats(value: str) -> list[str]:
    """カンマ区切りのレポート形式をパースする。

    Raises:
        ValueError: 未知の形式が含まれる場合
    """
    formats = [v.strip().lower() for v in value.split(",") if v.strip()]
    unknown = [f for f in formats if f not in REPORT_FORMATS]
    if unknown:
        raise ValueError(f"未知のレポート形式です: {unknown}")
    return list(dict.fromkeys(formats))


def load_config_file(path: Path) -> ConfigFile:
    """設定ファイルを読み込んで検証する。

    Args:
        path: YAML 設定ファイルのパス

    Returns:
        検証済みの設定ファイル内容

    Raises:
        ConfigError: ファイルが読めない・YAML として不正・スキーマ違反の場合
    """
    yaml = YAML(typ="safe")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.load(f)
    except OSError as exc:
        raise ConfigError(f"設定ファイルを読み込めません: {path}: {exc}") from exc
    except YAMLError as exc:
        raise ConfigError(f"設定ファイルの YAML 構文が不正です: {path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"設定ファイルのトップレベルはマッピングである必要があります: {path}")

    try:
        return ConfigFile.model_validate(data)
    except ValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"設定ファイルの検証に失敗しました: {path}: {messages}") from exc


def apply_config_file(config: RunnerConfig, file: ConfigFile) -> RunnerConfig:
    """設定ファイルで指定された値のみを RunnerConfig に適用する。"""
    for name, value in file.model_dump(exclude_none=True).items():
        setattr(config, name, value)
    return config


def apply_env(config: RunnerConfig, environ: Optional[Mapping[str, str]] = None) -> RunnerConfig:
    """環境変数を RunnerConfig に適用する。

    不正な値は警告を出力して無視する。
    """
    env = os.environ if environ is None else environ

    for key, attr in ((_ENV_POLL_INTERVAL, "poll_interval_ms"), (_ENV_WAIT_INTERVAL, "wait_interval_ms")):
        if key in env:
            try:
                value = float(env[key])
                if value <= 0:
                    raise ValueError(value)
                setattr(config, attr, value)
            except ValueError:
                logger.warning("%s の値が不正です: %s", key, env[key])

    if _ENV_QUIET in env:
        config.quiet = _parse_bool(env[_ENV_QUIET])

    if env.get(_ENV_REPORT_DIR):
        config.report_dir = Path(env[_ENV_REPORT_DIR])

    if _ENV_REPORT_FORMATS in env:
        try:
            config.report_formats = _parse_formats(env[_ENV_REPORT_FORMATS])
        except ValueError:
            logger.warning("%s の値が不正です: %s", _ENV_REPORT_FORMATS, env[_ENV_REPORT_FORMATS])

    return config


def apply_overrides(config: RunnerConfig, **overrides: Any) -> RunnerConfig:
    """CLI 引数等の上書き値を適用する。None の値は無視する。

    Raises:
        AttributeError: RunnerConfig に存在しない項目が指定された場合
    """
    for name, value in overrides.items():
        if value is None:
            continue
        if not hasattr(config, name):
            raise AttributeError(f"未知の設定項目です: {name}")
        setattr(config, name, value)
    return config


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunnerConfig:
    """デフォルト値 → 設定ファイル → 環境変数 の順に適用した設定を返す。

    Args:
        path: 設定ファイルのパス。None の場合はカレントの steptest.yaml（存在すれば）
        environ: 環境変数マッピング。None の場合は os.environ

    Raises:
        ConfigError: 明示指定された設定ファイルが存在しない、または不正な場合
    """
    config = RunnerConfig()

    if path is None:
        default_path = Path(DEFAULT_CONFIG_FILE)
        if default_path.is_file():
            path = default_path
    elif not path.is_file():
        raise ConfigError(f"設定ファイルが見つかりません: {path}")

    if path is not None:
        apply_config_file(config, load_config_file(path))

    apply_env(config, environ)
    logger.info("設定を読み込みました: %s", config)
    return config
