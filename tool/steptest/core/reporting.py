"""
Reporter — 実行結果のファイル出力

RunResult をステップ単位の結果一覧として書き出す。

出力形式:
  - json : report.json（サマリーと各ステップの結果）
  - html : report.html（templates/report.html.j2 をレンダリング）
  - junit: junit.xml（ステップ 1 つを testcase 1 つとして CI に取り込む）
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Callable, Iterable

from jinja2 import Environment, FileSystemLoader

from .progress import format_failure
from .scheduler import RunResult, StepOutcome

logger = logging.getLogger(__name__)

_TEMPLATES_DIR = Path(__file__).parent.parent / "templates"

_XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>\n'


class Reporter:
    """RunResult のレポート生成クラス。"""

    def generate(
        self, result: RunResult, output_dir: Path, formats: Iterable[str]
    ) -> list[Path]:
        """指定された形式のレポートをまとめて生成する。

        Args:
            result: 実行結果
            output_dir: 出力先ディレクトリ（存在しなければ作成）
            formats: レポート形式（json / html / junit）

        Returns:
            生成したファイルのパス（formats の順）

        Raises:
            ValueError: 未知の形式が指定された場合
        """
        writers: dict[str, Callable[[RunResult, Path], Path]] = {
            "json": self.generate_json,
            "html": self.generate_html,
            "junit": self.generate_junit_xml,
        }
        unknown = [fmt for fmt in formats if fmt not in writers]
        if unknown:
            raise ValueError(f"未知のレポート形式です: {unknown}")
        return [writers[fmt](result, output_dir) for fmt in formats]

    def generate_json(self, result: RunResult, output_dir: Path) -> Path:
        """report.json を生成する。"""
        text = json.dumps(self._build_report_dict(result), ensure_ascii=False, indent=2)
        return _write(output_dir / "report.json", text)

    def generate_html(self, result: RunResult, output_dir: Path) -> Path:
        """report.html を生成する。値は autoescape される。"""
        env = Environment(loader=FileSystemLoader(str(_TEMPLATES_DIR)), autoescape=True)
        html = env.get_template("report.html.j2").render(report=self._build_report_dict(result))
        return _write(output_dir / "report.html", html)

    def generate_junit_xml(self, result: RunResult, output_dir: Path) -> Path:
        """junit.xml を生成する。

        失敗したステップには失敗レポートブロックを本文に持つ failure 要素、
        破棄されたステップには skipped 要素を付与する。
        """
        summary = self._compute_summary(result.outcomes)
        root = ET.Element("testsuites")
        suite = ET.SubElement(
            root,
            "testsuite",
            name=result.test_name,
            tests=str(summary["total"]),
            failures=str(summary["failed"]),
            skipped=str(summary["skipped"]),
            time=_seconds(result.duration_ms),
        )

        for outcome in result.outcomes:
            case = ET.SubElement(
                suite,
                "testcase",
                name=f"[Step #{outcome.index}] {outcome.name}",
                classname=result.test_name,
                time=_seconds(outcome.duration_ms),
            )
            if outcome.status == "skipped":
                ET.SubElement(case, "skipped")
            elif outcome.fail_reason is not None:
                failure = ET.SubElement(case, "failure", message=outcome.fail_reason.message)
                failure.text = format_failure(outcome.fail_reason, outcome.index)

        ET.indent(root, space="  ")
        return _write(output_dir / "junit.xml", _XML_DECLARATION + ET.tostring(root, encoding="unicode"))

    # -------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------

    def _build_report_dict(self, result: RunResult) -> dict[str, Any]:
        """RunResult を JSON / HTML 共通の辞書に変換する。"""
        return {
            "title": result.test_name,
            "status": result.status,
            "halted": result.halted,
            "duration_ms": result.duration_ms,
            "started_at": result.started_at.isoformat() if result.started_at else None,
            "finished_at": result.finished_at.isoformat() if result.finished_at else None,
            "steps": [_outcome_dict(o) for o in result.outcomes],
            "summary": self._compute_summary(result.outcomes),
        }

    def _compute_summary(self, outcomes: list[StepOutcome]) -> dict[str, int]:
        counts = {"total": len(outcomes), "passed": 0, "failed": 0, "skipped": 0}
        for outcome in outcomes:
            counts[outcome.status] += 1
        return counts


def _outcome_dict(outcome: StepOutcome) -> dict[str, Any]:
    reason = outcome.fail_reason
    return {
        "index": outcome.index,
        "name": outcome.name,
        "kind": outcome.kind.value,
        "status": outcome.status,
        "duration_ms": outcome.duration_ms,
        "elapsed_ms": outcome.elapsed_ms,
        "reason": reason.message if reason else None,
        "location": reason.location if reason else None,
        "fatal": reason.fatal if reason else False,
        "error": repr(reason.error) if reason and reason.error else None,
    }


def _seconds(ms: float) -> str:
    return f"{ms / 1000:.3f}"


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info("レポートを生成しました: %s", path)
    return path
