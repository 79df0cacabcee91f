"""集約ユニットを外部コンバーター (pandoc) で成果物に変換するタスクランナー。"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol

import pypandoc
import yaml

from .config import BuildConfig
from .env import PYPANDOC_ENV
from .models import AggregationUnit, BuildArtifact, BuildContext

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConversionRequest:
    """コンバーターへ渡す 1 回分の入力。"""

    markdown: str
    output_format: str
    destination: Path
    flags: tuple[str, ...] = ()
    workdir: Path | None = None


@dataclass(slots=True)
class ConversionOutcome:
    ok: bool
    message: str = ""


@dataclass(slots=True)
class ConversionFailure:
    """変換に失敗したユニット。例外ではなく値として返されます。"""

    unit: AggregationUnit
    reason: str


class Converter(Protocol):
    def convert(self, request: ConversionRequest) -> ConversionOutcome: ...


class PandocConverter:
    """pypandoc 経由で pandoc を呼び出すコンバーター。"""

    def __init__(self, pandoc_path: str | None = None) -> None:
        if pandoc_path:
            # pypandoc は最初の呼び出し時にこの環境変数から pandoc を探す
            os.environ.setdefault(PYPANDOC_ENV, pandoc_path)

    def convert(self, request: ConversionRequest) -> ConversionOutcome:
        extra_args = list(request.flags)
        try:
            pypandoc.convert_text(
                request.markdown,
                to=request.output_format,
                format="markdown",
                outputfile=str(request.destination),
                extra_args=extra_args,
                cworkdir=str(request.workdir) if request.workdir else None,
            )
        except (OSError, RuntimeError) as exc:
            return ConversionOutcome(ok=False, message=str(exc))
        return ConversionOutcome(ok=True)


def compose_markdown(
    unit: AggregationUnit,
    *,
    lang: str,
    category_titles: Mapping[str, str] | None = None,
) -> str:
    """ユニットのドキュメント群を 1 つの Markdown 文書に組み立てます。

    単一ドキュメントはフロントマターをそのまま引き継ぎます。全体ファイルと
    コレクション全体ファイルでは、先頭カテゴリが変わるたびに部見出しを挟みます。
    """

    titles = category_titles or {}
    if unit.kind.is_single:
        doc = unit.first
        metadata: dict[str, Any] = {key: value for key, value in doc.data.items() if key != "content"}
        metadata.setdefault("title", doc.title)
        metadata.setdefault("lang", lang)
        return _metadata_block(metadata) + doc.content.strip() + "\n"

    newest = max(doc.date for doc in unit.documents)
    metadata = {"title": unit.title, "lang": lang, "date": newest.date().isoformat()}
    if unit.full:
        metadata["full"] = True
    if unit.full_collection:
        metadata["full_collection"] = True
    body: list[str] = []
    with_parts = unit.full or unit.full_collection
    heading = "##" if with_parts else "#"
    current_part: str | None = None
    for doc in unit.documents:
        if with_parts and doc.first_category != current_part:
            current_part = doc.first_category
            if current_part:
                body.append(f"# {titles.get(current_part) or current_part}")
                body.append("")
        body.append(f"{heading} {doc.title}")
        body.append("")
        body.append(doc.content.strip())
        body.append("")
    return _metadata_block(metadata) + "\n".join(body)


def _metadata_block(metadata: Mapping[str, Any]) -> str:
    dumped = yaml.safe_dump(dict(metadata), allow_unicode=True, sort_keys=False, default_flow_style=False)
    return f"---\n{dumped}---\n\n"


class ConversionTaskRunner:
    """ユニットを 1 つ変換し、成功すれば成果物を返します。"""

    def __init__(
        self,
        config: BuildConfig,
        converter: Converter,
        context: BuildContext,
        *,
        source_dir: Path | None = None,
        category_titles: Mapping[str, str] | None = None,
    ) -> None:
        self._config = config
        self._converter = converter
        self._context = context
        self._source_dir = source_dir
        self._category_titles = dict(category_titles or {})

    def convert(self, unit: AggregationUnit) -> BuildArtifact | ConversionFailure:
        if unit.relative_path is None:
            raise ValueError("出力先が未解決のユニットは変換できません。")
        destination = self._context.absolute(unit.relative_path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        # 失敗時に古い成果物が残らないよう、変換前に削除しておく
        destination.unlink(missing_ok=True)
        request = ConversionRequest(
            markdown=compose_markdown(unit, lang=self._config.lang, category_titles=self._category_titles),
            output_format=unit.output_format.name,
            destination=destination,
            flags=self._flags_for(unit),
            workdir=self._source_dir,
        )
        outcome = self._converter.convert(request)
        if not outcome.ok:
            logger.debug("変換に失敗しました: %s (%s)", unit.relative_path, outcome.message)
            return ConversionFailure(unit=unit, reason=outcome.message or "converter failed")
        if not destination.is_file():
            logger.debug("変換後に出力ファイルが見つかりません: %s", destination)
            return ConversionFailure(unit=unit, reason="output file missing")
        return self._artifact_for(unit, destination)

    def _flags_for(self, unit: AggregationUnit) -> tuple[str, ...]:
        flags: list[str] = [*self._config.flags, *unit.output_format.flags]
        if unit.full or unit.full_collection:
            flags.extend(self._config.full_flags)
        return tuple(flags)

    def _artifact_for(self, unit: AggregationUnit, destination: Path) -> BuildArtifact:
        data = unit.first.data
        geometry = self._config.geometry
        return BuildArtifact(
            unit=unit,
            path=destination,
            relative_path=unit.relative_path or "",
            output_format=unit.output_format.name,
            papersize=str(data.get("papersize") or geometry.papersize),
            sheetsize=str(data.get("sheetsize") or geometry.sheetsize),
            signature=_as_signature(data.get("signature"), geometry.signature),
            cover=self._cover_for(unit),
        )

    def _cover_for(self, unit: AggregationUnit) -> Path | None:
        if not unit.kind.is_single:
            return None
        cover = unit.first.data.get("cover")
        if not cover:
            return None
        base = self._source_dir or Path.cwd()
        return base / self._config.covers_dir / str(cover)


def _as_signature(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return default

