"""サイトのコンテンツを複数形式の成果物へ変換するための中核オーケストレーター。"""

from __future__ import annotations

import json
import logging
import warnings
from dataclasses import dataclass
from typing import Any, Callable, MutableSequence

from .aggregation import (
    category_units,
    full_collection_unit,
    full_site_unit,
    single_document_unit,
)
from .config import BuildConfig, OutputFormat
from .content import (
    CategoryIndex,
    Collection,
    ContentProvider,
    Document,
    NullHooks,
    RenderHooks,
    post_collection,
    resolve_category_index,
)
from .conversion import ConversionFailure, ConversionTaskRunner, Converter, PandocConverter
from .env import ToolSettings, current_tool_settings
from .errors import PathConflictError
from .models import AggregationKind, AggregationUnit, BuildArtifact, BuildContext, KeepSet
from .paths import OutputPathResolver
from .postprocess import (
    Binder,
    CoverRenderer,
    ImageMagickCoverRenderer,
    Imposer,
    LatexBinder,
    LatexImposer,
    LatexRunner,
    LatexUniter,
    PostProcessor,
    Uniter,
    existing_print_siblings,
)
from .staleness import StalenessOracle


@dataclass(slots=True)
class BuildResult:
    artifacts: list[BuildArtifact]
    keep_files: tuple[str, ...]
    converted: int = 0
    skipped: int = 0
    failed: int = 0
    conflicts: int = 0

    def to_summary(self) -> dict[str, Any]:
        return {
            "artifacts": [artifact.relative_path for artifact in self.artifacts],
            "converted": self.converted,
            "skipped": self.skipped,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "keep_files": list(self.keep_files),
        }


@dataclass(slots=True)
class PostProcessServices:
    imposer: Imposer
    binder: Binder
    cover_renderer: CoverRenderer
    uniter: Uniter

    @classmethod
    def from_settings(cls, settings: ToolSettings) -> "PostProcessServices":
        runner = LatexRunner(settings.pdflatex)
        return cls(
            imposer=LatexImposer(runner),
            binder=LatexBinder(runner),
            cover_renderer=ImageMagickCoverRenderer(settings.convert),
            uniter=LatexUniter(runner),
        )


class BuildPass:
    """1 回のビルドパス。ユニットごとに 解決 → 重複確認 → 更新判定 → 変換 を行います。

    変換の失敗や出力パスの重複はそのユニットだけを諦め、パス全体は止めません。
    """

    def __init__(
        self,
        config: BuildConfig,
        content: ContentProvider,
        context: BuildContext,
        converter: Converter,
        hooks: RenderHooks,
        category_index: Callable[[], CategoryIndex],
    ) -> None:
        self.config = config
        self.content = content
        self.context = context
        self.hooks = hooks
        self._category_index = category_index
        self._categories: CategoryIndex | None = None
        self._resolver = OutputPathResolver(config)
        self._oracle = StalenessOracle(context, config.rebuild_policy)
        self._runner = ConversionTaskRunner(
            config,
            converter,
            context,
            source_dir=content.source_dir,
            category_titles=content.category_titles,
        )
        self._logger = logging.getLogger(self.__class__.__module__ + "." + self.__class__.__name__)

    def run_format(self, output_format: OutputFormat) -> None:
        self._logger.info("%s ファイルを生成します。", output_format.name)
        posts = post_collection(self.content)
        if posts is not None:
            for post in posts.docs:
                self.hooks.pre_render(post, output_format.name)
                if self.config.generate_posts:
                    self.build_post(post, output_format)
                self.hooks.post_render(post, output_format.name)

        for collection in self._auxiliary_collections():
            for doc in collection.docs:
                self.hooks.pre_render(doc, output_format.name)
                if self.config.generate_posts:
                    self.build_collection_doc(doc, output_format)
                self.hooks.post_render(doc, output_format.name)

        if self.config.generate_categories:
            self.build_categories(output_format)
        if self.config.generate_full_file:
            self.build_full(output_format)
        if self.config.generate_full_collection_file:
            for collection in self._auxiliary_collections():
                self.build_full_collection(collection, output_format)

    def build_post(self, post: Document, output_format: OutputFormat) -> BuildArtifact | None:
        self._logger.debug("投稿: %s", post.title)
        return self.build_unit(single_document_unit(post, output_format, AggregationKind.SINGLE_POST))

    def build_collection_doc(self, doc: Document, output_format: OutputFormat) -> BuildArtifact | None:
        return self.build_unit(
            single_document_unit(doc, output_format, AggregationKind.SINGLE_COLLECTION_DOC)
        )

    def build_categories(self, output_format: OutputFormat) -> list[BuildArtifact]:
        if self._categories is None:
            self._categories = self._category_index()
        built: list[BuildArtifact] = []
        for unit in category_units(self._categories, self.content.category_titles, output_format):
            artifact = self.build_unit(unit)
            if artifact is not None:
                built.append(artifact)
        return built

    def build_full(self, output_format: OutputFormat) -> BuildArtifact | None:
        posts = post_collection(self.content)
        if posts is None:
            return None
        unit = full_site_unit(posts.docs, self.content.site_title, output_format)
        if unit is None:
            return None
        return self.build_unit(unit)

    def build_full_collection(
        self, collection: Collection, output_format: OutputFormat
    ) -> BuildArtifact | None:
        unit = full_collection_unit(collection, self.content.site_title, output_format)
        if unit is None:
            return None
        return self.build_unit(unit)

    def generate_post_for_output(self, post: Document, output_format: OutputFormat) -> BuildArtifact | None:
        warnings.warn(
            "generate_post_for_output は非推奨です。build_post を使用してください。",
            DeprecationWarning,
            stacklevel=2,
        )
        return self.build_post(post, output_format)

    def build_unit(self, unit: AggregationUnit) -> BuildArtifact | None:
        unit.relative_path = self._resolver.resolve(unit)
        try:
            self.context.claim(unit)
        except PathConflictError as exc:
            self.context.conflicts += 1
            self._logger.warning("%s", exc)
            return None
        if not self._oracle.should_rebuild(
            unit.relative_path, unit.documents, kind=unit.kind, name=unit.name
        ):
            for sibling in existing_print_siblings(
                self.config, unit.output_format.name, self.context.absolute(unit.relative_path)
            ):
                self.context.register_sibling(sibling)
            return None
        result = self._runner.convert(unit)
        if isinstance(result, ConversionFailure):
            self.context.failed += 1
            return None
        self._logger.info("生成しました (%s): %s", unit.kind.value, unit.relative_path)
        self.context.record(result)
        return result

    def _auxiliary_collections(self) -> list[Collection]:
        return [collection for collection in self.content.collections if not collection.is_posts]


class MultiFormatBuilder:
    """設定された出力形式ごとに全集約戦略を実行し、最後に後処理を行う高レベルパイプライン。"""

    def __init__(
        self,
        config: BuildConfig,
        content: ContentProvider,
        *,
        converter: Converter | None = None,
        services: PostProcessServices | None = None,
        hooks: RenderHooks | None = None,
        keep_files: MutableSequence[str] | None = None,
        tool_settings: ToolSettings | None = None,
    ) -> None:
        settings = tool_settings or current_tool_settings()
        self.config = config
        self.content = content
        self.converter = converter or PandocConverter(settings.pandoc)
        self.services = services or PostProcessServices.from_settings(settings)
        self.hooks = hooks or NullHooks()
        self.keep_files = keep_files if keep_files is not None else []
        self._category_index = resolve_category_index(content)
        self._logger = logging.getLogger(self.__class__.__module__ + "." + self.__class__.__name__)
        self._summary_path = config.summary_path
        self._summary_base = {"destination": str(content.destination)}

    def start_pass(self) -> BuildPass:
        context = BuildContext(destination=self.content.destination, keep=KeepSet(self.keep_files))
        return BuildPass(
            self.config, self.content, context, self.converter, self.hooks, self._category_index
        )

    def build(self) -> BuildResult:
        if not self.config.enabled:
            self._logger.info("出力形式が設定されていないか無効化されているため、生成をスキップします。")
            return BuildResult(artifacts=[], keep_files=tuple(self.keep_files))

        self._prepare_summary()
        build_pass = self.start_pass()
        context = build_pass.context
        self._update_summary("started", formats=list(self.config.outputs))
        for output_format in self.config.outputs.values():
            build_pass.run_format(output_format)
            self._update_summary("format", format=output_format.name, **self._counters(context))

        postprocessor = PostProcessor(
            self.config,
            context,
            imposer=self.services.imposer,
            binder=self.services.binder,
            cover_renderer=self.services.cover_renderer,
            uniter=self.services.uniter,
        )
        postprocessor.process_all(context.artifacts)

        result = BuildResult(
            artifacts=list(context.artifacts),
            keep_files=tuple(context.keep),
            **self._counters(context),
        )
        self._logger.info(
            "生成完了: 変換 %d 件 / スキップ %d 件 / 失敗 %d 件 / 重複 %d 件",
            result.converted,
            result.skipped,
            result.failed,
            result.conflicts,
        )
        self._update_summary("completed", artifacts=len(result.artifacts), **self._counters(context))
        return result

    def _counters(self, context: BuildContext) -> dict[str, int]:
        return {
            "converted": context.converted,
            "skipped": context.skipped,
            "failed": context.failed,
            "conflicts": context.conflicts,
        }

    def _prepare_summary(self) -> None:
        if self._summary_path is None:
            return
        self._summary_path.parent.mkdir(parents=True, exist_ok=True)
        self._summary_path.write_text("", encoding="utf-8")

    def _update_summary(self, stage: str, **extra: Any) -> None:
        if self._summary_path is None:
            return
        payload = dict(self._summary_base)
        payload.update(extra)
        payload["stage"] = stage
        with self._summary_path.open("a", encoding="utf-8") as stream:
            stream.write(json.dumps(payload, ensure_ascii=False))
            stream.write("\n")


def build_formats(config: BuildConfig, content: ContentProvider, **kwargs: Any) -> BuildResult:
    builder = MultiFormatBuilder(config, content, **kwargs)
    return builder.build()

