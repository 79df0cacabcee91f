"""集約ユニットの出力先パスを決定するユーティリティ。"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from slugify import slugify

from .config import BuildConfig
from .models import AggregationKind, AggregationUnit

SLUG_TOKEN = ":slug"
OUTPUT_EXT_TOKEN = ":output_ext"


def replace_extension(path: str, extension: str) -> str:
    """パスの拡張子を出力形式の拡張子に置き換えます。"""

    posix = PurePosixPath(path.lstrip("/"))
    if path.endswith("/") or not posix.name:
        return (posix / f"index.{extension}").as_posix()
    return posix.with_suffix(f".{extension}").as_posix()


def expand_bundle_permalink(template: str, slug: str, extension: str) -> str:
    expanded = template.replace(OUTPUT_EXT_TOKEN, extension).replace(SLUG_TOKEN, slug)
    return expanded.lstrip("/")


class OutputPathResolver:
    """(ドキュメント群, 出力形式, 集約種別) から出力先の相対パスを求めます。

    I/O を伴わない純粋な計算で、同じ入力には常に同じパスを返します。
    """

    def __init__(self, config: BuildConfig) -> None:
        self._config = config
        self._rewrites = [
            (re.compile(pattern), replacement)
            for pattern, replacement in config.collection_path_rewrites
        ]

    def resolve(self, unit: AggregationUnit) -> str:
        extension = unit.output_format.extension
        if unit.kind is AggregationKind.SINGLE_POST:
            return replace_extension(unit.first.url, extension)
        if unit.kind is AggregationKind.SINGLE_COLLECTION_DOC:
            return replace_extension(self.rewrite_collection_path(unit.first.relative_path), extension)
        return expand_bundle_permalink(
            self._config.bundle_permalink, self.bundle_slug(unit), extension
        )

    def rewrite_collection_path(self, relative_path: str) -> str:
        rewritten = relative_path
        for pattern, replacement in self._rewrites:
            rewritten = pattern.sub(replacement, rewritten)
        return rewritten

    def bundle_slug(self, unit: AggregationUnit) -> str:
        if unit.kind is AggregationKind.FULL_COLLECTION:
            source = unit.label or unit.title
        else:
            source = unit.title or unit.label
        return slugify(source) or slugify(unit.label) or unit.kind.value
