"""ドキュメントを出力単位にまとめる集約戦略。"""

from __future__ import annotations

import logging
from typing import Iterator, Mapping, Sequence

from .config import OutputFormat
from .content import CategoryIndex, Collection, Document
from .models import AggregationKind, AggregationUnit

logger = logging.getLogger(__name__)


def single_document_unit(
    document: Document, output_format: OutputFormat, kind: AggregationKind
) -> AggregationUnit:
    """投稿またはコレクション内ドキュメント 1 件分のユニットを作ります。"""

    if not kind.is_single:
        raise ValueError(f"単一ドキュメント用の種別ではありません: {kind.value}")
    return AggregationUnit(
        kind=kind,
        documents=(document,),
        title=document.title,
        output_format=output_format,
        label=document.doc_id,
    )


def category_title(tag: str, titles: Mapping[str, str]) -> str:
    title = titles.get(tag)
    if not title:
        logger.debug("カテゴリ '%s' の表示名が見つかりません。空のタイトルで続行します。", tag)
        return ""
    return title


def category_units(
    index: CategoryIndex,
    titles: Mapping[str, str],
    output_format: OutputFormat,
) -> Iterator[AggregationUnit]:
    """カテゴリごとに ``order`` 昇順 (未指定は最後) で並べたユニットを返します。"""

    for tag, docs in index.items():
        if not docs:
            continue
        ordered = sorted(docs, key=lambda doc: doc.order_or_last)
        yield AggregationUnit(
            kind=AggregationKind.CATEGORY,
            documents=tuple(ordered),
            title=category_title(tag, titles),
            output_format=output_format,
            label=tag,
        )


def full_site_key(document: Document) -> tuple:
    return (document.date, document.first_category)


def full_site_unit(
    posts: Sequence[Document], site_title: str, output_format: OutputFormat
) -> AggregationUnit | None:
    """``full`` フラグのない全投稿を日付・先頭カテゴリ順にまとめます。"""

    included = sorted((doc for doc in posts if not doc.full), key=full_site_key)
    if not included:
        return None
    return AggregationUnit(
        kind=AggregationKind.FULL_SITE,
        documents=tuple(included),
        title=site_title,
        output_format=output_format,
        label="full",
        full=True,
    )


def full_collection_key(document: Document) -> tuple:
    # order 未指定は同じカテゴリ列の中で先頭に並ぶ
    return (
        document.categories,
        document.order is not None,
        document.order or 0,
        str(document.path),
    )


def full_collection_unit(
    collection: Collection, site_title: str, output_format: OutputFormat
) -> AggregationUnit | None:
    """コレクション全体をカテゴリ列・``order`` 順にまとめます。

    表示タイトルはコレクション名ではなくサイトタイトルです。
    """

    if not collection.docs:
        return None
    ordered = sorted(collection.docs, key=full_collection_key)
    return AggregationUnit(
        kind=AggregationKind.FULL_COLLECTION,
        documents=tuple(ordered),
        title=site_title,
        output_format=output_format,
        label=collection.name,
        full_collection=True,
    )
