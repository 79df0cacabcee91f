"""ホスト側コンテンツ (投稿・コレクション) への読み取り専用インターフェース。"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol, Sequence, runtime_checkable

ORDER_LAST = 10000

CategoryIndex = dict[str, list["Document"]]


@dataclass(slots=True)
class Document:
    """ホストから借用する 1 件のドキュメント。"""

    doc_id: str
    path: Path
    relative_path: str
    url: str
    title: str
    date: datetime
    collection: str = "posts"
    categories: tuple[str, ...] = ()
    order: int | float | None = None
    full: bool = False
    content: str = ""
    data: Mapping[str, Any] = field(default_factory=dict)

    def mtime(self) -> float:
        return self.path.stat().st_mtime

    @property
    def first_category(self) -> str:
        return self.categories[0] if self.categories else ""

    @property
    def order_or_last(self) -> int | float:
        return ORDER_LAST if self.order is None else self.order


@dataclass(slots=True)
class Collection:
    """ドキュメントの順序付き集合。"""

    name: str
    docs: list[Document]
    is_posts: bool = False


class ContentProvider(Protocol):
    """ビルドに必要なサイト情報を提供するホストの抽象。"""

    @property
    def site_title(self) -> str: ...

    @property
    def source_dir(self) -> Path: ...

    @property
    def destination(self) -> Path: ...

    @property
    def collections(self) -> Sequence[Collection]: ...

    @property
    def category_titles(self) -> Mapping[str, str]: ...


@runtime_checkable
class NativeCategoryIndex(Protocol):
    """カテゴリ索引を自前で構築できるホストが実装する追加機能。"""

    def categories_by_tag(self) -> Mapping[str, Sequence[Document]]: ...


class RenderHooks(Protocol):
    """ドキュメント単位の変換前後に呼び出される通知フック。"""

    def pre_render(self, document: Document, output_format: str) -> None: ...

    def post_render(self, document: Document, output_format: str) -> None: ...


class NullHooks:
    def pre_render(self, document: Document, output_format: str) -> None:
        return None

    def post_render(self, document: Document, output_format: str) -> None:
        return None


def natural_order_key(document: Document) -> tuple[datetime, str]:
    """ホストの既定順 (日付、次にパス) の比較キー。"""

    return (document.date, str(document.path))


def post_collection(content: ContentProvider) -> Collection | None:
    for collection in content.collections:
        if collection.is_posts:
            return collection
    return None


def build_category_index(
    collections: Sequence[Collection],
    natural_key: Callable[[Document], Any] = natural_order_key,
) -> CategoryIndex:
    """全コレクションを走査してカテゴリタグごとのドキュメント一覧を作ります。

    カテゴリを持たないドキュメントは含まれません。各カテゴリ内は既定順の
    逆順 (新しいものが先) に一度だけ並べ替えます。
    """

    index: dict[str, list[Document]] = defaultdict(list)
    for collection in collections:
        for doc in collection.docs:
            for tag in doc.categories:
                index[tag].append(doc)
    for docs in index.values():
        docs.sort(key=natural_key, reverse=True)
    return dict(index)


def resolve_category_index(content: ContentProvider) -> Callable[[], CategoryIndex]:
    """起動時に一度だけカテゴリ索引の取得方法を決定します。"""

    if isinstance(content, NativeCategoryIndex):
        native = content

        def from_host() -> CategoryIndex:
            return {tag: list(docs) for tag, docs in native.categories_by_tag().items()}

        return from_host

    def from_documents() -> CategoryIndex:
        return build_category_index(content.collections)

    return from_documents
