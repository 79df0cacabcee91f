"""Jekyll 形式のソースツリーを読み込む、ファイルシステムベースのホスト実装。"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

import frontmatter
import yaml

from .content import Collection, Document

logger = logging.getLogger(__name__)

CONFIG_NAME = "_config.yml"
CATEGORIES_DATA = Path("_data") / "categories.yml"
POSTS_DIR = "_posts"
DEFAULT_DESTINATION = "_site"
MARKDOWN_SUFFIXES = {".md", ".markdown"}

_POST_NAME = re.compile(r"^(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})-(?P<slug>.+)$")


@dataclass(slots=True)
class SiteContent:
    """ソースディレクトリから読み込んだサイト全体。"""

    site_title: str
    source_dir: Path
    destination: Path
    collections: list[Collection]
    category_titles: dict[str, str] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)
    keep_files: list[str] = field(default_factory=list)

    @property
    def pandoc_config(self) -> Mapping[str, Any]:
        raw = self.config.get("pandoc")
        return raw if isinstance(raw, Mapping) else {}


def load_site(source_dir: Path, destination: Path | None = None) -> SiteContent:
    """``_config.yml`` とコレクションを読み込み、ビルド用のサイトを返します。"""

    config = _load_yaml(source_dir / CONFIG_NAME)
    dest = destination or source_dir / str(config.get("destination") or DEFAULT_DESTINATION)
    collections = [Collection(name="posts", docs=_load_posts(source_dir), is_posts=True)]
    for name in _collection_names(config.get("collections")):
        if name == "posts":
            continue
        collections.append(Collection(name=name, docs=_load_collection(source_dir, name)))
    keep_files = [str(item) for item in config.get("keep_files") or ()]
    site = SiteContent(
        site_title=str(config.get("title") or ""),
        source_dir=source_dir,
        destination=dest,
        collections=collections,
        category_titles=load_category_titles(source_dir / CATEGORIES_DATA),
        config=config,
        keep_files=keep_files,
    )
    logger.info(
        "サイトを読み込みました: 投稿 %d 件, コレクション %d 件",
        len(collections[0].docs),
        len(collections) - 1,
    )
    return site


def load_category_titles(path: Path) -> dict[str, str]:
    """``{tag: {name: 表示名}}`` または ``{tag: 表示名}`` 形式の一覧を読み込みます。"""

    data = _load_yaml(path)
    titles: dict[str, str] = {}
    for tag, value in data.items():
        if isinstance(value, Mapping):
            name = value.get("name")
        else:
            name = value
        if name:
            titles[str(tag)] = str(name)
    return titles


def parse_categories(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return tuple(part for part in raw.split() if part)
    if isinstance(raw, Iterable):
        return tuple(str(item) for item in raw if item is not None and str(item))
    return (str(raw),)


def parse_order(raw: Any, relative_path: str = "") -> int | float | None:
    """front matter の ``order`` を数値に変換します。解釈できない値は未指定として扱います。"""

    if raw is None:
        return None
    value: int | float | None = None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        try:
            value = int(text)
        except ValueError:
            try:
                value = float(text)
            except ValueError:
                value = None
    if isinstance(value, int) or (value is not None and math.isfinite(value)):
        return value
    logger.warning("order を数値として解釈できません。未指定として扱います: %s (%r)", relative_path, raw)
    return None


def coerce_datetime(raw: Any, fallback: datetime) -> datetime:
    if isinstance(raw, datetime):
        if raw.tzinfo is not None:
            return raw.astimezone(timezone.utc).replace(tzinfo=None)
        return raw
    if isinstance(raw, date):
        return datetime.combine(raw, datetime.min.time())
    if isinstance(raw, str) and raw.strip():
        try:
            return coerce_datetime(datetime.fromisoformat(raw.strip()), fallback)
        except ValueError:
            logger.warning("日付を解釈できません: %s", raw)
    return fallback


def _collection_names(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        return [str(name) for name in raw]
    return [str(name) for name in raw]


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    return dict(loaded) if isinstance(loaded, Mapping) else {}


def _markdown_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(
        path for path in directory.rglob("*") if path.is_file() and path.suffix.lower() in MARKDOWN_SUFFIXES
    )


def _load_posts(source_dir: Path) -> list[Document]:
    docs: list[Document] = []
    for path in _markdown_files(source_dir / POSTS_DIR):
        match = _POST_NAME.match(path.stem)
        if match is None:
            logger.warning("投稿のファイル名に日付がありません。読み飛ばします: %s", path.name)
            continue
        file_date = datetime(int(match["year"]), int(match["month"]), int(match["day"]))
        slug = match["slug"]
        post = frontmatter.load(str(path))
        when = coerce_datetime(post.metadata.get("date"), file_date)
        url = str(post.metadata.get("permalink") or f"/{when:%Y/%m/%d}/{slug}.html")
        docs.append(_document(source_dir, path, post, "posts", when, url, slug))
    return docs


def _load_collection(source_dir: Path, name: str) -> list[Document]:
    docs: list[Document] = []
    for path in _markdown_files(source_dir / f"_{name}"):
        post = frontmatter.load(str(path))
        fallback = datetime.fromtimestamp(path.stat().st_mtime)
        when = coerce_datetime(post.metadata.get("date"), fallback)
        url = str(post.metadata.get("permalink") or f"/{name}/{path.stem}.html")
        docs.append(_document(source_dir, path, post, name, when, url, path.stem))
    return docs


def _document(
    source_dir: Path,
    path: Path,
    post: frontmatter.Post,
    collection: str,
    when: datetime,
    url: str,
    slug: str,
) -> Document:
    metadata = dict(post.metadata)
    relative_path = path.relative_to(source_dir).as_posix()
    return Document(
        doc_id=f"{collection}/{slug}",
        path=path,
        relative_path=relative_path,
        url=url,
        title=str(metadata.get("title") or slug),
        date=when,
        collection=collection,
        categories=parse_categories(metadata.get("categories")),
        order=parse_order(metadata.get("order"), relative_path),
        full=bool(metadata.get("full")),
        content=post.content,
        data=metadata,
    )
