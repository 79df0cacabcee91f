from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

import pytest

from site2formats.config import BuildConfig, OutputFormat
from site2formats.content import Collection, Document
from site2formats.conversion import ConversionOutcome, ConversionRequest
from site2formats.errors import ToolError

PAST = datetime(2020, 1, 1).timestamp()


@dataclass
class FakeSite:
    site_title: str
    source_dir: Path
    destination: Path
    collections: list[Collection]
    category_titles: dict[str, str] = field(default_factory=dict)


class FakeConverter:
    """Markdown をそのまま出力先に書き出すコンバーター。"""

    def __init__(self, fail_on: Sequence[str] = (), skip_write_on: Sequence[str] = ()) -> None:
        self.requests: list[ConversionRequest] = []
        self._fail_on = tuple(fail_on)
        self._skip_write_on = tuple(skip_write_on)

    def convert(self, request: ConversionRequest) -> ConversionOutcome:
        self.requests.append(request)
        target = request.destination.as_posix()
        if any(token in target for token in self._fail_on):
            return ConversionOutcome(ok=False, message="pandoc exited with 1")
        if not any(token in target for token in self._skip_write_on):
            request.destination.write_text(request.markdown, encoding="utf-8")
        return ConversionOutcome(ok=True)

    @property
    def destinations(self) -> list[Path]:
        return [request.destination for request in self.requests]


class FakeImposer:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self._fail = fail

    def impose(self, source: Path, destination: Path, papersize: str, sheetsize: str, signature: int) -> None:
        self.calls.append((source, destination, papersize, sheetsize, signature))
        if self._fail:
            raise ToolError("pdflatex", 1, "impose failed")
        destination.write_bytes(b"imposed:" + source.read_bytes())


class FakeBinder:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    def bind(self, source: Path, destination: Path, papersize: str, sheetsize: str) -> None:
        self.calls.append((source, destination, papersize, sheetsize))
        destination.write_bytes(b"binder:" + source.read_bytes())


class FakeCoverRenderer:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[Path] = []
        self._fail = fail

    def render(self, cover: Path, workdir: Path) -> Path:
        self.calls.append(cover)
        if self._fail:
            raise ToolError("convert", 1, "no decode delegate")
        rendered = workdir / "cover.pdf"
        rendered.write_bytes(b"cover-page")
        return rendered


class FakeUniter:
    def __init__(self) -> None:
        self.calls: list[tuple[list[Path], Path]] = []

    def unite(self, sources: Sequence[Path], destination: Path) -> None:
        self.calls.append((list(sources), destination))
        destination.write_bytes(b"".join(source.read_bytes() for source in sources))


def make_doc(
    root: Path,
    name: str,
    *,
    collection: str = "posts",
    title: str | None = None,
    date: datetime | None = None,
    categories: Sequence[str] = (),
    order: int | None = None,
    full: bool = False,
    data: dict[str, Any] | None = None,
    mtime: float = PAST,
    url: str | None = None,
) -> Document:
    folder = root / f"_{collection}"
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{name}.md"
    path.write_text(f"body of {name}\n", encoding="utf-8")
    os.utime(path, (mtime, mtime))
    when = date or datetime(2020, 1, 1)
    return Document(
        doc_id=f"{collection}/{name}",
        path=path,
        relative_path=f"_{collection}/{name}.md",
        url=url or f"/{when:%Y/%m/%d}/{name}.html",
        title=title or name,
        date=when,
        collection=collection,
        categories=tuple(categories),
        order=order,
        full=full,
        content=f"body of {name}",
        data=dict(data or {}),
    )


def make_site(tmp_path: Path, posts: list[Document], *others: Collection, **kwargs: Any) -> FakeSite:
    collections = [Collection(name="posts", docs=posts, is_posts=True), *others]
    return FakeSite(
        site_title=kwargs.pop("site_title", "My Site"),
        source_dir=tmp_path / "src",
        destination=tmp_path / "dest",
        collections=collections,
        **kwargs,
    )


def only(*enabled: str, **overrides: Any) -> BuildConfig:
    """指定したトグルだけを有効にした pdf 用の設定を返します。"""

    toggles = {
        "generate_posts": False,
        "generate_categories": False,
        "generate_full_file": False,
        "generate_full_collection_file": False,
        "imposition": False,
        "binder": False,
    }
    for name in enabled:
        toggles[name] = True
    outputs = overrides.pop("outputs", {"pdf": OutputFormat("pdf")})
    return BuildConfig(outputs=outputs, **toggles, **overrides)


@pytest.fixture
def converter() -> FakeConverter:
    return FakeConverter()
