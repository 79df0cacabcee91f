"""ビルドパスで扱う値オブジェクトとビルドコンテキスト。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, MutableSequence

from .config import OutputFormat
from .content import Document
from .errors import PathConflictError


class AggregationKind(str, Enum):
    SINGLE_POST = "post"
    SINGLE_COLLECTION_DOC = "document"
    CATEGORY = "category"
    FULL_SITE = "full"
    FULL_COLLECTION = "full_collection"

    @property
    def is_single(self) -> bool:
        return self in (AggregationKind.SINGLE_POST, AggregationKind.SINGLE_COLLECTION_DOC)


@dataclass(slots=True)
class AggregationUnit:
    """変換前の、1 つの出力ファイルにまとまるドキュメント群。"""

    kind: AggregationKind
    documents: tuple[Document, ...]
    title: str
    output_format: OutputFormat
    label: str = ""
    full: bool = False
    full_collection: bool = False
    relative_path: str | None = None

    def __post_init__(self) -> None:
        if not self.documents:
            raise ValueError(f"{self.kind.value} ユニット '{self.label or self.title}' にドキュメントがありません。")

    @property
    def first(self) -> Document:
        return self.documents[0]

    @property
    def name(self) -> str:
        return self.title or self.label or self.first.title


@dataclass(slots=True)
class BuildArtifact:
    """コンバーターが書き出した 1 つの成果物。"""

    unit: AggregationUnit
    path: Path
    relative_path: str
    output_format: str
    papersize: str
    sheetsize: str
    signature: int
    cover: Path | None = None

    def sibling(self, suffix: str) -> Path:
        """``foo.pdf`` に対して ``foo<suffix>.pdf`` を返します。"""

        return self.path.with_name(f"{self.path.stem}{suffix}{self.path.suffix}")


class KeepSet:
    """ホストの出力ディレクトリ掃除から除外する相対パスの登録簿。

    ホストが所有するリストに追記します。同じパスは一度しか登録されません。
    """

    def __init__(self, target: MutableSequence[str] | None = None) -> None:
        self._target: MutableSequence[str] = target if target is not None else []
        self._seen: set[str] = set(self._target)

    def add(self, relative_path: str) -> None:
        if relative_path in self._seen:
            return
        self._seen.add(relative_path)
        self._target.append(relative_path)

    def __contains__(self, relative_path: object) -> bool:
        return relative_path in self._seen

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._target))

    def __len__(self) -> int:
        return len(self._target)


@dataclass(slots=True)
class BuildContext:
    """1 回のビルドパスで共有される可変状態。"""

    destination: Path
    keep: KeepSet = field(default_factory=KeepSet)
    artifacts: list[BuildArtifact] = field(default_factory=list)
    claimed: dict[str, str] = field(default_factory=dict)
    converted: int = 0
    skipped: int = 0
    failed: int = 0
    conflicts: int = 0

    def claim(self, unit: AggregationUnit) -> str:
        """ユニットの出力先を確保します。既に使われていれば例外を送出します。"""

        relative_path = unit.relative_path
        if relative_path is None:
            raise ValueError("出力先が未解決のユニットは確保できません。")
        owner = self.claimed.get(relative_path)
        if owner is not None:
            raise PathConflictError(relative_path, f"{unit.kind.value} '{unit.name}'", owner)
        self.claimed[relative_path] = f"{unit.kind.value} '{unit.name}'"
        return relative_path

    def absolute(self, relative_path: str) -> Path:
        return self.destination / relative_path

    def record(self, artifact: BuildArtifact) -> None:
        self.keep.add(artifact.relative_path)
        self.artifacts.append(artifact)
        self.converted += 1

    def keep_fresh(self, relative_path: str) -> None:
        self.keep.add(relative_path)
        self.skipped += 1

    def register_sibling(self, path: Path) -> str:
        relative_path = relative_to_destination(path, self.destination)
        self.keep.add(relative_path)
        return relative_path


def relative_to_destination(path: Path, destination: Path) -> str:
    try:
        return path.relative_to(destination).as_posix()
    except ValueError:
        return path.as_posix()

