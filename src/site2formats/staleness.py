"""出力ファイルの再生成要否を更新日時から判定するユーティリティ。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from .config import RebuildPolicy
from .content import Document
from .errors import StaleCheckError
from .models import AggregationKind, BuildContext

logger = logging.getLogger(__name__)

_SKIP_LOG_LEVELS = {
    AggregationKind.SINGLE_POST: logging.INFO,
    AggregationKind.SINGLE_COLLECTION_DOC: logging.INFO,
    AggregationKind.CATEGORY: logging.DEBUG,
    AggregationKind.FULL_SITE: logging.INFO,
    AggregationKind.FULL_COLLECTION: logging.INFO,
}

_SKIP_LABELS = {
    AggregationKind.SINGLE_POST: "投稿",
    AggregationKind.SINGLE_COLLECTION_DOC: "ドキュメント",
    AggregationKind.CATEGORY: "カテゴリ",
    AggregationKind.FULL_SITE: "全体ファイル",
    AggregationKind.FULL_COLLECTION: "コレクション",
}


class StalenessOracle:
    """更新日時の比較だけで再生成の要否を決めます。

    内容のハッシュは見ないため、変更のない touch でも再生成されます。
    """

    def __init__(self, context: BuildContext, policy: RebuildPolicy = RebuildPolicy.NEWER_OR_EQUAL) -> None:
        self._context = context
        self._policy = policy

    @property
    def policy(self) -> RebuildPolicy:
        return self._policy

    def is_stale(self, destination: Path, documents: Sequence[Document]) -> bool:
        """出力先が存在しないか、いずれかのソースが出力より新しければ True。"""

        if not destination.is_file():
            return True
        try:
            previous_mtime = destination.stat().st_mtime
        except OSError as exc:
            raise StaleCheckError(str(destination), str(destination), exc) from exc
        for doc in documents:
            try:
                source_mtime = doc.mtime()
            except OSError as exc:
                raise StaleCheckError(str(doc.path), str(destination), exc) from exc
            if self._policy.is_stale(source_mtime, previous_mtime):
                return True
        return False

    def should_rebuild(
        self,
        relative_path: str,
        documents: Sequence[Document],
        *,
        kind: AggregationKind,
        name: str = "",
    ) -> bool:
        """再生成が不要な場合は既存の出力を KeepSet に登録して False を返します。"""

        destination = self._context.absolute(relative_path)
        if self.is_stale(destination, documents):
            return True
        logger.log(
            _SKIP_LOG_LEVELS[kind],
            "%s '%s' は前回のビルド以降更新されていません。スキップします。",
            _SKIP_LABELS[kind],
            name,
        )
        self._context.keep_fresh(relative_path)
        return False
