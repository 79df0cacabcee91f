"""site2formats 全体で共有する例外型。"""

from __future__ import annotations


class Site2FormatsError(RuntimeError):
    """site2formats が送出する例外の基底クラス。"""


class ConfigError(Site2FormatsError, ValueError):
    """設定値が不正な場合に送出される例外。"""


class StaleCheckError(Site2FormatsError):
    """更新要否を安全に判定できなかった場合に送出される例外。

    ビルドパス全体を中断させる唯一のエラーです。
    """

    def __init__(self, source: str, destination: str, cause: OSError) -> None:
        self.source = source
        self.destination = destination
        super().__init__(
            f"更新日時を取得できませんでした: {source} (出力先: {destination}): {cause}"
        )


class PathConflictError(Site2FormatsError):
    """同一ビルドパス内で出力パスが重複した場合に送出される例外。"""

    def __init__(self, relative_path: str, kind: str, owner: str) -> None:
        self.relative_path = relative_path
        self.kind = kind
        self.owner = owner
        super().__init__(
            f"{relative_path} は {owner} と {kind} の両方の出力先になっています。"
            "カテゴリ名やタイトルを変更してください。"
        )


class ToolError(Site2FormatsError):
    """外部ツールの実行に失敗した場合に送出される例外。"""

    def __init__(self, tool: str, returncode: int | None, detail: str = "") -> None:
        self.tool = tool
        self.returncode = returncode
        message = f"{tool} の実行に失敗しました (終了コード: {returncode})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
