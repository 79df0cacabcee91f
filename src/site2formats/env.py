"""環境変数および外部ツール設定のローダー。"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Iterable, Iterator, Mapping

DEFAULT_ENV_NAME = ".env"
PANDOC_ENV = "SITE2FORMATS_PANDOC"
PYPANDOC_ENV = "PYPANDOC_PANDOC"
PDFLATEX_ENV = "SITE2FORMATS_PDFLATEX"
CONVERT_ENV = "SITE2FORMATS_CONVERT"


@dataclass(slots=True)
class ToolSettings:
    """外部コマンドの実行ファイル名。"""

    pandoc: str | None
    pdflatex: str
    convert: str


def load_env_file(path: str | Path | None = None) -> dict[str, str]:
    """`.env` ファイルを読み込み、未設定の環境変数を補完します。"""

    env_path = _locate_env_file(path)
    if env_path is None or not env_path.exists():
        return {}
    loaded = dict(_parse_env_lines(env_path.read_text(encoding="utf-8").splitlines()))
    for key, value in loaded.items():
        os.environ.setdefault(key, value)
    return loaded


def current_tool_settings(source: Mapping[str, str] | None = None) -> ToolSettings:
    """現在の環境変数から外部ツールの設定を読み取ります。"""

    env = source if source is not None else os.environ
    return ToolSettings(
        pandoc=env.get(PANDOC_ENV) or env.get(PYPANDOC_ENV),
        pdflatex=env.get(PDFLATEX_ENV) or "pdflatex",
        convert=env.get(CONVERT_ENV) or "convert",
    )


def _parse_env_lines(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        if key:
            yield key, _strip_quotes(value.strip())


def _locate_env_file(path: str | Path | None) -> Path | None:
    if path is not None:
        candidate = Path(path)
        if candidate.is_dir():
            candidate = candidate / DEFAULT_ENV_NAME
        return candidate
    default = Path.cwd() / DEFAULT_ENV_NAME
    return default if default.exists() else None


def _strip_quotes(value: str) -> str:
    if not value:
        return value
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value
