"""site2formats パイプラインの設定モデル群。"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from .errors import ConfigError

DEFAULT_BUNDLE_PERMALINK = ":output_ext/:slug.:output_ext"
DEFAULT_FULL_FLAGS: tuple[str, ...] = ("--top-level-division=part",)

_TOGGLES = (
    "generate_posts",
    "generate_categories",
    "generate_full_file",
    "generate_full_collection_file",
    "imposition",
    "binder",
)


class RebuildPolicy(str, Enum):
    """ソースと出力の更新日時をどう比較するか。"""

    NEWER_OR_EQUAL = "newer-or-equal"
    STRICTLY_NEWER = "strictly-newer"

    @classmethod
    def parse(cls, value: "str | RebuildPolicy") -> "RebuildPolicy":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        for policy in cls:
            if policy.value == normalized:
                return policy
        choices = ", ".join(policy.value for policy in cls)
        raise ConfigError(f"rebuild_policy が不正です: {value!r} (指定可能: {choices})")

    def is_stale(self, source_mtime: float, destination_mtime: float) -> bool:
        if self is RebuildPolicy.STRICTLY_NEWER:
            return source_mtime > destination_mtime
        return source_mtime >= destination_mtime


@dataclass(slots=True)
class OutputFormat:
    """出力形式と、その形式専用のコンバーターフラグ。"""

    name: str
    flags: tuple[str, ...] = ()

    @property
    def extension(self) -> str:
        return self.name


@dataclass(slots=True)
class GeometryConfig:
    """印刷用 PDF の判型設定。"""

    papersize: str = "a5paper"
    sheetsize: str = "a4paper"
    signature: int = 0


@dataclass(slots=True)
class BuildConfig:
    """マルチフォーマット生成全体を束ねる設定。"""

    outputs: dict[str, OutputFormat] = field(default_factory=dict)
    skip: bool = False
    flags: tuple[str, ...] = ()
    full_flags: tuple[str, ...] = DEFAULT_FULL_FLAGS
    generate_posts: bool = True
    generate_categories: bool = True
    generate_full_file: bool = True
    generate_full_collection_file: bool = True
    imposition: bool = True
    binder: bool = True
    bundle_permalink: str = DEFAULT_BUNDLE_PERMALINK
    collection_path_rewrites: tuple[tuple[str, str], ...] = ()
    print_format: str = "pdf"
    geometry: GeometryConfig = field(default_factory=GeometryConfig)
    covers_dir: str = "images"
    lang: str = "en"
    rebuild_policy: RebuildPolicy = RebuildPolicy.NEWER_OR_EQUAL
    summary_path: Path | None = None

    @property
    def enabled(self) -> bool:
        return not self.skip and bool(self.outputs)

    def is_print_format(self, output_format: str) -> bool:
        return output_format == self.print_format

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "BuildConfig":
        """ホストの ``pandoc`` 設定マッピングから設定を組み立てます。"""

        data = dict(raw or {})
        outputs = _parse_outputs(data.get("outputs"))
        kwargs: dict[str, Any] = {"outputs": outputs}
        if "skip" in data:
            kwargs["skip"] = bool(data["skip"])
        if "flags" in data:
            kwargs["flags"] = _parse_flags(data["flags"])
        if "full_flags" in data:
            kwargs["full_flags"] = _parse_flags(data["full_flags"])
        for toggle in _TOGGLES:
            if toggle in data:
                kwargs[toggle] = bool(data[toggle])
        if data.get("bundle_permalink"):
            kwargs["bundle_permalink"] = str(data["bundle_permalink"])
        if "collection_path_rewrites" in data:
            kwargs["collection_path_rewrites"] = _parse_rewrites(data["collection_path_rewrites"])
        if data.get("print_format"):
            kwargs["print_format"] = str(data["print_format"])
        if data.get("covers_dir"):
            kwargs["covers_dir"] = str(data["covers_dir"])
        if data.get("lang"):
            kwargs["lang"] = str(data["lang"])
        if "rebuild_policy" in data:
            kwargs["rebuild_policy"] = RebuildPolicy.parse(data["rebuild_policy"])
        if data.get("summary_path"):
            kwargs["summary_path"] = Path(data["summary_path"])
        kwargs["geometry"] = _parse_geometry(data)
        return cls(**kwargs)

    @classmethod
    def from_args(
        cls,
        formats: Optional[Iterable[str]] = None,
        base: Mapping[str, Any] | None = None,
        toggle_overrides: Mapping[str, bool] | None = None,
        bundle_permalink: str | None = None,
        rebuild_policy: str | None = None,
        summary_path: Path | None = None,
    ) -> "BuildConfig":
        merged = dict(base or {})
        requested = [name.strip() for name in (formats or ()) if name and name.strip()]
        if requested:
            known = _parse_outputs(merged.get("outputs"))
            merged["outputs"] = {
                name: list(known[name].flags) if name in known else None for name in requested
            }
        for key, value in (toggle_overrides or {}).items():
            if key not in _TOGGLES:
                raise ConfigError(f"未知のトグルです: {key}")
            merged[key] = value
        if bundle_permalink:
            merged["bundle_permalink"] = bundle_permalink
        if rebuild_policy:
            merged["rebuild_policy"] = rebuild_policy
        config = cls.from_mapping(merged)
        if summary_path is not None:
            config.summary_path = summary_path
        return config


def _parse_flags(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return tuple(shlex.split(raw))
    if isinstance(raw, Sequence):
        return tuple(str(flag) for flag in raw)
    raise ConfigError(f"フラグはスペース区切りの文字列かリストで指定してください: {raw!r}")


def _parse_outputs(raw: Any) -> dict[str, OutputFormat]:
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return {
            str(name): OutputFormat(str(name), _parse_flags(flags)) for name, flags in raw.items()
        }
    if isinstance(raw, Sequence) and not isinstance(raw, str):
        return {str(name): OutputFormat(str(name)) for name in raw}
    raise ConfigError(f"outputs は形式名をキーとするマッピングで指定してください: {raw!r}")


def _parse_rewrites(raw: Any) -> tuple[tuple[str, str], ...]:
    if raw is None:
        return ()
    if isinstance(raw, Mapping):
        return tuple((str(pattern), str(replacement)) for pattern, replacement in raw.items())
    rewrites: list[tuple[str, str]] = []
    for item in raw:
        pattern, replacement = item
        rewrites.append((str(pattern), str(replacement)))
    return tuple(rewrites)


def _parse_geometry(data: Mapping[str, Any]) -> GeometryConfig:
    defaults = GeometryConfig()
    try:
        signature = int(data.get("signature", defaults.signature) or 0)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"signature は整数で指定してください: {data.get('signature')!r}") from exc
    if signature < 0:
        raise ConfigError("signature には 0 以上の整数を指定してください。")
    return GeometryConfig(
        papersize=str(data.get("papersize") or defaults.papersize),
        sheetsize=str(data.get("sheetsize") or defaults.sheetsize),
        signature=signature,
    )
