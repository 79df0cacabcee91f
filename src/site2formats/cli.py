"""site2formats のコマンドラインインターフェース。"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable

from .builder import build_formats
from .config import BuildConfig, RebuildPolicy
from .env import current_tool_settings, load_env_file
from .errors import ConfigError
from .site import load_site

_TOGGLE_FLAGS = {
    "no_posts": "generate_posts",
    "no_categories": "generate_categories",
    "no_full": "generate_full_file",
    "no_full_collection": "generate_full_collection_file",
    "no_imposition": "imposition",
    "no_binder": "binder",
}


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="サイトのコンテンツから PDF・EPUB などの成果物を生成します")
    parser.add_argument("--source", dest="source_dir", type=Path, required=True, help="_config.yml を含むサイトのソースディレクトリ")
    parser.add_argument("--dest", dest="dest_dir", type=Path, default=None, help="成果物を書き出すディレクトリ (省略時は _site)")
    parser.add_argument(
        "--format",
        dest="formats",
        action="append",
        default=None,
        help="生成する出力形式 (複数指定可。省略時は _config.yml の pandoc.outputs)",
    )
    parser.add_argument("--verbose", dest="verbose", action="store_true", help="進捗ログを標準出力へ表示")
    parser.add_argument("--env", dest="env_file", type=Path, default=None, help="外部ツール設定を読み込む .env ファイル")
    parser.add_argument("--summary", dest="summary_path", type=Path, default=None, help="ビルドサマリー (JSON Lines) の出力先")

    generation_group = parser.add_argument_group("生成設定")
    generation_group.add_argument("--no-posts", dest="no_posts", action="store_true", help="投稿・ドキュメント単体の生成を無効化する")
    generation_group.add_argument("--no-categories", dest="no_categories", action="store_true", help="カテゴリ単位の生成を無効化する")
    generation_group.add_argument("--no-full", dest="no_full", action="store_true", help="全投稿をまとめたファイルの生成を無効化する")
    generation_group.add_argument(
        "--no-full-collection",
        dest="no_full_collection",
        action="store_true",
        help="コレクション全体をまとめたファイルの生成を無効化する",
    )
    generation_group.add_argument(
        "--bundle-permalink",
        dest="bundle_permalink",
        type=str,
        default=None,
        help="まとめファイルの出力パス (:slug と :output_ext を含むテンプレート)",
    )
    generation_group.add_argument(
        "--rebuild-policy",
        dest="rebuild_policy",
        choices=[policy.value for policy in RebuildPolicy],
        default=None,
        help="更新日時の比較方法",
    )

    print_group = parser.add_argument_group("印刷用 PDF 設定")
    print_group.add_argument("--no-imposition", dest="no_imposition", action="store_true", help="面付け PDF の生成を無効化する")
    print_group.add_argument("--no-binder", dest="no_binder", action="store_true", help="製本用 PDF の生成を無効化する")
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    _validate_args(args)
    _configure_logging(args.verbose)
    load_env_file(args.env_file)
    site = load_site(args.source_dir, args.dest_dir)
    try:
        config = BuildConfig.from_args(
            formats=args.formats,
            base=site.pandoc_config,
            toggle_overrides=_collect_toggle_overrides(args),
            bundle_permalink=args.bundle_permalink,
            rebuild_policy=args.rebuild_policy,
            summary_path=args.summary_path,
        )
    except ConfigError as exc:
        print(f"[エラー] 設定が不正です: {exc}", file=sys.stderr)
        raise SystemExit(2)
    result = build_formats(
        config,
        site,
        keep_files=site.keep_files,
        tool_settings=current_tool_settings(),
    )
    print(json.dumps(result.to_summary(), ensure_ascii=False))


def _validate_args(args: argparse.Namespace) -> None:
    errors: list[str] = []
    if not args.source_dir.exists():
        errors.append(f"[エラー] ソースディレクトリが見つかりません: {args.source_dir}")
    elif not args.source_dir.is_dir():
        errors.append(f"[エラー] ソースパスはディレクトリではありません: {args.source_dir}")

    if args.dest_dir is not None and args.dest_dir.exists() and not args.dest_dir.is_dir():
        errors.append(f"[エラー] 出力パスがディレクトリではありません: {args.dest_dir}")

    if args.bundle_permalink is not None and ":slug" not in args.bundle_permalink:
        errors.append("[エラー] --bundle-permalink には :slug を含めてください。")

    if args.env_file is not None and not args.env_file.exists():
        errors.append(f"[エラー] .env ファイルが見つかりません: {args.env_file}")

    if errors:
        for message in errors:
            print(message, file=sys.stderr)
        print("ソース・出力パスを確認し、存在するディレクトリを指定してください。", file=sys.stderr)
        raise SystemExit(2)

    args.source_dir = args.source_dir.resolve()
    if args.dest_dir is not None:
        args.dest_dir = args.dest_dir.resolve()


def _collect_toggle_overrides(args: argparse.Namespace) -> dict[str, bool]:
    overrides: dict[str, bool] = {}
    for flag, toggle in _TOGGLE_FLAGS.items():
        if getattr(args, flag):
            overrides[toggle] = False
    return overrides


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


if __name__ == "__main__":
    main()
