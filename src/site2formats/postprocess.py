"""印刷用 PDF の後処理 (面付け・製本用レイアウト・表紙の結合)。"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol, Sequence

from .config import BuildConfig
from .errors import ToolError
from .models import BuildArtifact, BuildContext

logger = logging.getLogger(__name__)

IMPOSED_SUFFIX = "-imposed"
BINDER_SUFFIX = "-binder"
COVER_SUFFIX = "-cover"


class Imposer(Protocol):
    def impose(self, source: Path, destination: Path, papersize: str, sheetsize: str, signature: int) -> None: ...


class Binder(Protocol):
    def bind(self, source: Path, destination: Path, papersize: str, sheetsize: str) -> None: ...


class CoverRenderer(Protocol):
    def render(self, cover: Path, workdir: Path) -> Path: ...


class Uniter(Protocol):
    def unite(self, sources: Sequence[Path], destination: Path) -> None: ...


_ISO_SIZE = re.compile(r"^a(\d)paper$")


def nup_layout(papersize: str, sheetsize: str) -> str:
    """用紙 1 枚に何ページ並べるかを pdfpages の ``nup`` 形式で返します。"""

    paper = _ISO_SIZE.match(papersize)
    sheet = _ISO_SIZE.match(sheetsize)
    if not paper or not sheet:
        return "2x1"
    steps = int(paper.group(1)) - int(sheet.group(1))
    if steps <= 0:
        return "1x1"
    if steps == 1:
        return "2x1"
    return "2x2"


def _sheet_class_option(sheetsize: str) -> str:
    return sheetsize if sheetsize.endswith("paper") else f"{sheetsize}paper"


class LatexRunner:
    """pdfpages を使った小さな LaTeX 文書を pdflatex でコンパイルします。"""

    def __init__(self, executable: str = "pdflatex", timeout: float = 300.0) -> None:
        self._executable = executable
        self._timeout = timeout

    def compile(self, template: str, sources: Sequence[Path], destination: Path) -> None:
        with tempfile.TemporaryDirectory(prefix="site2formats-") as tmp:
            workdir = Path(tmp)
            names = []
            for index, source in enumerate(sources):
                name = f"input-{index}.pdf"
                shutil.copyfile(source, workdir / name)
                names.append(name)
            tex_path = workdir / "job.tex"
            tex_path.write_text(template.format(*names), encoding="utf-8")
            try:
                completed = subprocess.run(
                    [
                        self._executable,
                        "-interaction=nonstopmode",
                        "-halt-on-error",
                        "job.tex",
                    ],
                    cwd=workdir,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as exc:
                raise ToolError(self._executable, None, str(exc)) from exc
            produced = workdir / "job.pdf"
            if completed.returncode != 0 or not produced.is_file():
                tail = "\n".join(completed.stdout.splitlines()[-5:])
                raise ToolError(self._executable, completed.returncode, tail)
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(produced), destination)


class LatexImposer:
    def __init__(self, runner: LatexRunner) -> None:
        self._runner = runner

    def impose(self, source: Path, destination: Path, papersize: str, sheetsize: str, signature: int) -> None:
        layout = f"signature={signature}" if signature > 0 else "booklet=true"
        template = (
            "\\documentclass[" + _sheet_class_option(sheetsize) + ",landscape]{{article}}\n"
            "\\usepackage{{pdfpages}}\n"
            "\\begin{{document}}\n"
            "\\includepdf[pages=-," + layout + ",landscape]{{{0}}}\n"
            "\\end{{document}}\n"
        )
        self._runner.compile(template, [source], destination)


class LatexBinder:
    def __init__(self, runner: LatexRunner) -> None:
        self._runner = runner

    def bind(self, source: Path, destination: Path, papersize: str, sheetsize: str) -> None:
        nup = nup_layout(papersize, sheetsize)
        columns, rows = (int(part) for part in nup.split("x"))
        copies = ",".join(["\\p"] * (columns * rows))
        template = (
            "\\documentclass[" + _sheet_class_option(sheetsize) + ",landscape]{{article}}\n"
            "\\usepackage{{pdfpages}}\n"
            "\\usepackage{{pgffor}}\n"
            "\\pdfximage{{{0}}}\n"
            "\\edef\\pagecount{{\\the\\pdflastximagepages}}\n"
            "\\begin{{document}}\n"
            "\\foreach \\p in {{1,...,\\pagecount}}{{"
            "\\includepdf[pages={{" + copies + "}},nup=" + nup + ",landscape]{{{0}}}}}\n"
            "\\end{{document}}\n"
        )
        self._runner.compile(template, [source], destination)


class LatexUniter:
    def __init__(self, runner: LatexRunner) -> None:
        self._runner = runner

    def unite(self, sources: Sequence[Path], destination: Path) -> None:
        includes = "".join(
            "\\includepdf[pages=-,fitpaper]{{{" + str(index) + "}}}\n" for index in range(len(sources))
        )
        template = (
            "\\documentclass{{article}}\n"
            "\\usepackage{{pdfpages}}\n"
            "\\begin{{document}}\n" + includes + "\\end{{document}}\n"
        )
        self._runner.compile(template, sources, destination)


class ImageMagickCoverRenderer:
    """表紙画像を ImageMagick で 1 ページの PDF に変換します。"""

    def __init__(self, executable: str = "convert", density: int = 300) -> None:
        self._executable = executable
        self._density = density

    def render(self, cover: Path, workdir: Path) -> Path:
        if cover.suffix.lower() == ".pdf":
            return cover
        destination = workdir / f"{cover.stem}{COVER_SUFFIX}.pdf"
        try:
            completed = subprocess.run(
                [self._executable, "-density", str(self._density), str(cover), str(destination)],
                capture_output=True,
                text=True,
            )
        except OSError as exc:
            raise ToolError(self._executable, None, str(exc)) from exc
        if completed.returncode != 0 or not destination.is_file():
            raise ToolError(self._executable, completed.returncode, completed.stderr.strip())
        return destination


def existing_print_siblings(config: BuildConfig, output_format: str, destination: Path) -> list[Path]:
    """前回のビルドで作られ、今回も有効な面付け・製本用 PDF のうち実在するものを返します。"""

    if not config.is_print_format(output_format):
        return []
    suffixes = []
    if config.imposition:
        suffixes.append(IMPOSED_SUFFIX)
    if config.binder:
        suffixes.append(BINDER_SUFFIX)
    siblings = [destination.with_name(f"{destination.stem}{suffix}{destination.suffix}") for suffix in suffixes]
    return [sibling for sibling in siblings if sibling.is_file()]


class PostProcessor:
    """印刷用形式の成果物ごとに 面付け → 製本用 → 表紙結合 の順で処理します。

    各ステップは独立しており、失敗しても警告を出して次へ進みます。
    """

    def __init__(
        self,
        config: BuildConfig,
        context: BuildContext,
        *,
        imposer: Imposer,
        binder: Binder,
        cover_renderer: CoverRenderer,
        uniter: Uniter,
    ) -> None:
        self._config = config
        self._context = context
        self._imposer = imposer
        self._binder = binder
        self._cover_renderer = cover_renderer
        self._uniter = uniter

    def process_all(self, artifacts: Sequence[BuildArtifact]) -> None:
        for artifact in artifacts:
            self.process(artifact)

    def process(self, artifact: BuildArtifact) -> None:
        if not self._config.is_print_format(artifact.output_format):
            return
        if self._config.imposition:
            self._impose(artifact)
        if self._config.binder:
            self._bind(artifact)
        if artifact.cover is not None:
            self._add_cover(artifact)

    def _impose(self, artifact: BuildArtifact) -> bool:
        destination = artifact.sibling(IMPOSED_SUFFIX)
        try:
            self._imposer.impose(
                artifact.path, destination, artifact.papersize, artifact.sheetsize, artifact.signature
            )
        except ToolError as exc:
            logger.warning("面付けに失敗しました: %s (%s)", artifact.relative_path, exc)
            return False
        self._context.register_sibling(destination)
        logger.info("面付け PDF を出力しました: %s", destination.name)
        return True

    def _bind(self, artifact: BuildArtifact) -> bool:
        destination = artifact.sibling(BINDER_SUFFIX)
        try:
            self._binder.bind(artifact.path, destination, artifact.papersize, artifact.sheetsize)
        except ToolError as exc:
            logger.warning("製本用 PDF の生成に失敗しました: %s (%s)", artifact.relative_path, exc)
            return False
        self._context.register_sibling(destination)
        logger.info("製本用 PDF を出力しました: %s", destination.name)
        return True

    def _add_cover(self, artifact: BuildArtifact) -> bool:
        cover = artifact.cover
        if cover is None or not cover.is_file():
            logger.warning("表紙画像が見つかりません: %s", cover)
            return False
        united = artifact.sibling(COVER_SUFFIX)
        with tempfile.TemporaryDirectory(prefix="site2formats-cover-") as tmp:
            try:
                cover_pdf = self._cover_renderer.render(cover, Path(tmp))
            except ToolError as exc:
                logger.warning("表紙の生成に失敗しました: %s (%s)", cover.name, exc)
                return False
            try:
                self._uniter.unite([cover_pdf, artifact.path], united)
            except ToolError as exc:
                united.unlink(missing_ok=True)
                logger.warning("表紙の結合に失敗しました: %s (%s)", artifact.relative_path, exc)
                return False
        if not united.is_file():
            logger.warning("表紙付き PDF が見つかりません: %s", united)
            return False
        os.replace(united, artifact.path)
        logger.info("表紙を追加しました: %s", artifact.relative_path)
        return True
