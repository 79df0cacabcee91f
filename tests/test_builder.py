from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path

import pytest

from site2formats.builder import MultiFormatBuilder, PostProcessServices, build_formats
from site2formats.config import BuildConfig, OutputFormat
from site2formats.content import Collection
from site2formats.errors import StaleCheckError

from conftest import (
    FakeBinder,
    FakeConverter,
    FakeCoverRenderer,
    FakeImposer,
    FakeUniter,
    make_doc,
    make_site,
    only,
)


def _services() -> PostProcessServices:
    return PostProcessServices(
        imposer=FakeImposer(),
        binder=FakeBinder(),
        cover_renderer=FakeCoverRenderer(),
        uniter=FakeUniter(),
    )


def _build(config: BuildConfig, site, converter: FakeConverter, **kwargs):
    return build_formats(config, site, converter=converter, services=_services(), **kwargs)


def test_single_post_is_converted_once_and_kept(tmp_path: Path, converter: FakeConverter) -> None:
    post = make_doc(tmp_path / "src", "Intro", title="Intro", url="/2020/01/01/Intro.html")
    site = make_site(tmp_path, [post])

    result = _build(only("generate_posts"), site, converter)

    assert converter.destinations == [tmp_path / "dest" / "2020/01/01/Intro.pdf"]
    assert result.keep_files.count("2020/01/01/Intro.pdf") == 1
    assert result.converted == 1
    assert [artifact.relative_path for artifact in result.artifacts] == ["2020/01/01/Intro.pdf"]


def test_second_pass_without_changes_converts_nothing(tmp_path: Path) -> None:
    posts = [
        make_doc(tmp_path / "src", "a", categories=["poems"], order=2),
        make_doc(tmp_path / "src", "b", categories=["poems"], order=1),
    ]
    aux = Collection("poetry", [make_doc(tmp_path / "src", "rain", collection="poetry", categories=["verse"])])
    site = make_site(tmp_path, posts, aux, category_titles={"poems": "Poems", "verse": "Verse"})
    config = only(
        "generate_posts",
        "generate_categories",
        "generate_full_file",
        "generate_full_collection_file",
    )

    first = _build(config, site, FakeConverter())
    second_converter = FakeConverter()
    second = _build(config, site, second_converter)

    assert first.converted == 7
    assert second_converter.requests == []
    assert second.converted == 0
    assert second.skipped == first.converted
    assert set(second.keep_files) == set(first.keep_files)


def test_touched_source_rebuilds_only_dependent_units(tmp_path: Path) -> None:
    a = make_doc(tmp_path / "src", "a", categories=["poems"])
    b = make_doc(tmp_path / "src", "b", categories=["essays"])
    site = make_site(tmp_path, [a, b], category_titles={"poems": "Poems", "essays": "Essays"})
    config = only("generate_posts", "generate_categories")
    _build(config, site, FakeConverter())
    future = datetime(2999, 1, 1).timestamp()
    os.utime(a.path, (future, future))

    converter = FakeConverter()
    result = _build(config, site, converter)

    rebuilt = sorted(path.relative_to(tmp_path / "dest").as_posix() for path in converter.destinations)
    assert rebuilt == ["2020/01/01/a.pdf", "pdf/poems.pdf"]
    assert result.skipped == 2


def test_category_colliding_with_post_is_dropped(tmp_path: Path, caplog) -> None:
    caplog.set_level("WARNING")
    post = make_doc(tmp_path / "src", "poems-post", url="/poems.html")
    member = make_doc(tmp_path / "src", "member", categories=["poems"], url="/2020/member.html")
    site = make_site(tmp_path, [post, member], category_titles={"poems": "Poems"})
    converter = FakeConverter()
    config = only("generate_posts", "generate_categories", bundle_permalink=":slug.:output_ext")

    result = _build(config, site, converter)

    target = tmp_path / "dest" / "poems.pdf"
    assert converter.destinations.count(target) == 1
    assert "body of poems-post" in target.read_text(encoding="utf-8")
    assert "body of member" not in target.read_text(encoding="utf-8")
    assert result.conflicts == 1
    assert any("poems.pdf" in record.message for record in caplog.records)


def test_failed_unit_is_not_kept(tmp_path: Path) -> None:
    good = make_doc(tmp_path / "src", "good")
    bad = make_doc(tmp_path / "src", "bad")
    site = make_site(tmp_path, [good, bad])
    converter = FakeConverter(fail_on=["bad.pdf"])

    result = _build(only("generate_posts"), site, converter)

    assert result.failed == 1
    assert result.keep_files == ("2020/01/01/good.pdf",)
    assert [artifact.relative_path for artifact in result.artifacts] == ["2020/01/01/good.pdf"]


def test_hooks_bracket_each_document_per_format(tmp_path: Path) -> None:
    events: list[tuple[str, str, str]] = []

    class RecordingHooks:
        def pre_render(self, document, output_format):
            events.append(("pre", document.doc_id, output_format))

        def post_render(self, document, output_format):
            events.append(("post", document.doc_id, output_format))

    post = make_doc(tmp_path / "src", "p")
    doc = make_doc(tmp_path / "src", "d", collection="notes")
    site = make_site(tmp_path, [post], Collection("notes", [doc]))
    config = only(outputs={"pdf": OutputFormat("pdf"), "epub": OutputFormat("epub")})

    _build(config, site, FakeConverter(), hooks=RecordingHooks())

    assert events == [
        ("pre", "posts/p", "pdf"),
        ("post", "posts/p", "pdf"),
        ("pre", "notes/d", "pdf"),
        ("post", "notes/d", "pdf"),
        ("pre", "posts/p", "epub"),
        ("post", "posts/p", "epub"),
        ("pre", "notes/d", "epub"),
        ("post", "notes/d", "epub"),
    ]


def test_print_artifacts_are_post_processed(tmp_path: Path) -> None:
    post = make_doc(tmp_path / "src", "intro")
    site = make_site(tmp_path, [post])
    config = only(
        "generate_posts",
        "imposition",
        "binder",
        outputs={"pdf": OutputFormat("pdf"), "epub": OutputFormat("epub")},
    )

    result = _build(config, site, FakeConverter())

    assert set(result.keep_files) == {
        "2020/01/01/intro.pdf",
        "2020/01/01/intro.epub",
        "2020/01/01/intro-imposed.pdf",
        "2020/01/01/intro-binder.pdf",
    }


def test_print_siblings_stay_kept_when_source_is_unchanged(tmp_path: Path) -> None:
    site = make_site(tmp_path, [make_doc(tmp_path / "src", "intro")])
    config = only("generate_posts", "imposition", "binder")

    first = _build(config, site, FakeConverter())
    second_converter = FakeConverter()
    second = _build(config, site, second_converter)

    assert second_converter.requests == []
    assert set(second.keep_files) == set(first.keep_files)
    assert "2020/01/01/intro-imposed.pdf" in second.keep_files
    assert "2020/01/01/intro-binder.pdf" in second.keep_files


def test_disabled_print_steps_do_not_keep_old_siblings(tmp_path: Path) -> None:
    site = make_site(tmp_path, [make_doc(tmp_path / "src", "intro")])
    _build(only("generate_posts", "imposition", "binder"), site, FakeConverter())

    second = _build(only("generate_posts", "binder"), site, FakeConverter())

    assert set(second.keep_files) == {"2020/01/01/intro.pdf", "2020/01/01/intro-binder.pdf"}


def test_disabled_configuration_does_nothing(tmp_path: Path) -> None:
    site = make_site(tmp_path, [make_doc(tmp_path / "src", "x")])
    converter = FakeConverter()

    result = _build(BuildConfig(outputs={"pdf": OutputFormat("pdf")}, skip=True), site, converter)
    empty = _build(BuildConfig(), site, converter)

    assert converter.requests == []
    assert result.artifacts == [] and empty.artifacts == []


def test_host_keep_files_are_appended_in_place(tmp_path: Path) -> None:
    site = make_site(tmp_path, [make_doc(tmp_path / "src", "x")])
    host_keep = ["assets/static.css"]

    _build(only("generate_posts"), site, FakeConverter(), keep_files=host_keep)

    assert host_keep == ["assets/static.css", "2020/01/01/x.pdf"]


def test_build_summary_is_written(tmp_path: Path) -> None:
    site = make_site(tmp_path, [make_doc(tmp_path / "src", "x")])
    summary = tmp_path / "logs" / "build_summary.json"

    _build(only("generate_posts", summary_path=summary), site, FakeConverter())

    events = [json.loads(line) for line in summary.read_text(encoding="utf-8").splitlines() if line.strip()]
    assert [event["stage"] for event in events] == ["started", "format", "completed"]
    assert events[-1]["converted"] == 1
    assert events[-1]["artifacts"] == 1


def test_unreadable_source_aborts_the_pass(tmp_path: Path) -> None:
    post = make_doc(tmp_path / "src", "x")
    site = make_site(tmp_path, [post])
    _build(only("generate_posts"), site, FakeConverter())
    post.path.unlink()

    with pytest.raises(StaleCheckError):
        _build(only("generate_posts"), site, FakeConverter())


def test_deprecated_post_alias_still_builds(tmp_path: Path) -> None:
    post = make_doc(tmp_path / "src", "old-api")
    site = make_site(tmp_path, [post])
    builder = MultiFormatBuilder(only("generate_posts"), site, converter=FakeConverter(), services=_services())
    build_pass = builder.start_pass()

    with pytest.warns(DeprecationWarning):
        artifact = build_pass.generate_post_for_output(post, OutputFormat("pdf"))

    assert artifact is not None
    assert artifact.relative_path == "2020/01/01/old-api.pdf"
