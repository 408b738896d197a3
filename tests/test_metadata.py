"""Tests for perch.metadata — title resolution, merging, and head output."""

from typing import Any

import anyio
import pytest

from perch.config import RouterConfig
from perch.errors import ConfigurationError, MetadataResolutionError
from perch.metadata import MetadataRecord, MetadataResolver, Title, inject_head, render_head
from perch.metadata.record import resolve_title
from perch.rendering.context import RenderPass
from perch.rendering.signals import not_found
from perch.routing.builder import build_route_tree
from perch.routing.node import SegmentFiles
from perch.routing.resolver import resolve

ACME = {"title": {"template": "%s | Acme", "default": "Acme"}}


def _page() -> str:
    return ""


async def _resolve_metadata(
    convention: dict[str, SegmentFiles],
    url: str,
    *,
    config: RouterConfig | None = None,
    fetcher: Any = None,
) -> MetadataRecord:
    tree = build_route_tree(convention)
    rpass = RenderPass(resolve(tree, url), fetcher=fetcher)
    try:
        async with anyio.create_task_group() as tg:
            rpass.start(tg)
            return await MetadataResolver(config).resolve(rpass)
    finally:
        rpass.close()


class TestTitleTable:
    def test_plain_title_uses_ancestor_template(self) -> None:
        assert resolve_title([ACME["title"], "Our Products"]) == "Our Products | Acme"

    def test_absolute_ignores_template(self) -> None:
        assert resolve_title([ACME["title"], {"absolute": "Special"}]) == "Special"

    def test_nothing_declared_uses_default(self) -> None:
        assert resolve_title([ACME["title"], None]) == "Acme"

    def test_template_does_not_apply_to_own_default(self) -> None:
        assert resolve_title([{"template": "%s | Acme", "default": "Home"}]) == "Home"

    def test_nearest_template_wins(self) -> None:
        titles = [ACME["title"], {"template": "%s · Docs"}, "Install"]
        assert resolve_title(titles) == "Install · Docs"

    def test_fallback(self) -> None:
        assert resolve_title([None, None], fallback="Site") == "Site"
        assert resolve_title([]) == ""

    def test_custom_placeholder(self) -> None:
        assert resolve_title([{"template": "{} - X"}, "Y"], placeholder="{}") == "Y - X"

    def test_structured_default_on_leaf_skips_template(self) -> None:
        assert resolve_title([ACME["title"], {"default": "Raw"}]) == "Raw"


class TestTitleCoerce:
    def test_mapping(self) -> None:
        assert Title.coerce({"absolute": "A"}) == Title(absolute="A")

    def test_unknown_keys(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown title keys"):
            Title.coerce({"prefix": "x"})

    def test_wrong_type(self) -> None:
        with pytest.raises(ConfigurationError):
            Title.coerce(42)


class TestMetadataResolver:
    async def test_fields_merge_leaf_overrides(self) -> None:
        record = await _resolve_metadata(
            {
                "": SegmentFiles(metadata={**ACME, "description": "Root", "robots": "index"}),
                "products": SegmentFiles(
                    page=_page, metadata={"title": "Our Products", "description": "All products"}
                ),
            },
            "/products",
        )
        assert record.title == "Our Products | Acme"
        assert record.get("description") == "All products"
        assert record.get("robots") == "index"
        assert "title" in record
        assert record.as_dict()["title"] == "Our Products | Acme"

    async def test_generate_metadata_receives_data_and_params(self) -> None:
        async def load(slug: str) -> dict[str, str]:
            return {"heading": slug.title()}

        def generate(slug: str, data: dict[str, str]) -> dict[str, str]:
            return {"title": data["heading"], "canonical": f"/blog/{slug}"}

        record = await _resolve_metadata(
            {
                "": SegmentFiles(metadata=ACME),
                "blog/[slug]": SegmentFiles(page=_page, load=load, metadata=generate),
            },
            "/blog/intro",
        )
        assert record.title == "Intro | Acme"
        assert record.get("canonical") == "/blog/intro"

    async def test_generate_metadata_shares_fetch_cache_with_loader(self) -> None:
        calls: list[str] = []

        async def fetcher(key: str, params: dict[str, Any]) -> dict[str, str]:
            calls.append(key)
            await anyio.sleep(0)
            return {"name": "Ada"}

        async def load(fetch: Any) -> Any:
            return await fetch("author", {"id": 1})

        async def generate(fetch: Any) -> dict[str, str]:
            author = await fetch("author", {"id": 1})
            return {"author": author["name"]}

        record = await _resolve_metadata(
            {"": SegmentFiles(page=_page, load=load, metadata=generate)},
            "/",
            fetcher=fetcher,
        )
        assert record.get("author") == "Ada"
        assert calls == ["author"]

    async def test_failing_declaration_is_skipped(self) -> None:
        def broken() -> dict[str, str]:
            raise ValueError("boom")

        record = await _resolve_metadata(
            {
                "": SegmentFiles(metadata={**ACME, "description": "Root"}),
                "x": SegmentFiles(page=_page, metadata=broken),
            },
            "/x",
        )
        assert record.title == "Acme"
        assert record.get("description") == "Root"
        assert isinstance(record.error, MetadataResolutionError)
        assert isinstance(record.error.__cause__, ValueError)

    async def test_non_mapping_result_is_an_error(self) -> None:
        record = await _resolve_metadata(
            {"": SegmentFiles(page=_page, metadata=lambda: "nope")}, "/"
        )
        assert record.error is not None
        assert "expected a mapping" in str(record.error)

    async def test_invalid_title_is_an_error(self) -> None:
        record = await _resolve_metadata(
            {"": SegmentFiles(page=_page, metadata={"title": {"bogus": 1}})}, "/"
        )
        assert record.error is not None
        assert record.title == ""

    async def test_signal_data_skips_callable_metadata(self) -> None:
        record = await _resolve_metadata(
            {
                "": SegmentFiles(metadata=ACME),
                "x": SegmentFiles(
                    page=_page, load=lambda: not_found(), metadata=lambda: {"title": "X"}
                ),
            },
            "/x",
        )
        assert record.title == "Acme"
        assert record.error is None

    async def test_default_title_from_config(self) -> None:
        record = await _resolve_metadata(
            {"": SegmentFiles(page=_page)}, "/", config=RouterConfig(default_title="Perch")
        )
        assert record.title == "Perch"


class TestHead:
    def test_render_head(self) -> None:
        record = MetadataRecord(
            title="A & B",
            fields={
                "description": "<desc>",
                "og:title": "Open",
                "keywords": ["a", "b"],
                "twitter": {"card": "summary"},
                "robots": None,
            },
        )
        head = render_head(record)
        assert "<title>A &amp; B</title>" in head
        assert '<meta name="description" content="&lt;desc&gt;">' in head
        assert '<meta property="og:title" content="Open">' in head
        assert head.count('name="keywords"') == 2
        assert '<meta property="twitter:card" content="summary">' in head
        assert "robots" not in head

    def test_inject_head(self) -> None:
        document = "<html><head><meta charset=utf-8></head><body></body></html>"
        out = inject_head(document, MetadataRecord(title="T"))
        assert "<meta charset=utf-8><title>T</title></head>" in out

    def test_inject_head_without_head_is_unchanged(self) -> None:
        assert inject_head("<p>x</p>", MetadataRecord(title="T")) == "<p>x</p>"
