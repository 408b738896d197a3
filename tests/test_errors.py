"""Tests for perch.errors — exception hierarchy and error messages."""

import pytest

from perch.errors import (
    AmbiguousRouteError,
    ConfigurationError,
    MetadataResolutionError,
    PerchError,
    RenderError,
    RouteNotFoundError,
)
from perch.routing.builder import build_route_tree
from perch.routing.node import SegmentFiles
from perch.routing.resolver import resolve


def _page() -> str:
    return ""


class TestHierarchy:
    @pytest.mark.parametrize(
        "cls", [ConfigurationError, RouteNotFoundError, RenderError, MetadataResolutionError]
    )
    def test_is_perch_error(self, cls: type[Exception]) -> None:
        assert issubclass(cls, PerchError)

    def test_ambiguous_is_configuration_error(self) -> None:
        assert issubclass(AmbiguousRouteError, ConfigurationError)

    def test_metadata_error_is_render_error(self) -> None:
        assert issubclass(MetadataResolutionError, RenderError)


class TestAmbiguousRouteError:
    def test_attributes(self) -> None:
        err = AmbiguousRouteError("/[x]", "[a]", "[b]")
        assert err.url == "/[x]"
        assert (err.first, err.second) == ("[a]", "[b]")
        assert "'[a]' and '[b]'" in str(err)


class TestRouteNotFoundError:
    def test_message_and_attempted_nodes(self) -> None:
        tree = build_route_tree({"docs/guide": SegmentFiles(page=_page)})
        with pytest.raises(RouteNotFoundError) as exc_info:
            resolve(tree, "/docs/other")
        err = exc_info.value
        assert str(err) == "No route matches '/docs/other'"
        assert [n.name for n in err.attempted_nodes] == ["", "docs"]

    def test_defaults(self) -> None:
        err = RouteNotFoundError("/x")
        assert err.attempted == ()
        assert err.attempted_nodes == ()
        assert err.search_params == ""


class TestRenderError:
    def test_wrap(self) -> None:
        tree = build_route_tree({"blog": SegmentFiles(page=_page)})
        node = tree.find("blog")
        cause = KeyError("title")
        err = RenderError.wrap(cause, node=node, slot="page")
        assert err.cause is cause
        assert err.__cause__ is cause
        assert err.node is node
        assert str(err) == "KeyError in page of 'blog': 'title'"

    def test_wrap_keeps_render_errors(self) -> None:
        original = RenderError("already wrapped")
        assert RenderError.wrap(original, node=None, slot="load") is original

    def test_wrap_without_node(self) -> None:
        err = RenderError.wrap(ValueError("x"), node=None, slot=None)
        assert str(err) == "ValueError in render of '?': x"

    def test_describe(self) -> None:
        err = RenderError.wrap(ValueError("bad"), node=None, slot="load")
        assert err.describe() == {
            "message": str(err),
            "segment": None,
            "slot": "load",
            "type": "ValueError",
        }
        assert RenderError("plain").describe()["type"] == "RenderError"
