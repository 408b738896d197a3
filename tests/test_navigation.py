"""Tests for perch.navigation — history, prefetching, soft refresh, supersession."""

from collections import Counter
from typing import Any

import anyio
import pytest

from perch.config import RouterConfig
from perch.errors import RenderError
from perch.metadata.record import MetadataRecord
from perch.navigation import (
    HistoryStack,
    NavigationEntry,
    NavigationRouter,
    PrefetchCache,
    PrefetchCacheEntry,
)
from perch.rendering.instances import SlotInstance
from perch.rendering.signals import redirect
from perch.rendering.slots import CallableSlotRenderer
from perch.routing.builder import RouteTree, build_route_tree
from perch.routing.node import SegmentFiles
from perch.routing.resolver import MatchChain


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _Recorder(CallableSlotRenderer):
    """Callable renderer that records mount lifecycle events."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str]] = []

    def mount(self, instance: SlotInstance) -> None:
        self.events.append(("mount", instance.slot.value, instance.node.name))

    def unmount(self, instance: SlotInstance) -> None:
        self.events.append(("unmount", instance.slot.value, instance.node.name))


class _Loads:
    """Counts loader invocations by name."""

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()

    def loader(self, name: str):
        async def load(params: Any) -> str:
            self.calls[name] += 1
            return f"{name}{self.calls[name]}"

        return load


def _counting(label: str):
    """A wrapper slot whose output shows how often its instance rendered."""

    def render(children: str, state: dict[str, Any]) -> str:
        state["n"] = state.get("n", 0) + 1
        return f"<{label}{state['n']}>{children}"

    return render


def _text(value: str):
    def render() -> str:
        return value

    return render


def _dashboard(loads: _Loads) -> RouteTree:
    return build_route_tree(
        {
            "": SegmentFiles(not_found=_text("missing")),
            "dash": SegmentFiles(
                layout=_counting("L"), template=_counting("T"), load=loads.loader("dash")
            ),
            "dash/[tab]": SegmentFiles(
                page=lambda tab, data: f"{tab}:{data}", load=loads.loader("tab")
            ),
            "api": SegmentFiles(handler=lambda: {"ok": True}),
        }
    )


def _entry(url: str) -> NavigationEntry:
    return NavigationEntry(url=url, chain=MatchChain(segments=(), path=url))


class TestHistoryStack:
    def test_push_truncates_forward_entries(self) -> None:
        stack = HistoryStack()
        for url in ("/a", "/b", "/c"):
            stack.push(_entry(url))
        stack.go(-2)
        stack.push(_entry("/d"))
        assert [e.url for e in stack] == ["/a", "/d"]
        assert not stack.can_go_forward
        assert stack.can_go_back

    def test_limit_drops_oldest(self) -> None:
        stack = HistoryStack(limit=2)
        for url in ("/a", "/b", "/c"):
            stack.push(_entry(url))
        assert [e.url for e in stack] == ["/b", "/c"]
        assert stack.index == 1

    def test_replace_and_peek(self) -> None:
        stack = HistoryStack()
        stack.replace(_entry("/a"))
        assert len(stack) == 1
        stack.replace(_entry("/b"))
        assert stack.current is not None
        assert stack.current.url == "/b"
        assert stack.peek(-1) is None

    def test_go_out_of_range(self) -> None:
        with pytest.raises(IndexError):
            HistoryStack().go(1)

    def test_invalid_limit(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            HistoryStack(limit=0)


class TestPrefetchCache:
    @staticmethod
    def _put(cache: PrefetchCache, key: str, created: float = 0.0) -> None:
        cache.put(
            PrefetchCacheEntry(
                key=key,
                chain=MatchChain(segments=(), path=key),
                html="",
                metadata=MetadataRecord(),
                created=created,
            )
        )

    def test_expired_entries_dropped(self) -> None:
        cache = PrefetchCache(ttl=10.0)
        self._put(cache, "/a")
        assert cache.get("/a", 9.9) is not None
        assert cache.get("/a", 10.0) is None
        assert "/a" not in cache

    def test_least_recently_requested_evicted(self) -> None:
        cache = PrefetchCache(max_size=2)
        self._put(cache, "/a")
        self._put(cache, "/b")
        cache.get("/a", 0.0)
        self._put(cache, "/c")
        assert "/a" in cache
        assert "/b" not in cache
        assert len(cache) == 2


class TestNavigate:
    async def test_push_and_replace(self) -> None:
        nav = NavigationRouter(_dashboard(_Loads()))
        first = await nav.navigate("/dash/a")
        assert first.committed
        assert first.html == "<L1><T1>a:tab1"
        await nav.navigate("/dash/b", mode="replace")
        assert len(nav.history) == 1
        assert nav.current is not None
        assert nav.current.url == "/dash/b"

    async def test_invalid_mode(self) -> None:
        nav = NavigationRouter(_dashboard(_Loads()))
        with pytest.raises(ValueError, match="mode"):
            await nav.navigate("/dash/a", mode="reload")  # type: ignore[arg-type]

    async def test_query_change_reloads_search_params_loader(self) -> None:
        calls: Counter[str] = Counter()

        def load_shell() -> str:
            calls["shell"] += 1
            return "shell"

        def load_items(search_params: Any) -> str:
            calls["items"] += 1
            return search_params["page"][0]

        tree = build_route_tree(
            {
                "shop": SegmentFiles(layout=lambda children: children, load=load_shell),
                "shop/items": SegmentFiles(
                    page=lambda data: f"page={data}", load=load_items
                ),
            }
        )
        nav = NavigationRouter(tree)
        assert (await nav.navigate("/shop/items?page=1")).html == "page=1"
        result = await nav.navigate("/shop/items?page=2")
        assert result.html == "page=2"
        assert calls == {"shell": 1, "items": 2}

    async def test_layout_persists_template_recreated(self) -> None:
        recorder = _Recorder()
        nav = NavigationRouter(_dashboard(_Loads()), renderer=recorder)
        await nav.navigate("/dash/a")
        assert sorted(recorder.events) == [
            ("mount", "layout", "dash"),
            ("mount", "template", "dash"),
        ]
        recorder.events.clear()

        result = await nav.navigate("/dash/b")
        assert result.html.startswith("<L2><T1>")
        assert recorder.events == [
            ("unmount", "template", "dash"),
            ("mount", "template", "dash"),
        ]
        assert {(i.slot.value, i.node.name) for i in nav.mounted} == {
            ("layout", "dash"),
            ("template", "dash"),
        }

    async def test_shared_prefix_data_reused(self) -> None:
        loads = _Loads()
        nav = NavigationRouter(_dashboard(loads))
        await nav.navigate("/dash/a")
        await nav.navigate("/dash/b")
        assert loads.calls == {"dash": 1, "tab": 2}

    async def test_param_change_reloads(self) -> None:
        loads = _Loads()
        tree = build_route_tree(
            {
                "[org]": SegmentFiles(layout=_counting("O"), load=loads.loader("org")),
                "[org]/home": SegmentFiles(page=_text("home")),
            }
        )
        nav = NavigationRouter(tree)
        await nav.navigate("/acme/home")
        await nav.navigate("/globex/home")
        assert loads.calls["org"] == 2

    async def test_not_found_is_committed(self) -> None:
        nav = NavigationRouter(_dashboard(_Loads()))
        result = await nav.navigate("/nope")
        assert result.committed
        assert result.status == 404
        assert result.html == "missing"

    async def test_handler_route_needs_document_request(self) -> None:
        nav = NavigationRouter(_dashboard(_Loads()))
        result = await nav.navigate("/api")
        assert result.document
        assert not result.committed
        assert nav.current is None

    async def test_failure_unmounts_everything(self) -> None:
        def broken() -> str:
            raise RuntimeError("x")

        tree = build_route_tree(
            {
                "a": SegmentFiles(layout=_counting("A"), page=_text("a")),
                "b": SegmentFiles(page=broken),
            }
        )
        nav = NavigationRouter(tree)
        await nav.navigate("/a")
        result = await nav.navigate("/b")
        assert result.status == 500
        assert nav.mounted == ()


class TestRedirects:
    async def test_redirect_followed(self) -> None:
        tree = build_route_tree(
            {
                "old": SegmentFiles(page=_text("old"), load=lambda: redirect("/new")),
                "new": SegmentFiles(page=_text("new")),
            }
        )
        nav = NavigationRouter(tree)
        result = await nav.navigate("/old")
        assert result.url == "/new"
        assert result.redirects == ("/old",)
        assert result.html == "new"
        assert [e.url for e in nav.history] == ["/new"]

    async def test_too_many_redirects(self) -> None:
        tree = build_route_tree(
            {"loop": SegmentFiles(page=_text("x"), load=lambda: redirect("/loop"))}
        )
        nav = NavigationRouter(tree, config=RouterConfig(max_redirects=2))
        with pytest.raises(RenderError, match="Too many redirects"):
            await nav.navigate("/loop")
        assert nav.current is None


class TestSupersession:
    async def test_newer_navigation_cancels_older(self) -> None:
        started = anyio.Event()
        events: list[str] = []

        async def slow_load() -> str:
            started.set()
            try:
                await anyio.sleep_forever()
            finally:
                events.append("slow cancelled")
            return "never"

        recorder = _Recorder()
        tree = build_route_tree(
            {
                "slow": SegmentFiles(layout=_counting("S"), page=_text("slow"), load=slow_load),
                "fast": SegmentFiles(page=_text("fast")),
            }
        )
        nav = NavigationRouter(tree, renderer=recorder)
        results: dict[str, Any] = {}

        async def go_slow() -> None:
            results["slow"] = await nav.navigate("/slow")

        with anyio.fail_after(2):
            async with anyio.create_task_group() as tg:
                tg.start_soon(go_slow)
                await started.wait()
                results["fast"] = await nav.navigate("/fast")

        assert results["slow"].superseded
        assert not results["slow"].committed
        assert results["fast"].committed
        assert events == ["slow cancelled"]
        assert [e.url for e in nav.history] == ["/fast"]
        assert recorder.events == []


class TestRefresh:
    async def test_refresh_reloads_and_keeps_instances(self) -> None:
        loads = _Loads()
        recorder = _Recorder()
        nav = NavigationRouter(_dashboard(loads), renderer=recorder)
        await nav.navigate("/dash/a")
        sequence = nav.sequence
        recorder.events.clear()

        result = await nav.refresh()
        assert loads.calls == {"dash": 2, "tab": 2}
        assert result.html == "<L2><T2>a:tab2"
        assert recorder.events == []
        assert nav.sequence == sequence
        assert len(nav.history) == 1

    async def test_refresh_clears_prefetch_cache(self) -> None:
        nav = NavigationRouter(_dashboard(_Loads()))
        await nav.navigate("/dash/a")
        await nav.prefetch("/dash/b")
        assert "/dash/b" in nav.prefetch_cache
        await nav.refresh()
        assert len(nav.prefetch_cache) == 0

    async def test_refresh_without_history(self) -> None:
        with pytest.raises(RuntimeError, match="Nothing to refresh"):
            await NavigationRouter(_dashboard(_Loads())).refresh()


class TestTraversal:
    async def test_fresh_snapshot_reused_stale_reloaded(self) -> None:
        loads = _Loads()
        clock = _Clock()
        nav = NavigationRouter(
            _dashboard(loads), config=RouterConfig(snapshot_ttl=10.0), clock=clock
        )
        await nav.navigate("/dash/a")
        clock.now = 1.0
        await nav.navigate("/dash/b")
        assert loads.calls == {"dash": 1, "tab": 2}

        clock.now = 2.0
        back = await nav.back()
        assert back.html.endswith("a:tab1")
        assert loads.calls == {"dash": 1, "tab": 2}
        assert nav.history.index == 0

        clock.now = 100.0
        forward = await nav.forward()
        assert loads.calls == {"dash": 2, "tab": 3}
        assert forward.html.endswith("b:tab3")
        assert nav.history.index == 1

    async def test_scroll_restored(self) -> None:
        nav = NavigationRouter(_dashboard(_Loads()))
        await nav.navigate("/dash/a")
        nav.record_scroll(120.0)
        await nav.navigate("/dash/b")
        back = await nav.back()
        assert back.entry is not None
        assert back.entry.scroll_position == 120.0

    async def test_back_without_history(self) -> None:
        with pytest.raises(IndexError):
            await NavigationRouter(_dashboard(_Loads())).back()

    async def test_back_twice_before_first_settles(self) -> None:
        started = anyio.Event()
        armed = False

        async def load(n: str) -> str:
            if armed and n == "2":
                started.set()
                await anyio.sleep_forever()
            return n

        clock = _Clock()
        nav = NavigationRouter(
            build_route_tree({"p/[n]": SegmentFiles(page=lambda data: data, load=load)}),
            config=RouterConfig(snapshot_ttl=10.0),
            clock=clock,
        )
        for url in ("/p/1", "/p/2", "/p/3"):
            await nav.navigate(url)
        clock.now = 100.0
        armed = True

        results: list[Any] = []

        async def first_back() -> None:
            results.append(await nav.back())

        with anyio.fail_after(2):
            async with anyio.create_task_group() as tg:
                tg.start_soon(first_back)
                await started.wait()
                second = await nav.back()

        assert results[0].superseded
        assert second.url == "/p/1"
        assert second.html == "1"
        assert nav.history.index == 0
        assert nav.current is not None
        assert nav.current.url == "/p/1"


class TestPrefetch:
    async def test_prefetched_data_used_by_navigation(self) -> None:
        loads = _Loads()
        recorder = _Recorder()
        nav = NavigationRouter(_dashboard(loads), renderer=recorder)
        entry = await nav.prefetch("/dash/b")
        assert entry is not None
        assert loads.calls == {"dash": 1, "tab": 1}
        assert recorder.events == []

        result = await nav.navigate("/dash/b")
        assert loads.calls == {"dash": 1, "tab": 1}
        assert result.html == "<L1><T1>b:tab1"

    async def test_expired_prefetch_not_used(self) -> None:
        loads = _Loads()
        clock = _Clock()
        nav = NavigationRouter(
            _dashboard(loads), config=RouterConfig(prefetch_ttl=5.0), clock=clock
        )
        await nav.prefetch("/dash/b")
        clock.now = 6.0
        await nav.navigate("/dash/b")
        assert loads.calls["tab"] == 2

    async def test_unprefetchable_urls(self) -> None:
        nav = NavigationRouter(_dashboard(_Loads()))
        assert await nav.prefetch("/nope") is None
        assert await nav.prefetch("/api") is None
        assert len(nav.prefetch_cache) == 0

    async def test_concurrency_is_bounded(self) -> None:
        gate = anyio.Event()
        active = 0
        peak = 0

        async def load(item: str) -> str:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                await gate.wait()
            finally:
                active -= 1
            return item

        tree = build_route_tree({"items/[item]": SegmentFiles(page=_text("x"), load=load)})
        nav = NavigationRouter(tree, config=RouterConfig(prefetch_concurrency=2))

        with anyio.fail_after(2):
            async with anyio.create_task_group() as tg:
                for n in range(4):
                    tg.start_soon(nav.prefetch, f"/items/{n}")
                while active < 2:
                    await anyio.sleep(0.01)
                await anyio.sleep(0.05)
                assert peak == 2
                gate.set()

        assert len(nav.prefetch_cache) == 4

    async def test_link_visible_prefetches_in_background(self) -> None:
        async with NavigationRouter(_dashboard(_Loads())) as nav:
            nav.link_visible("/dash/b")
            nav.link_visible("/dash/b")
            with anyio.fail_after(2):
                while "/dash/b" not in nav.prefetch_cache:
                    await anyio.sleep(0.01)

    async def test_link_visible_requires_context_manager(self) -> None:
        nav = NavigationRouter(_dashboard(_Loads()))
        with pytest.raises(RuntimeError, match="async context manager"):
            nav.link_visible("/dash/b")
