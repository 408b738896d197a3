"""Tests for perch.cli — routes, resolve and render subcommands."""

from pathlib import Path

import pytest

from perch.app import App
from perch.cli import main
from perch.cli._resolve import resolve_app


@pytest.fixture
def pages(tmp_path: Path) -> Path:
    (tmp_path / "blog" / "[slug]").mkdir(parents=True)
    (tmp_path / "layout.py").write_text("def render(children):\n    return f'<b>{children}</b>'\n")
    (tmp_path / "not_found.py").write_text("def render():\n    return 'lost'\n")
    (tmp_path / "page.py").write_text(
        "metadata = {'title': 'Home'}\n\ndef render():\n    return 'home'\n"
    )
    (tmp_path / "blog" / "[slug]" / "page.py").write_text(
        "def render(slug):\n    return slug\n"
    )
    return tmp_path


class TestCLIHelp:
    @pytest.mark.parametrize("command", [[], ["routes"], ["resolve"], ["render"]])
    def test_help_exits_zero(self, command: list[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([*command, "--help"])
        assert exc_info.value.code == 0

    def test_missing_args(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["resolve"])
        assert exc_info.value.code == 2

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 0
        assert "usage: perch" in capsys.readouterr().out


class TestRoutesCommand:
    def test_table(self, pages: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["routes", str(pages)])
        out = capsys.readouterr().out
        assert out.splitlines()[0].split() == ["PATTERN", "KIND", "SLOTS", "FOLDER"]
        assert "/blog/[slug]" in out
        assert "layout, notFound" in out

    def test_bad_target(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["routes", "no_such_module_for_perch:app"])
        assert exc_info.value.code == 1
        assert "Error:" in capsys.readouterr().err


class TestResolveCommand:
    def test_chain(self, pages: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["resolve", str(pages), "/blog/intro"])
        out = capsys.readouterr().out
        assert "PATH    /blog/intro" in out
        assert "slug='intro'" in out

    def test_not_found(self, pages: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["resolve", str(pages), "/blog"])
        assert exc_info.value.code == 1
        out = capsys.readouterr().out
        assert "No route matches '/blog'" in out
        assert "Not-found UI: /" in out


class TestRenderCommand:
    def test_render(self, pages: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["render", str(pages), "/"])
        captured = capsys.readouterr()
        assert captured.out == "<b>home</b>"
        assert "status: 200" in captured.err
        assert "title: Home" in captured.err

    def test_render_not_found(self, pages: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["render", str(pages), "/nope"])
        captured = capsys.readouterr()
        assert captured.out == "<b>lost</b>"
        assert "status: 404" in captured.err

    def test_stream(self, pages: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["render", str(pages), "/blog/intro", "--stream"])
        assert capsys.readouterr().out == "<b>intro</b>\n"


class TestResolveApp:
    def test_directory(self, pages: Path) -> None:
        assert isinstance(resolve_app(str(pages)), App)

    def test_import_string_and_factory(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / "perch_cli_target.py").write_text(
            "from perch import App, SegmentFiles\n"
            "app = App({'': SegmentFiles(page=lambda: 'x')})\n"
            "def create_app():\n"
            "    return app\n"
            "not_an_app = 42\n"
        )
        monkeypatch.syspath_prepend(str(tmp_path))
        app = resolve_app("perch_cli_target")
        assert isinstance(app, App)
        assert resolve_app("perch_cli_target:create_app") is app
        with pytest.raises(TypeError, match="not a perch.App"):
            resolve_app("perch_cli_target:not_an_app")
