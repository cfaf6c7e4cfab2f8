from click.testing import CliRunner

import folio.server as server_module
from folio import __version__
from folio.cli import cli


def create_site(root):
    content = root / "content"
    content.mkdir(parents=True)
    (root / "folio.yaml").write_text("title: CLI Site\n", encoding="utf-8")
    (content / "hello.md").write_text("# Hello\n\nBody.", encoding="utf-8")
    return content


def test_cli_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_new_scaffolds_project(tmp_path):
    runner = CliRunner()
    target = tmp_path / "mysite"
    result = runner.invoke(cli, ["new", str(target)])
    assert result.exit_code == 0
    assert "title: mysite" in (target / "folio.yaml").read_text(encoding="utf-8")
    posts = list((target / "content" / "posts").glob("*-hello-world.md"))
    assert len(posts) == 1
    assert (target / ".gitignore").exists()

    # refuses a non-empty directory
    result = runner.invoke(cli, ["new", str(target)])
    assert result.exit_code != 0
    assert "non-empty" in result.output


def test_cli_new_then_build(tmp_path, monkeypatch):
    runner = CliRunner()
    target = tmp_path / "mysite"
    runner.invoke(cli, ["new", str(target)])
    monkeypatch.chdir(target)

    result = runner.invoke(cli, ["build"])
    assert result.exit_code == 0, result.output
    assert "Built 1 entries" in result.output
    assert (target / "build" / "index.html").exists()
    assert (target / "build" / "tag" / "welcome" / "index.html").exists()


def test_cli_build_duplicate_exits_nonzero(tmp_path, monkeypatch):
    content = create_site(tmp_path)
    (content / "hello.txt").write_text("Duplicate", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "Build failed:" in result.output
    assert "Duplicate URL /hello/" in result.output
    assert not (tmp_path / "build").exists()


def test_cli_build_reports_template_errors(tmp_path, monkeypatch):
    create_site(tmp_path)
    (tmp_path / "folio.yaml").write_text("title: CLI\ntheme: mine\n", encoding="utf-8")
    theme = tmp_path / "templates" / "mine"
    theme.mkdir(parents=True)
    (theme / "index.html").write_text("ok", encoding="utf-8")
    (theme / "entry.html").write_text("{{ entry.missing.attr }}", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["build"])
    assert result.exit_code == 1
    assert "File: hello.md" in result.output
    assert "Undefined variable" in result.output


def test_cli_validate(tmp_path, monkeypatch):
    create_site(tmp_path)
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["validate"])
    assert result.exit_code == 0
    assert "No redirect map found" in result.output

    (tmp_path / "redirects.json").write_text('{"/a/": "/b/", "/c": "/d/"}', encoding="utf-8")
    result = runner.invoke(cli, ["validate"])
    assert result.exit_code == 0
    assert "2 redirect rules are valid" in result.output

    (tmp_path / "redirects.json").write_text('{"/a/": "https://x.test/"}', encoding="utf-8")
    result = runner.invoke(cli, ["validate"])
    assert result.exit_code == 1
    assert "Invalid redirects:" in result.output
    assert "allow_external_redirects" in result.output


def test_cli_clean(tmp_path, monkeypatch):
    create_site(tmp_path)
    (tmp_path / "build").mkdir()
    (tmp_path / ".cache").mkdir()
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["clean"])
    assert result.exit_code == 0
    assert not (tmp_path / "build").exists()
    assert not (tmp_path / ".cache").exists()


def test_cli_serve_passes_ports(tmp_path, monkeypatch):
    create_site(tmp_path)
    monkeypatch.chdir(tmp_path)
    called = {}

    class DummyServer:
        def __init__(self, root, http_port=None, ws_port=None):
            called["root"] = root
            called["ports"] = (http_port, ws_port)

        def start(self):
            called["started"] = True

    monkeypatch.setattr(server_module, "DevServer", DummyServer)
    result = CliRunner().invoke(cli, ["serve", "--port", "4000", "--ws-port", "4100"])
    assert result.exit_code == 0, result.output
    assert called == {"root": tmp_path, "ports": (4000, 4100), "started": True}
