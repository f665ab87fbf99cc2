import json

import pytest
from click.testing import CliRunner
from conftest import COMPOSITION_DATA

from stencil.cli.main import (
    EXIT_IO_ERROR,
    EXIT_PARSE_ERROR,
    EXIT_RENDER_ERROR,
    HelperLoadError,
    load_helpers,
    stencil,
)

HELPER_MODULE = '''\
def shout(s: str) -> str:
    """Upper-case a string."""
    return s.upper()


def explode(s):
    raise RuntimeError("boom")


HELPERS = {"shout": shout, "explode": explode}
NOT_A_HELPER = 42
'''


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def write_file(tmp_path):
    def _write(name, content):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def data_file(write_file):
    return write_file("data.json", json.dumps(COMPOSITION_DATA))


@pytest.fixture
def helper_module(tmp_path, monkeypatch):
    """Provide an importable module of helpers, returning its name."""
    name = f"helpers_{tmp_path.name}"
    (tmp_path / f"{name}.py").write_text(HELPER_MODULE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    return name


class TestRenderCommand:
    """Test the render command."""

    def test_render_named_template(self, runner, composition_dir, data_file):
        """Test rendering a template from a directory."""
        result = runner.invoke(
            stencil, ["render", str(composition_dir), str(data_file), "-n", "composition.tmpl"]
        )
        assert result.exit_code == 0
        assert result.output == (
            "<H>Test Title</H><B>Text to be inject in the template file...</B><F>ABC</F>"
        )

    def test_default_template_is_first_file(self, runner, composition_dir, write_file):
        """Test the first file in sorted order is rendered by default."""
        data = write_file("body.json", '{"Text": "hi"}')
        result = runner.invoke(stencil, ["render", str(composition_dir), str(data)])
        assert result.exit_code == 0
        assert result.output == "<B>hi</B>"

    def test_render_single_file_with_text_data(self, runner, write_file):
        """Test a plain text data file becomes a string dot."""
        template = write_file("hello.tmpl", "Hello {{.}}!")
        data = write_file("name.txt", "world")
        result = runner.invoke(stencil, ["render", str(template), str(data)])
        assert result.exit_code == 0
        assert result.output == "Hello world!"

    def test_render_to_output_file(self, runner, write_file, tmp_path):
        """Test writing the output to a file."""
        template = write_file("list.tmpl", "{{range .}}[{{.}}]{{end}}")
        data = write_file("list.yaml", "- a\n- b\n")
        target = tmp_path / "out.txt"
        result = runner.invoke(stencil, ["render", str(template), str(data), "-o", str(target)])
        assert result.exit_code == 0
        assert target.read_text(encoding="utf-8") == "[a][b]"
        assert "Rendered" in result.output

    def test_parse_error_exit_code(self, runner, write_file):
        """Test malformed templates exit with the parse error code."""
        template = write_file("bad.tmpl", "{{if .}}never closed")
        data = write_file("data.json", "{}")
        result = runner.invoke(stencil, ["render", str(template), str(data)])
        assert result.exit_code == EXIT_PARSE_ERROR
        assert "bad.tmpl" in result.output

    def test_render_error_exit_code(self, runner, write_file):
        """Test a failing render exits with the render error code."""
        template = write_file("index.tmpl", "{{index . 5}}")
        data = write_file("data.json", "[1]")
        result = runner.invoke(stencil, ["render", str(template), str(data)])
        assert result.exit_code == EXIT_RENDER_ERROR
        assert "range" in result.output

    def test_missing_key_error_option(self, runner, write_file):
        """Test the missing-key option is applied."""
        template = write_file("key.tmpl", "{{.Nope}}")
        data = write_file("data.json", "{}")
        result = runner.invoke(
            stencil, ["render", str(template), str(data), "--missing-key", "error"]
        )
        assert result.exit_code == EXIT_RENDER_ERROR

    def test_diagnostics_reported(self, runner, write_file):
        """Test soft diagnostics go to stderr and can be silenced."""
        template = write_file("key.tmpl", "{{.Nope}}")
        data = write_file("data.json", "{}")

        result = runner.invoke(stencil, ["render", str(template), str(data)])
        assert result.exit_code == 0
        assert "<no value>" in result.output
        assert "⚠️" in result.output

        quiet = runner.invoke(
            stencil, ["render", str(template), str(data), "--no-diagnostics"]
        )
        assert quiet.output == "<no value>"

    def test_custom_delimiters(self, runner, write_file):
        """Test delimiter options."""
        template = write_file("d.tmpl", "{{.}} <<.>>")
        data = write_file("d.txt", "x")
        result = runner.invoke(
            stencil,
            ["render", str(template), str(data), "--left-delim", "<<", "--right-delim", ">>"],
        )
        assert result.exit_code == 0
        assert result.output == "{{.}} x"

    def test_missing_data_file(self, runner, composition_dir, tmp_path):
        """Test an unreadable data file exits with the I/O error code."""
        result = runner.invoke(
            stencil, ["render", str(composition_dir), str(tmp_path / "absent.json")]
        )
        assert result.exit_code == EXIT_IO_ERROR

    def test_missing_template_root(self, runner, data_file, tmp_path):
        """Test a template path that does not exist."""
        result = runner.invoke(stencil, ["render", str(tmp_path / "nowhere"), str(data_file)])
        assert result.exit_code == EXIT_IO_ERROR

    def test_invalid_depth_environment(self, runner, composition_dir, data_file, monkeypatch):
        """Test a bad environment override exits with the I/O error code."""
        monkeypatch.setenv("TEMPLATE_MAX_DEPTH", "lots")
        result = runner.invoke(stencil, ["render", str(composition_dir), str(data_file)])
        assert result.exit_code == EXIT_IO_ERROR

    def test_depth_limit_option(self, runner, write_file):
        """Test runaway recursion is stopped by --max-depth."""
        template = write_file("r.tmpl", '{{define "r"}}{{template "r"}}{{end}}{{template "r"}}')
        data = write_file("d.txt", "")
        result = runner.invoke(
            stencil, ["render", str(template), str(data), "--max-depth", "10"]
        )
        assert result.exit_code == EXIT_RENDER_ERROR


class TestHelpers:
    """Test --helper loading."""

    def test_render_with_helper_mapping(self, runner, write_file, helper_module):
        """Test registering a mapping of helpers."""
        template = write_file("h.tmpl", "{{shout .}}")
        data = write_file("d.txt", "quiet")
        result = runner.invoke(
            stencil,
            ["render", str(template), str(data), "--helper", f"{helper_module}:HELPERS"],
        )
        assert result.exit_code == 0
        assert result.output == "QUIET"

    def test_helper_exception_exit_code(self, runner, write_file, helper_module):
        """Test a helper raising during render."""
        template = write_file("h.tmpl", "{{explode .}}")
        data = write_file("d.txt", "x")
        result = runner.invoke(
            stencil,
            ["render", str(template), str(data), "--helper", f"{helper_module}:explode"],
        )
        assert result.exit_code == EXIT_RENDER_ERROR
        assert "boom" in result.output

    def test_unknown_helper_module(self, runner, write_file):
        """Test an unimportable helper reference."""
        template = write_file("h.tmpl", "x")
        data = write_file("d.txt", "x")
        result = runner.invoke(
            stencil, ["render", str(template), str(data), "--helper", "no_such_module:f"]
        )
        assert result.exit_code == EXIT_IO_ERROR

    def test_load_helpers(self, helper_module):
        """Test the reference forms accepted by load_helpers."""
        helpers = load_helpers([f"{helper_module}:shout"])
        assert list(helpers) == ["shout"]
        assert set(load_helpers([f"{helper_module}:HELPERS"])) == {"shout", "explode"}

    @pytest.mark.parametrize("suffix", [":", ":missing", ":NOT_A_HELPER"])
    def test_load_helpers_rejects(self, helper_module, suffix):
        """Test malformed or unusable references."""
        with pytest.raises(HelperLoadError):
            load_helpers([f"{helper_module}{suffix}"])


class TestCheckCommand:
    """Test the check command."""

    def test_valid_templates(self, runner, composition_dir):
        """Test a valid directory."""
        result = runner.invoke(stencil, ["check", str(composition_dir)])
        assert result.exit_code == 0
        assert "Templates are valid" in result.output

    def test_invalid_templates(self, runner, composition_dir):
        """Test a directory holding a malformed template."""
        (composition_dir / "broken.tmpl").write_text("{{end}}", encoding="utf-8")
        result = runner.invoke(stencil, ["check", str(composition_dir)])
        assert result.exit_code == EXIT_PARSE_ERROR
        assert "validation failed" in result.output

    def test_json_report(self, runner, composition_dir):
        """Test the JSON report."""
        result = runner.invoke(stencil, ["check", str(composition_dir), "--format", "json"])
        assert result.exit_code == 0
        report = json.loads(result.output)
        assert report["is_valid"] is True
        assert ".Links" in report["variables"]
        assert report["metadata"]["invocations"]["composition.tmpl"] == [
            "header.tmpl",
            "body.tmpl",
            "footer.tmpl",
        ]

    def test_check_with_helper(self, runner, write_file, helper_module):
        """Test helpers make their names callable during validation."""
        template = write_file("h.tmpl", "{{shout .}}")
        plain = runner.invoke(stencil, ["check", str(template)])
        assert plain.exit_code == EXIT_PARSE_ERROR

        result = runner.invoke(
            stencil, ["check", str(template), "--helper", f"{helper_module}:HELPERS"]
        )
        assert result.exit_code == 0


class TestFuncsCommand:
    """Test the funcs command."""

    def test_lists_builtins(self, runner):
        """Test the built-in function table."""
        result = runner.invoke(stencil, ["funcs"])
        assert result.exit_code == 0
        assert "Template Functions" in result.output
        assert "printf" in result.output
        assert "urlquery" in result.output

    def test_lists_helpers(self, runner, helper_module):
        """Test loaded helpers are listed."""
        result = runner.invoke(stencil, ["funcs", "--helper", f"{helper_module}:HELPERS"])
        assert result.exit_code == 0
        assert "shout" in result.output
        assert "helper(s) loaded" in result.output
