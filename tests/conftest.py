"""Shared pytest fixtures and configuration."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pytest import fixture

from stencil import EngineSettings, RenderResult, TemplateSet


@dataclass
class Person:
    """Record used as render data throughout the tests."""

    Name: str
    Age: int

    def Greeting(self, salutation: str) -> str:
        return f"{salutation}, {self.Name}"

    def IsAdult(self) -> bool:
        return self.Age >= 18


COMPOSITION_TEMPLATES = {
    "header.tmpl": "<H>{{.Title}}</H>",
    "body.tmpl": "<B>{{.Text}}</B>",
    "footer.tmpl": "<F>{{range .Links}}{{.}}{{end}}</F>",
    "composition.tmpl": (
        '{{template "header.tmpl" .Header}}'
        '{{template "body.tmpl" .Body}}'
        '{{template "footer.tmpl" .Footer}}'
    ),
}

COMPOSITION_DATA = {
    "Header": {"Title": "Test Title"},
    "Body": {"Text": "Text to be inject in the template file..."},
    "Footer": {"Links": ["A", "B", "C"]},
}


@fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the depth override from leaking in from the developer's shell."""
    monkeypatch.delenv("TEMPLATE_MAX_DEPTH", raising=False)


@fixture
def settings() -> EngineSettings:
    """Provide default engine settings."""
    return EngineSettings()


@fixture
def make_set(settings) -> Callable[..., TemplateSet]:
    """Provide a factory building a parsed template set."""

    def _make(
        source: Optional[str] = None,
        name: str = "root",
        helpers: Optional[Dict[str, Callable[..., Any]]] = None,
        **overrides: Any,
    ) -> TemplateSet:
        engine_settings = settings.model_copy(update=overrides) if overrides else settings
        template_set = TemplateSet(name, settings=engine_settings, helpers=helpers)
        if source is not None:
            template_set.parse(source)
        return template_set

    return _make


@fixture
def render(make_set) -> Callable[..., RenderResult]:
    """Provide a one-shot parse-and-render helper."""

    def _render(
        source: str,
        data: Any = None,
        helpers: Optional[Dict[str, Callable[..., Any]]] = None,
        **overrides: Any,
    ) -> RenderResult:
        template_set = make_set(source, helpers=helpers, **overrides)
        return template_set.render("root", data)

    return _render


@fixture
def people() -> List[Person]:
    """Provide a small list of records."""
    return [Person("luna", 2), Person("nina", 14)]


@fixture
def composition_dir(tmp_path) -> Path:
    """Provide a directory holding the header/body/footer composition."""
    root = tmp_path / "templates"
    root.mkdir()
    for name, source in COMPOSITION_TEMPLATES.items():
        (root / name).write_text(source, encoding="utf-8")
    return root
