from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
    enable_async=False,
)


def render_isolation_document(**context: Any) -> str:
    """Full markup for the sandboxed frame: shim, runtime libraries and payload."""
    return _env.get_template("isolation.html").render(**context)


def render_host_panel(view: Any, standalone: bool = True) -> str:
    """
    Host side of the preview: loading state, host error panel or the
    sandboxed iframe. With standalone=False only the panel fragment is
    returned so it can be embedded into another page.
    """
    return _env.get_template("host_panel.html").render(view=view, standalone=standalone)


def render_index(**context: Any) -> str:
    return _env.get_template("index.html").render(**context)
