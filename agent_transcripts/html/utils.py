"""HTML-specific rendering utilities.

This module contains the HTML building blocks used by HtmlRenderer:
- HTML escaping and markdown rendering (mistune + Pygments)
- JSON highlighting for tool inputs
- Collapsible content rendering
- Template environment management
"""

import functools
import html
import json
from pathlib import Path
from typing import Any, Optional

import mistune
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pygments import highlight  # type: ignore[reportUnknownVariableType]
from pygments.formatters import HtmlFormatter  # type: ignore[reportUnknownVariableType]
from pygments.lexers import JsonLexer, TextLexer, get_lexer_by_name  # type: ignore[reportUnknownVariableType]
from pygments.util import ClassNotFound  # type: ignore[reportUnknownVariableType]

from ..renderer_timings import timing_stat


# -- HTML Utilities -----------------------------------------------------------


def escape_html(text: str) -> str:
    """Escape HTML special characters in text.

    Also normalizes line endings (CRLF -> LF) to prevent double spacing in <pre> blocks.
    """
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return html.escape(normalized)


def _create_pygments_plugin() -> Any:
    """Create a mistune plugin that uses Pygments for code block syntax highlighting."""

    def plugin_pygments(md: Any) -> None:
        """Plugin to add Pygments syntax highlighting to code blocks."""
        original_render = md.renderer.block_code

        def block_code(code: str, info: Optional[str] = None) -> str:
            """Render code block with Pygments syntax highlighting if language is specified."""
            if not info:
                return original_render(code, info)
            lang = info.split()[0]
            try:
                lexer = get_lexer_by_name(lang, stripall=False)  # type: ignore[reportUnknownVariableType]
            except ClassNotFound:
                lexer = TextLexer()  # type: ignore[reportUnknownVariableType]
            formatter = HtmlFormatter(  # type: ignore[reportUnknownVariableType]
                linenos=False,
                cssclass="highlight",
                wrapcode=True,
            )
            with timing_stat("_pygments_timings"):
                return str(highlight(code, lexer, formatter))  # type: ignore[reportUnknownArgumentType]

        md.renderer.block_code = block_code

    return plugin_pygments


@functools.lru_cache(maxsize=1)
def _get_markdown_renderer() -> mistune.Markdown:
    """Get cached Mistune markdown renderer with Pygments syntax highlighting.

    Raw HTML in transcript text is escaped; session logs are untrusted input.
    """
    return mistune.create_markdown(
        plugins=[
            "strikethrough",
            "table",
            "url",
            "task_lists",
            _create_pygments_plugin(),
        ],
        escape=True,
        hard_wrap=True,
    )


def render_markdown(text: str) -> str:
    """Convert markdown text to HTML using mistune with Pygments syntax highlighting."""
    with timing_stat("_markdown_timings"):
        renderer = _get_markdown_renderer()
        return str(renderer(text))


def highlight_json(data: Any) -> str:
    """Pretty-print a JSON-serializable value and highlight it with Pygments."""
    code = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    formatter = HtmlFormatter(cssclass="highlight", wrapcode=True)  # type: ignore[reportUnknownVariableType]
    with timing_stat("_pygments_timings"):
        return str(highlight(code, JsonLexer(), formatter))  # type: ignore[reportUnknownArgumentType]


def format_raw_json(raw_json: str) -> str:
    """Indent a logged source record and escape it for a <pre> block."""
    try:
        text = json.dumps(json.loads(raw_json), indent=2, ensure_ascii=False)
    except json.JSONDecodeError:
        text = raw_json
    return escape_html(text)


@functools.lru_cache(maxsize=1)
def get_pygments_css() -> str:
    """CSS rules for Pygments-highlighted blocks (class 'highlight')."""
    formatter = HtmlFormatter(style="default")  # type: ignore[reportUnknownVariableType]
    return str(formatter.get_style_defs(".highlight"))  # type: ignore[reportUnknownArgumentType]


# -- Collapsible Content Rendering --------------------------------------------


def render_collapsible(
    summary_html: str, content_html: str, css_class: str = "", open: bool = False
) -> str:
    """Wrap already-rendered HTML in a details element.

    Args:
        summary_html: HTML shown in the always-visible summary line
        content_html: HTML shown when expanded
        css_class: Optional CSS class for the details element
        open: Whether the block starts expanded
    """
    class_attr = f" class='{css_class}'" if css_class else ""
    open_attr = " open" if open else ""
    return (
        f"<details{class_attr}{open_attr}>"
        f"<summary>{summary_html}</summary>"
        f"{content_html}</details>"
    )


# -- Template Environment -----------------------------------------------------


@functools.lru_cache(maxsize=1)
def get_template_environment() -> Environment:
    """Get cached Jinja2 template environment for HTML rendering.

    Creates a Jinja2 environment configured with:
    - Template loading from the templates directory
    - HTML auto-escaping
    - The Pygments stylesheet as a template global

    Returns:
        Configured Jinja2 Environment (cached after first call)
    """
    templates_dir = Path(__file__).parent / "templates"
    env = Environment(
        loader=FileSystemLoader(templates_dir),
        autoescape=select_autoescape(["html", "xml"]),
    )
    env.globals["pygments_css"] = get_pygments_css  # type: ignore[index]
    return env
