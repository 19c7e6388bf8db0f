"""HTML rendering package.

Re-exports the renderer and the utilities it is built from.
"""

from .renderer import HtmlRenderer
from .utils import (
    escape_html,
    format_raw_json,
    get_template_environment,
    highlight_json,
    render_collapsible,
    render_markdown,
)

__all__ = [
    "HtmlRenderer",
    "escape_html",
    "format_raw_json",
    "get_template_environment",
    "highlight_json",
    "render_collapsible",
    "render_markdown",
]
