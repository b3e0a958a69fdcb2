"""
Email template rendering (Jinja2).

Templates live in app/templates/email/<name>.html. Compiled templates are cached by name for the
life of the renderer. Plain text is derived from the rendered HTML. A render failure is the caller's
to recover from: the queue processor falls back to fallback_content() and still sends.
"""
import html as html_lib
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jinja2 import BaseLoader, Environment, FileSystemLoader, Template, select_autoescape

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"
TEMPLATE_SUFFIX = ".html"
# Layouts and partials (leading underscore) are not rendered on their own
LAYOUT_TEMPLATES = frozenset({"base"})

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_TAG = re.compile(r"<[^>]*>")
_BLOCK_END = re.compile(r"</(p|div|h[1-6]|li|tr|table|ul|ol)>|<br\s*/?>", re.IGNORECASE)
_STYLE_OR_SCRIPT = re.compile(r"<(style|script)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class RenderedEmail:
    html: str
    text: str


def substitute_placeholders(text: str, data: dict[str, Any]) -> str:
    """Replace {{key}} with str(data[key]); missing or None values become ''."""

    def _sub(match: re.Match) -> str:
        value = data.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, text or "")


def html_to_text(markup: str) -> str:
    """Strip tags, keep paragraph breaks, collapse runs of whitespace."""
    out = _STYLE_OR_SCRIPT.sub("", markup or "")
    out = _BLOCK_END.sub("\n", out)
    out = html_lib.unescape(_TAG.sub("", out))
    lines = [" ".join(line.split()) for line in out.splitlines()]
    return "\n".join(line for line in lines if line).strip()


def add_portal_links(context: dict[str, Any], frontend_url: str | None) -> dict[str, Any]:
    """Default dashboard_url and preferences_url from the frontend base URL, keeping any given values."""
    if frontend_url:
        context.setdefault("dashboard_url", f"{frontend_url}/dashboard")
        context.setdefault("preferences_url", f"{frontend_url}/notifications/preferences")
    return context


def fallback_content(subject: str, context: dict[str, Any] | None = None) -> RenderedEmail:
    """Minimal body used when a template cannot be rendered. Never empty."""
    subject = (subject or "").strip() or "Notification from JobPortal"
    ctx = context or {}
    message = str(ctx.get("message") or ctx.get("title") or "You have a new update waiting in your JobPortal account.")
    url = ctx.get("url") or ctx.get("dashboard_url")
    body_html = f"<h1>{html_lib.escape(subject)}</h1><p>{html_lib.escape(message)}</p>"
    body_text = f"{subject}\n\n{message}"
    if url:
        body_html += f'<p><a href="{html_lib.escape(str(url))}">Open JobPortal</a></p>'
        body_text += f"\n\n{url}"
    return RenderedEmail(html=body_html, text=body_text)


class TemplateRenderer:
    """Compile-once, render-many wrapper around a Jinja2 environment."""

    def __init__(self, template_dir: Path | str | None = None, loader: BaseLoader | None = None):
        if loader is None:
            loader = FileSystemLoader(str(template_dir or DEFAULT_TEMPLATE_DIR))
        self.env = Environment(
            loader=loader,
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._compiled: dict[str, Template] = {}
        self._lock = threading.Lock()

    def _get_template(self, template_name: str) -> Template:
        with self._lock:
            template = self._compiled.get(template_name)
            if template is None:
                template = self.env.get_template(f"{template_name}{TEMPLATE_SUFFIX}")
                self._compiled[template_name] = template
                logger.debug("Compiled email template %s", template_name)
            return template

    def render(self, template_name: str, context: dict[str, Any]) -> RenderedEmail:
        """Render template_name with context. Raises jinja2 errors (TemplateNotFound, TemplateError)."""
        body = self._get_template(template_name).render(**context)
        return RenderedEmail(html=body, text=html_to_text(body))

    def render_subject(self, subject: str, context: dict[str, Any]) -> str:
        return " ".join(substitute_placeholders(subject, context).split())

    def email_template_names(self) -> list[str]:
        """Renderable email templates (no layouts or partials), without the .html suffix."""
        names = []
        for path in self.env.list_templates(extensions=[TEMPLATE_SUFFIX.lstrip(".")]):
            name = path[: -len(TEMPLATE_SUFFIX)]
            if "/" in name or name.startswith("_") or name in LAYOUT_TEMPLATES:
                continue
            names.append(name)
        return sorted(names)

    def cached_template_names(self) -> list[str]:
        with self._lock:
            return sorted(self._compiled)
