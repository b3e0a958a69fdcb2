"""Template rendering, placeholder substitution and the render fallback."""
import pytest
from jinja2 import DictLoader, TemplateNotFound

from app.core.errors import EmailTemplateNotFoundError, TemplatePreviewError
from app.services.template_preview import preview_template
from app.services.templates import (
    TemplateRenderer,
    fallback_content,
    html_to_text,
    substitute_placeholders,
)


@pytest.fixture
def renderer():
    return TemplateRenderer()


class TestSubstitutePlaceholders:
    def test_replaces_known_keys(self):
        assert substitute_placeholders("Hi {{name}}, {{ count }} new", {"name": "Ada", "count": 3}) == "Hi Ada, 3 new"

    def test_missing_and_none_become_empty(self):
        assert substitute_placeholders("[{{a}}][{{b}}]", {"b": None}) == "[][]"

    def test_leaves_other_text_alone(self):
        assert substitute_placeholders("{ not } {{ 1bad }}", {}) == "{ not } {{ 1bad }}"
        assert substitute_placeholders(None, {}) == ""


class TestHtmlToText:
    def test_strips_tags_and_keeps_paragraphs(self):
        text = html_to_text("<h2>Title</h2><p>First &amp; second</p><p>Third<br>line</p>")
        assert text.splitlines() == ["Title", "First & second", "Third", "line"]

    def test_drops_style_blocks(self):
        assert html_to_text("<style>p { color: red; }</style><p>Body</p>") == "Body"


class TestRenderer:
    def test_notification_template(self, renderer):
        rendered = renderer.render(
            "notification",
            {
                "subject": "New job match",
                "title": "New job match",
                "message": "Acme is hiring.",
                "url": "http://portal.test/jobs/42",
                "preferences_url": "http://portal.test/notifications/preferences",
            },
        )
        assert "Acme is hiring." in rendered.html
        assert 'href="http://portal.test/jobs/42"' in rendered.html
        assert "Manage notification preferences" in rendered.html
        assert "Acme is hiring." in rendered.text
        assert "<p>" not in rendered.text

    def test_context_values_are_escaped(self, renderer):
        rendered = renderer.render("notification", {"title": "<script>x</script>", "message": "a & b"})
        assert "<script>" not in rendered.html
        assert "&lt;script&gt;" in rendered.html
        assert "a &amp; b" in rendered.html

    def test_job_alert_template(self, renderer):
        rendered = renderer.render(
            "job_alert",
            {
                "jobs": [{"title": "Backend Engineer", "company": "Acme", "location": "Remote", "url": None}],
                "job_count": 7,
                "has_more_jobs": True,
                "all_jobs_url": "http://portal.test/jobs",
            },
        )
        assert "7 new job matches for you" in rendered.html
        assert "Backend Engineer" in rendered.text
        assert "See all 7 matches" in rendered.html

    def test_connection_request_template(self, renderer):
        rendered = renderer.render("connection_request", {"from_name": "Ada Lovelace", "headline": "Analyst"})
        assert "Ada Lovelace wants to connect" in rendered.text
        assert "Analyst" in rendered.text

    def test_digest_templates(self, renderer):
        context = {
            "window_start_str": "Oct 16, 2026",
            "window_end_str": "Oct 17, 2026",
            "new_jobs": 2,
            "applications": 0,
            "connections": 1,
            "endorsements": 0,
            "profile_views": 0,
            "total": 3,
            "highlights": [{"title": "Backend Engineer at Acme"}],
        }
        daily = renderer.render("digest_daily", context)
        weekly = renderer.render("digest_weekly", context)
        assert "Your daily digest for Oct 16, 2026" in daily.text
        assert "Backend Engineer at Acme" in daily.text
        assert "Oct 16, 2026 to Oct 17, 2026" in weekly.text

    def test_empty_digest_has_a_body(self, renderer):
        rendered = renderer.render("digest_daily", {"total": 0, "highlights": []})
        assert "No new activity" in rendered.text

    def test_compiled_once_per_name(self, renderer):
        renderer.render("notification", {"title": "a", "message": "b"})
        renderer.render("notification", {"title": "c", "message": "d"})
        renderer.render("connection_request", {"from_name": "Ada"})
        assert renderer.cached_template_names() == ["connection_request", "notification"]

    def test_unknown_template_raises(self, renderer):
        with pytest.raises(TemplateNotFound):
            renderer.render("does_not_exist", {})

    def test_custom_loader(self):
        renderer = TemplateRenderer(loader=DictLoader({"hello.html": "<p>Hello {{ name }}</p>"}))
        rendered = renderer.render("hello", {"name": "<Ada>"})
        assert rendered.html == "<p>Hello &lt;Ada&gt;</p>"
        assert rendered.text == "Hello <Ada>"

    def test_render_subject_collapses_whitespace(self, renderer):
        assert renderer.render_subject("  {{total}}   updates\n", {"total": 4}) == "4 updates"


class TestFallback:
    def test_never_empty(self):
        rendered = fallback_content("", None)
        assert rendered.html.strip()
        assert rendered.text.startswith("Notification from JobPortal")

    def test_uses_message_and_url(self):
        rendered = fallback_content("Hello <you>", {"message": "Body", "url": "http://portal.test/x"})
        assert "<h1>Hello &lt;you&gt;</h1>" in rendered.html
        assert 'href="http://portal.test/x"' in rendered.html
        assert rendered.text == "Hello <you>\n\nBody\n\nhttp://portal.test/x"


class TestPreview:
    def test_lists_only_renderable_templates(self, renderer):
        assert renderer.email_template_names() == [
            "connection_request",
            "digest_daily",
            "digest_weekly",
            "job_alert",
            "notification",
        ]

    @pytest.mark.parametrize("name", ["connection_request", "digest_daily", "digest_weekly", "job_alert", "notification"])
    def test_every_template_has_sample_data(self, renderer, name):
        preview = preview_template(renderer, name)
        assert preview["sample_data"] is True
        assert preview["subject"]
        assert preview["html"].strip()
        assert "<" not in preview["text"]

    def test_digest_subject_uses_sample_total(self, renderer):
        preview = preview_template(renderer, "digest_daily")
        assert preview["subject"] == "Your daily JobPortal digest: 10 updates"
        assert "Highlights" in preview["html"]

    def test_supplied_payload_is_validated_and_rendered(self, renderer):
        preview = preview_template(renderer, "connection_request", {"kind": "connection", "from_name": "Ada"})
        assert preview["sample_data"] is False
        assert preview["subject"] == "Ada wants to connect"
        assert "Ada wants to connect" in preview["text"]

    def test_free_form_data_and_subject(self, renderer):
        preview = preview_template(renderer, "notification", {"title": "Hi", "message": "Body"}, subject="About {{title}}")
        assert preview["subject"] == "About Hi"
        assert "Body" in preview["text"]

    def test_portal_links_from_frontend_url(self, renderer):
        preview = preview_template(renderer, "notification", frontend_url="http://portal.test")
        assert 'href="http://portal.test/notifications/preferences"' in preview["html"]

    def test_invalid_payload_is_a_preview_error(self, renderer):
        with pytest.raises(TemplatePreviewError):
            preview_template(renderer, "connection_request", {"kind": "connection"})

    @pytest.mark.parametrize("name", ["does_not_exist", "base", "_digest_body", "../config"])
    def test_layouts_partials_and_unknown_names_are_not_found(self, renderer, name):
        with pytest.raises(EmailTemplateNotFoundError):
            preview_template(renderer, name)

    def test_template_exception_is_a_preview_error(self):
        renderer = TemplateRenderer(loader=DictLoader({"broken.html": "{% for x in count %}{{ x }}{% endfor %}"}))
        with pytest.raises(TemplatePreviewError, match="TypeError"):
            preview_template(renderer, "broken", {"count": 3})
