"""Tests for email template rendering."""

import pytest

from notifier.domain.models import NotificationKind
from notifier.notifications import TemplateRenderError, TemplateRenderer, html_to_text, insert_footer

FOOTER = '<div class="notification-footer">Unsubscribe</div>'


@pytest.fixture
def renderer():
    return TemplateRenderer(app_url="https://jobs.example.com")


@pytest.fixture
def status_data():
    return {
        "applicant_name": "Ann Smith",
        "job_title": "Maths Teacher",
        "organization": "Central High School",
        "new_status": "shortlisted",
        "old_status": "under_review",
        "note": "Strong candidate",
        "application_url": "https://jobs.example.com/applications/7",
        "recipient_email": "ann+jobs@example.com",
    }


class TestRendering:
    """Tests for TemplateRenderer.render."""

    def test_rendering_is_deterministic(self, renderer, status_data):
        first = renderer.render(NotificationKind.STATUS_UPDATE, status_data)
        second = renderer.render("status_update", dict(status_data))
        assert first == second

    def test_status_update_content(self, renderer, status_data):
        email = renderer.render(NotificationKind.STATUS_UPDATE, status_data)

        assert email.subject == "Application Status Update - Maths Teacher"
        assert "status-shortlisted" in email.html
        assert "Previous status: Under Review" in email.html
        assert "Note from the reviewer:" in email.html
        assert "Strong candidate" in email.text
        assert "Your application status is now: Shortlisted" in email.text
        assert "You have been shortlisted" in email.text

    def test_missing_optional_fields_omit_their_section(self, renderer, status_data):
        for key in ("note", "old_status", "organization", "application_url"):
            status_data.pop(key)
        email = renderer.render(NotificationKind.STATUS_UPDATE, status_data)

        assert "Note from the reviewer" not in email.html
        assert "Previous status" not in email.html
        assert "View Application" not in email.html
        for body in (email.subject, email.html, email.text):
            assert "None" not in body
            assert "undefined" not in body.lower()

    def test_missing_required_field_raises(self, renderer, status_data):
        del status_data["new_status"]
        with pytest.raises(TemplateRenderError, match="new_status"):
            renderer.render(NotificationKind.STATUS_UPDATE, status_data)

    def test_unknown_kind_raises(self, renderer, status_data):
        with pytest.raises(TemplateRenderError, match="Unknown notification kind"):
            renderer.render("password_reset", status_data)

    def test_legacy_status_text_is_labelled(self, renderer, status_data):
        status_data["new_status"] = "Interview Scheduled"
        email = renderer.render(NotificationKind.STATUS_UPDATE, status_data)
        assert "Your application status is now: Shortlisted" in email.text

    def test_html_is_escaped(self, renderer, status_data):
        status_data["note"] = "<script>alert(1)</script>"
        email = renderer.render(NotificationKind.STATUS_UPDATE, status_data)
        assert "<script>alert" not in email.html
        assert "&lt;script&gt;" in email.html

    def test_footer_links_to_preferences_and_unsubscribe(self, renderer, status_data):
        email = renderer.render(NotificationKind.STATUS_UPDATE, status_data)

        assert email.html.index("Manage email preferences") < email.html.index("</body>")
        assert "https://jobs.example.com/profile/notifications" in email.html
        assert "https://jobs.example.com/unsubscribe?email=ann%2Bjobs@example.com" in email.html
        assert "Unsubscribe (https://jobs.example.com/unsubscribe?email=ann%2Bjobs@example.com)" in email.text

    def test_application_received(self, renderer):
        email = renderer.render(
            NotificationKind.APPLICATION_RECEIVED,
            {
                "applicant_name": "Ann Smith",
                "job_title": "Maths Teacher",
                "organization": "Central High School",
                "applied_at": "2025-11-04T09:15:00Z",
                "application_id": 7,
            },
        )

        assert email.subject == "Application Received - Maths Teacher"
        assert "Applied on: Tuesday, 04 November 2025" in email.text
        assert "Reference: #7" in email.text
        assert "Location:" not in email.text

    def test_interview_uses_explicit_text_template(self, renderer):
        email = renderer.render(
            NotificationKind.INTERVIEW_SCHEDULED,
            {
                "applicant_name": "Ann Smith",
                "job_title": "Maths Teacher",
                "interview_date": "2025-11-04T14:30:00Z",
                "location": "Room 12",
            },
        )

        assert email.subject == "Interview Scheduled - Maths Teacher"
        assert email.text.startswith("Dear Ann Smith,")
        assert "Date: Tuesday, 04 November 2025" in email.text
        assert "Time: 14:30 UTC" in email.text
        assert "Type: In-person" in email.text
        assert "Manage email preferences" in email.text
        assert "<" not in email.text

    def test_digest_lists_jobs(self, renderer):
        email = renderer.render(
            NotificationKind.JOB_ALERT_DIGEST,
            {
                "user_name": "Ann",
                "jobs": [
                    {"id": 7, "title": "Maths Teacher", "organization": "Central High", "description": "x" * 200},
                    {"title": "Physics Teacher", "url": "https://schools.example.com/physics"},
                ],
                "portal_url": "https://jobs.example.com/jobs",
            },
        )

        assert email.subject == "Weekly Job Alert - 2 New Opportunities"
        assert "Maths Teacher (https://jobs.example.com/jobs/7)" in email.text
        assert "Physics Teacher (https://schools.example.com/physics)" in email.text
        assert "x" * 150 + "..." in email.text
        assert "x" * 151 not in email.text

    def test_digest_singular_and_empty(self, renderer):
        one = renderer.render(
            NotificationKind.JOB_ALERT_DIGEST, {"user_name": "Ann", "jobs": [{"title": "Maths Teacher"}]}
        )
        empty = renderer.render(NotificationKind.JOB_ALERT_DIGEST, {"user_name": "Ann", "jobs": []})

        assert one.subject == "Weekly Job Alert - 1 New Opportunity"
        assert empty.subject == "Weekly Job Alert - 0 New Opportunities"
        assert "No matching jobs this week." in empty.text

    def test_digest_job_without_title_raises(self, renderer):
        with pytest.raises(TemplateRenderError, match="missing a title"):
            renderer.render(NotificationKind.JOB_ALERT_DIGEST, {"user_name": "Ann", "jobs": [{"id": 1}]})


class TestFooterInsertion:
    """Tests for structural footer placement."""

    def test_before_closing_body(self):
        html = "<html><body><div>Hello</div></body></html>"
        assert insert_footer(html, FOOTER) == f"<html><body><div>Hello</div>{FOOTER}</body></html>"

    def test_before_last_div_without_body(self):
        html = "<div><p>Hello</p></div>"
        assert insert_footer(html, FOOTER) == f"<div><p>Hello</p>{FOOTER}</div>"

    def test_appended_to_malformed_fragment(self):
        html = "<p>Hello <b>there"
        assert insert_footer(html, FOOTER) == html + FOOTER


class TestHtmlToText:
    """Tests for plain-text derivation."""

    def test_keeps_wording_and_links(self):
        html = (
            "<html><head><title>Ignored</title><style>p { color: red; }</style></head>"
            '<body><h1>Hello</h1><p>Fish &amp; chips <a href="https://example.com/x">here</a></p>'
            "<ul><li>One</li><li>Two</li></ul></body></html>"
        )
        assert html_to_text(html) == "Hello\nFish & chips here (https://example.com/x)\n\n- One\n- Two"

    def test_link_label_equal_to_url_is_not_repeated(self):
        assert html_to_text('<a href="https://example.com">https://example.com</a>') == "https://example.com"

    def test_is_deterministic(self):
        html = "<div><p>Line one</p><p>Line   two</p></div>"
        assert html_to_text(html) == html_to_text(html) == "Line one\nLine two"
