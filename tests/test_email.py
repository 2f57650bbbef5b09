from datetime import datetime
from unittest.mock import MagicMock, patch

# bound at import, before the autouse fixture swaps the module attribute
from assessment_portal.services.email import format_due, render_test_assigned_email, send_email
from assessment_portal.services.notifications import build_assignment_message


def test_render_test_assigned_email():
    html, plain = render_test_assigned_email("Casey", "Leadership Profile", datetime(2026, 3, 9, 17, 0))
    assert "Leadership Profile" in html
    assert "Casey" in html
    assert "09 Mar 2026, 17:00 UTC" in plain


def test_assignment_message_without_due_date():
    message = build_assignment_message("Leadership Profile", None)
    assert message.endswith("Please complete it by the scheduled deadline")
    assert format_due(None) == "the scheduled deadline"


def test_send_email_skips_without_client():
    with patch("assessment_portal.services.email.get_sendgrid_client", return_value=None):
        assert send_email("a@example.com", "Hi", "<p>Hi</p>", "Hi") is False


def test_send_email_uses_sendgrid():
    client = MagicMock()
    client.send.return_value = MagicMock(status_code=202)
    with patch("assessment_portal.services.email.get_sendgrid_client", return_value=client):
        assert send_email("a@example.com", "Hi", "<p>Hi</p>", "Hi") is True
    client.send.assert_called_once()


def test_send_email_reports_rejection():
    client = MagicMock()
    client.send.return_value = MagicMock(status_code=400)
    with patch("assessment_portal.services.email.get_sendgrid_client", return_value=client):
        assert send_email("a@example.com", "Hi", "<p>Hi</p>", "Hi") is False
