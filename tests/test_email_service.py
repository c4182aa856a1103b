"""Unit tests for dossier composition and SMTP delivery."""

import datetime
import smtplib
import unittest
from unittest.mock import MagicMock, patch

from dossier.config import SmtpSettings
from dossier.errors import TemplateFailure, TransportFailure
from dossier.services.email_service import (
    DeliveryComposer,
    DossierMessage,
    EmailService,
    extract_domain,
    plain_text,
)

from fakes import make_article, make_config

GENERATED_AT = datetime.datetime(2024, 5, 2, 12, 30, tzinfo=datetime.timezone.utc)


class TestHelpers(unittest.TestCase):
    def test_extract_domain(self):
        self.assertEqual(extract_domain("https://www.example.com/a/b"), "example.com")
        self.assertEqual(extract_domain("http://news.example.org"), "news.example.org")
        self.assertEqual(extract_domain("example.net/path"), "example.net")

    def test_plain_text(self):
        markup = "<p>First &amp; foremost</p><p>Second <a href='x'>link</a></p>"
        self.assertEqual(plain_text(markup), "First & foremost\nSecond link")
        self.assertEqual(plain_text("Line one<br>Line two"), "Line one\nLine two")


class TestDeliveryComposer(unittest.TestCase):
    def setUp(self):
        self.composer = DeliveryComposer()

    def test_compose_renders_both_bodies(self):
        config = make_config(tone="southern_belle", language="French")
        articles = [make_article(1), make_article(2)]

        message = self.composer.compose(
            config, "<p>The <b>big</b> news.</p>", articles, generated_at=GENERATED_AT
        )

        self.assertEqual(message.to, "reader@example.com")
        self.assertEqual(message.subject, "Dossier - Morning Brief")
        self.assertIn("<p>The <b>big</b> news.</p>", message.html)
        self.assertIn("Southern Belle", message.html)
        self.assertIn('href="https://a.example.com/story-1"', message.html)
        self.assertIn("Thursday, May 02, 2024 at 12:30 PM UTC", message.html)
        self.assertIn("The big news.", message.text)
        self.assertNotIn("<b>", message.text)
        self.assertIn("Read more: https://a.example.com/story-2", message.text)

    def test_article_fields_are_escaped(self):
        article = make_article(1, title="Tom & Jerry <script>", description="<i>Plain</i> text")

        message = self.composer.compose(
            make_config(), "Summary", [article], generated_at=GENERATED_AT
        )

        self.assertIn("Tom &amp; Jerry &lt;script&gt;", message.html)
        self.assertNotIn("<script>", message.html)
        self.assertIn("Plain text", message.html)

    def test_generated_time_uses_config_zone(self):
        config = make_config(timezone="America/New_York")

        message = self.composer.compose(
            config, "Summary", [make_article(1)], generated_at=GENERATED_AT
        )

        self.assertIn("08:30 AM EDT", message.html)

    def test_published_date_uses_config_zone(self):
        # 02:00 UTC on 2 May is still the evening of 1 May in New York
        article = make_article(
            1,
            published_at=datetime.datetime(2024, 5, 2, 2, 0, tzinfo=datetime.timezone.utc),
        )
        config = make_config(timezone="America/New_York")

        message = self.composer.compose(config, "Summary", [article], generated_at=GENERATED_AT)

        self.assertIn("Published: May 01, 2024", message.html)
        self.assertIn("Published: May 01, 2024", message.text)

    def test_test_send_marks_subject_and_title(self):
        message = self.composer.compose(
            make_config(), "Summary", [make_article(1)], generated_at=GENERATED_AT, test=True
        )

        self.assertTrue(message.subject.startswith("[TEST]"))
        self.assertIn("Morning Brief - Test Email", message.html)

    def test_render_error_raises_template_failure(self):
        broken = make_article(1, published_at=None)

        with self.assertRaises(TemplateFailure):
            self.composer.compose(make_config(), "Summary", [broken])


class TestEmailService(unittest.TestCase):
    def setUp(self):
        self.message = DossierMessage(
            to="reader@example.com", subject="Dossier - Test", html="<p>Hi</p>", text="Hi"
        )

    def test_build_mime(self):
        service = EmailService(SmtpSettings(from_email="bot@example.com", from_name="Bot"))

        msg = service.build_mime(self.message)

        self.assertEqual(msg["From"], "Bot <bot@example.com>")
        self.assertEqual(msg["To"], "reader@example.com")
        payloads = msg.get_payload()
        self.assertEqual(payloads[0].get_content_type(), "text/plain")
        self.assertEqual(payloads[1].get_content_type(), "text/html")

    @patch("dossier.services.email_service.smtplib.SMTP")
    def test_send_with_starttls(self, mock_smtp):
        server = mock_smtp.return_value
        service = EmailService(
            SmtpSettings(host="smtp.example.com", port=587, username="user", password="pw")
        )

        service.send(self.message)

        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=60.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "pw")
        server.send_message.assert_called_once()
        server.quit.assert_called_once()

    @patch("dossier.services.email_service.smtplib.SMTP")
    @patch("dossier.services.email_service.smtplib.SMTP_SSL")
    def test_send_with_implicit_tls(self, mock_ssl, mock_smtp):
        server = mock_ssl.return_value
        service = EmailService(SmtpSettings(host="smtp.example.com", port=465))

        service.send(self.message)

        mock_ssl.assert_called_once_with("smtp.example.com", 465, timeout=60.0)
        mock_smtp.assert_not_called()
        server.starttls.assert_not_called()
        server.login.assert_not_called()
        server.send_message.assert_called_once()

    @patch("dossier.services.email_service.smtplib.SMTP")
    def test_send_failure_raises_transport_failure(self, mock_smtp):
        server = mock_smtp.return_value
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})

        with self.assertRaises(TransportFailure):
            EmailService(SmtpSettings()).send(self.message)
        server.quit.assert_called_once()

    @patch("dossier.services.email_service.smtplib.SMTP")
    def test_connection_refused_raises_transport_failure(self, mock_smtp):
        mock_smtp.side_effect = ConnectionRefusedError("refused")

        with self.assertRaises(TransportFailure):
            EmailService(SmtpSettings()).send(self.message)

    @patch("dossier.services.email_service.smtplib.SMTP")
    def test_test_connection(self, mock_smtp):
        EmailService(SmtpSettings(username="user", password="pw")).test_connection()

        mock_smtp.return_value.login.assert_called_once_with("user", "pw")
        mock_smtp.return_value.send_message.assert_not_called()

    @patch("dossier.services.email_service.smtplib.SMTP")
    def test_test_connection_failure(self, mock_smtp):
        mock_smtp.return_value.login.side_effect = smtplib.SMTPAuthenticationError(
            535, b"bad credentials"
        )

        with self.assertRaises(TransportFailure):
            EmailService(SmtpSettings(username="user", password="pw")).test_connection()


if __name__ == "__main__":
    unittest.main()
