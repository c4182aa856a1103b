"""
Email service module for composing and sending dossiers.

This module provides:
- DeliveryComposer, which renders a summary and its articles into HTML and
  plain-text bodies
- EmailService, which sends a composed message over SMTP with STARTTLS or
  implicit TLS
"""

import datetime
import html
import logging
import re
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional, Sequence

from jinja2 import DictLoader, Environment, StrictUndefined
from markupsafe import Markup

from dossier.config import SmtpSettings
from dossier.errors import TemplateFailure, TransportFailure
from dossier.models import Article, DossierConfig, utcnow
from dossier.parsers.rss import clean_html

logger = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465
TEST_SUBJECT_MARKER = "[TEST]"

_EMAIL_STYLES = {
    "body": "font-family: 'Segoe UI', sans-serif; color: #333; line-height: 1.6;",
    "container": "max-width: 800px; margin: 0 auto; border: 1px solid #e0e0e0; border-radius: 8px;",
    "header": "background-color: #4b2c92; padding: 20px; text-align: center; color: white;",
    "header_h1": "margin:0;",
    "header_p": "margin:5px 0 0; opacity: 0.9;",
    "meta": "background: #f8f9fa; padding: 15px; font-size: 13px; color: #666;",
    "section": "padding: 20px;",
    "section_h2": "border-bottom: 2px solid #4b2c92; padding-bottom: 5px; margin-top: 30px;",
    "summary": "font-size: 15px; color: #34495e;",
    "article": "margin-bottom: 25px; border-bottom: 1px solid #eee; padding-bottom: 15px;",
    "source": "font-size: 11px; font-weight: bold; color: #666; text-transform: uppercase;",
    "article_h3": "margin: 5px 0; font-size: 18px;",
    "link": "text-decoration: none; color: #0078D4;",
    "desc": "font-size: 14px; color: #444; margin-top: 5px;",
    "footer": "text-align: center; padding: 20px; font-size: 12px; color: #666;",
}

_HTML_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{{ title }}</title></head>
<body style="{{ styles.body }}">
    <div style="{{ styles.container }}">
        <div style="{{ styles.header }}">
            <h1 style="{{ styles.header_h1 }}">{{ title }}</h1>
            <p style="{{ styles.header_p }}">Your personalized news dossier</p>
        </div>
        <div style="{{ styles.meta }}">
            <strong>Generated:</strong> {{ generated_at }} |
            <strong>Articles:</strong> {{ article_count }} |
            <strong>Style:</strong> {{ tone }} {{ language }}
            {% if instructions %}<br><strong>Special Instructions:</strong> {{ instructions }}{% endif %}
        </div>
        <div style="{{ styles.section }}">
            <h2 style="{{ styles.section_h2 }}">Executive Summary</h2>
            <div style="{{ styles.summary }}">{{ summary }}</div>
            <h2 style="{{ styles.section_h2 }}">Articles</h2>
            {% for article in articles %}
            <div style="{{ styles.article }}">
                <span style="{{ styles.source }}">{{ article.source }}</span>
                <h3 style="{{ styles.article_h3 }}">
                    <a href="{{ article.url }}" style="{{ styles.link }}">{{ article.title }}</a>
                </h3>
                <span style="{{ styles.source }}">Published: {{ article.published }}</span>
                {% if article.description %}<p style="{{ styles.desc }}">{{ article.description }}</p>{% endif %}
            </div>
            {% endfor %}
        </div>
        <div style="{{ styles.footer }}">This dossier was automatically generated by Dossier</div>
    </div>
</body>
</html>
"""

_TEXT_TEMPLATE = """\
{{ title }}
==============================================
Generated: {{ generated_at }}
Articles: {{ article_count }} | Style: {{ tone }} {{ language }}
{% if instructions %}Special Instructions: {{ instructions }}
{% endif %}
EXECUTIVE SUMMARY
----------------------------------------------
{{ summary }}

ARTICLES
----------------------------------------------
{% for article in articles %}
{{ loop.index }}. {{ article.title }}
   Source: {{ article.source }} | Published: {{ article.published }}
{% if article.description %}   {{ article.description }}
{% endif %}   Read more: {{ article.url }}
{% endfor %}
----------------------------------------------
This dossier was automatically generated by Dossier
"""


_BREAK_RE = re.compile(r"<br\s*/?>|</p>|</div>", re.IGNORECASE)


def plain_text(markup: str) -> str:
    """Converts model-written HTML into readable plain text."""
    text = _BREAK_RE.sub("\n", markup or "")
    lines = [clean_html(line) for line in text.splitlines()]
    text = "\n".join(lines)
    return html.unescape(re.sub(r"\n{3,}", "\n\n", text)).strip()


def extract_domain(url: str) -> str:
    """Returns the host of a URL without scheme or a leading ``www.``."""
    if url.startswith("http://"):
        url = url[len("http://"):]
    elif url.startswith("https://"):
        url = url[len("https://"):]
    domain = url.split("/", 1)[0]
    if domain.startswith("www."):
        domain = domain[len("www."):]
    return domain


@dataclass(frozen=True)
class DossierMessage:
    """A fully rendered email ready for the transport."""

    to: str
    subject: str
    html: str
    text: str


class DeliveryComposer:
    """Renders a dossier into HTML and plain-text email bodies."""

    def __init__(self):
        templates = {"dossier.html": _HTML_TEMPLATE, "dossier.txt": _TEXT_TEMPLATE}
        self._html_env = Environment(
            loader=DictLoader(templates), autoescape=True, undefined=StrictUndefined
        )
        self._text_env = Environment(
            loader=DictLoader(templates),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def _context(
        self,
        config: DossierConfig,
        articles: Sequence[Article],
        generated_at: datetime.datetime,
        title: str,
    ) -> dict:
        local_time = generated_at.astimezone(config.zone)
        return {
            "title": title,
            "generated_at": local_time.strftime("%A, %B %d, %Y at %I:%M %p %Z"),
            "article_count": len(articles),
            "tone": config.tone.replace("_", " ").title(),
            "language": config.language,
            "instructions": config.special_instructions,
            "styles": _EMAIL_STYLES,
            "articles": [
                {
                    "title": article.title,
                    "url": article.link,
                    "source": extract_domain(article.link),
                    "published": article.published_at.astimezone(config.zone).strftime(
                        "%b %d, %Y"
                    ),
                    "description": html.unescape(clean_html(article.description)),
                }
                for article in articles
            ],
        }

    def compose(
        self,
        config: DossierConfig,
        summary: str,
        articles: Sequence[Article],
        generated_at: Optional[datetime.datetime] = None,
        test: bool = False,
    ) -> DossierMessage:
        """Renders one message. Raises TemplateFailure if rendering fails."""
        generated_at = generated_at or utcnow()
        title = f"{config.title} - Test Email" if test else config.title
        subject = f"Dossier - {config.title}"
        if test:
            subject = f"{TEST_SUBJECT_MARKER} {subject}"

        try:
            context = self._context(config, articles, generated_at, title)
            # The summary is model-written HTML meant to be embedded as-is
            html_body = self._html_env.get_template("dossier.html").render(
                summary=Markup(summary.replace("\n", "<br>")), **context
            )
            text_body = self._text_env.get_template("dossier.txt").render(
                summary=plain_text(summary), **context
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise TemplateFailure(f"Failed to render dossier email: {e}") from e

        return DossierMessage(
            to=config.email, subject=subject, html=html_body, text=text_body
        )


class EmailService:
    """Service for sending composed dossiers over SMTP."""

    def __init__(self, settings: SmtpSettings):
        self.settings = settings

    def build_mime(self, message: DossierMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.settings.from_name, self.settings.from_email))
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg.attach(MIMEText(message.text, "plain", "utf-8"))
        msg.attach(MIMEText(message.html, "html", "utf-8"))
        return msg

    def _connect(self) -> smtplib.SMTP:
        """Opens an authenticated, encrypted connection."""
        host, port = self.settings.host, self.settings.port
        if port == IMPLICIT_TLS_PORT:
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                host, port, timeout=self.settings.timeout
            )
        else:
            server = smtplib.SMTP(host, port, timeout=self.settings.timeout)
            server.starttls()
        if self.settings.username:
            server.login(self.settings.username, self.settings.password)
        return server

    def send(self, message: DossierMessage) -> None:
        """Sends one message to its single recipient."""
        msg = self.build_mime(message)
        try:
            server = self._connect()
            try:
                server.send_message(msg)
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email to %s failed: %s", message.to, e)
            raise TransportFailure(f"Failed to send email to {message.to}: {e}") from e
        logger.info("Email sent to %s (%s).", message.to, message.subject)

    def test_connection(self) -> None:
        """Performs the TLS handshake and login without sending anything."""
        try:
            server = self._connect()
            server.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise TransportFailure(
                f"SMTP connection to {self.settings.host}:{self.settings.port} failed: {e}"
            ) from e
        logger.info(
            "SMTP connection to %s:%d verified.", self.settings.host, self.settings.port
        )
