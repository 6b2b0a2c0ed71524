# core/template_engine.py
"""
Notification email rendering

Jinja2 with autoescaping and StrictUndefined: every submitter-controlled value
is escaped exactly once, and a missing variable fails loudly instead of
rendering a blank.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from jinja2 import Environment, StrictUndefined
from jinja2.exceptions import TemplateError
from markupsafe import Markup, escape

from core.submission_validator import ValidatedSubmission

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%B %d, %Y at %I:%M %p"

CONTACT_EMAIL_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>New Message</title>
</head>
<body style="margin: 0; padding: 0; background-color: #f7f5f2; font-family: Georgia, 'Times New Roman', serif;">
<table role="presentation" width="100%" cellspacing="0" cellpadding="0" border="0" style="background-color: #f7f5f2;">
<tr><td align="center" style="padding: 40px 20px;">
<table role="presentation" width="600" cellspacing="0" cellpadding="0" border="0" style="background-color: #fffefa; border: 1px solid #e8e4dc; max-width: 600px;">
<tr><td style="padding: 48px 48px 32px 48px; border-bottom: 1px solid #e8e4dc;">
<p style="margin: 0; font-size: 11px; letter-spacing: 3px; color: #9a958c; text-transform: uppercase; font-family: 'Courier New', monospace;">{{ site_name }}</p>
<h1 style="margin: 16px 0 0 0; font-size: 28px; font-weight: 400; color: #3d3a35;">Someone reached out.</h1>
</td></tr>
<tr><td style="padding: 32px 48px 24px 48px; background-color: #fcfaf7;">
<table role="presentation" width="100%" cellspacing="0" cellpadding="0" border="0">
<tr>
<td width="80" style="padding-bottom: 12px; font-size: 12px; color: #9a958c; text-transform: uppercase;">From</td>
<td style="padding-bottom: 12px; font-size: 16px; color: #3d3a35;">{{ name }}</td>
</tr>
<tr>
<td style="padding-bottom: 12px; font-size: 12px; color: #9a958c; text-transform: uppercase;">Email</td>
<td style="padding-bottom: 12px; font-size: 16px; color: #3d3a35;"><a href="mailto:{{ email }}" style="color: #6b685f; text-decoration: none;">{{ email }}</a></td>
</tr>
<tr>
<td style="font-size: 12px; color: #9a958c; text-transform: uppercase;">Re</td>
<td style="font-size: 16px; color: #3d3a35;">{{ subject }}</td>
</tr>
</table>
</td></tr>
<tr><td style="padding: 32px 48px 48px 48px;">
<div style="font-size: 17px; line-height: 1.7; color: #4a4741;">{{ message | nl2br }}</div>
</td></tr>
<tr><td style="padding: 32px 48px; background-color: #3d3a35;">
<p style="margin: 0; font-size: 12px; color: #a09b92; font-family: 'Courier New', monospace;">{{ timestamp }}</p>
</td></tr>
</table>
<p style="margin: 24px 0 0 0; font-size: 11px; color: #b0aa9f;">This message arrived via the contact form at {{ site_name }}. Reply directly to correspond with {{ name }}.</p>
</td></tr>
</table>
</body>
</html>
"""


@dataclass(frozen=True)
class RenderedEmail:
    """Subject and body handed to both delivery paths unchanged"""
    subject: str
    html: str


def nl2br(value: str) -> Markup:
    """Escape, then turn newlines into <br> tags"""
    escaped = escape(value or "")
    return Markup("<br>\n").join(escaped.split("\n"))


class ContactEmailRenderer:
    """
    Renders the notification sent to the site owner
    """

    def __init__(self, site_name: str, template_source: str = CONTACT_EMAIL_TEMPLATE):
        self.site_name = site_name
        self.env = Environment(
            autoescape=True,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["nl2br"] = nl2br
        self.template = self.env.from_string(template_source)

    def subject_line(self, submission: ValidatedSubmission) -> str:
        return f"[{self.site_name}] {submission.subject}"

    def render(self, submission: ValidatedSubmission,
               sent_at: Optional[datetime] = None) -> RenderedEmail:
        """
        Render subject line and HTML body for a validated submission

        Raises:
            TemplateError: If the template references an unknown variable
        """
        sent_at = sent_at or datetime.now()
        try:
            body = self.template.render(
                site_name=self.site_name,
                name=submission.name,
                email=submission.email,
                subject=submission.subject,
                message=submission.message,
                timestamp=sent_at.strftime(TIMESTAMP_FORMAT),
            )
        except TemplateError as e:
            logger.error(f"Contact email template failed to render: {e}")
            raise
        return RenderedEmail(subject=self.subject_line(submission), html=body)
