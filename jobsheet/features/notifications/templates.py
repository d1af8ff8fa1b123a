"""Subscription email templates (subject + HTML body)."""

from enum import Enum
from typing import Dict, Mapping, Tuple


class NotificationTemplate(str, Enum):
    SUBSCRIPTION_STARTED = "subscription_started"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


PLAN_NAME = "JobSheet Pro Monthly"
PLAN_PRICE = "£9.99/month"

_SUBJECTS: Dict[NotificationTemplate, str] = {
    NotificationTemplate.SUBSCRIPTION_STARTED: "🎉 Welcome to JobSheet Pro!",
    NotificationTemplate.SUBSCRIPTION_CANCELED: "Your JobSheet Pro subscription has been canceled",
}

_STARTED_HTML = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1 style="color: #2563eb;">Welcome to JobSheet Pro!</h1>
  <p>Hi {name},</p>
  <p>Thanks for subscribing. Your subscription is now active and every feature is unlocked.</p>
  <table style="width: 100%; border-collapse: collapse; margin: 20px 0;">
    <tr><td><strong>Plan</strong></td><td>{plan}</td></tr>
    <tr><td><strong>Price</strong></td><td>{price}</td></tr>
    <tr><td><strong>Status</strong></td><td>Active</td></tr>
  </table>
  <p>You can manage your subscription at any time from your account page.</p>
  <p><a href="{app_url}" style="color: #2563eb;">Open JobSheet Pro</a></p>
</div>
"""

_CANCELED_HTML = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1>Subscription canceled</h1>
  <p>Hi {name},</p>
  <p>Your JobSheet Pro subscription has been canceled.</p>
  <p>Pro features are no longer available on your account.</p>
  <p>Changed your mind? You can resubscribe at any time from <a href="{app_url}">your account</a>.</p>
</div>
"""


def render(template: NotificationTemplate, variables: Mapping[str, object]) -> Tuple[str, str]:
    """Return (subject, html) for a template."""
    name = variables.get("name") or "there"
    app_url = variables.get("app_url") or ""

    if template is NotificationTemplate.SUBSCRIPTION_STARTED:
        html = _STARTED_HTML.format(name=name, plan=PLAN_NAME, price=PLAN_PRICE, app_url=app_url)
    elif template is NotificationTemplate.SUBSCRIPTION_CANCELED:
        html = _CANCELED_HTML.format(name=name, app_url=app_url)
    else:
        raise ValueError(f"unknown notification template: {template!r}")

    return _SUBJECTS[template], html
