from __future__ import annotations

import json
import logging
from html import escape
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from repairshop.config import settings
from repairshop.services.formatting import format_currency

logger = logging.getLogger(__name__)


def _resend_post(path: str, payload: dict) -> dict:
    if not settings.resend_api_key:
        raise RuntimeError('RESEND_API_KEY is required')

    req = Request(
        url=f"{settings.resend_api_base_url.rstrip('/')}{path}",
        data=json.dumps(payload).encode('utf-8'),
        headers={
            'Authorization': f'Bearer {settings.resend_api_key}',
            'Content-Type': 'application/json',
        },
        method='POST',
    )
    try:
        with urlopen(req, timeout=settings.email_timeout_seconds) as response:
            return json.loads(response.read().decode('utf-8') or '{}')
    except HTTPError as exc:
        body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
        raise RuntimeError(f'Email API error {exc.code}: {body}') from exc
    except URLError as exc:
        raise RuntimeError(f'Email API network error: {exc.reason}') from exc


def send_email(*, to: str, subject: str, html: str) -> dict:
    to = (to or '').strip()
    if not to or '@' not in to:
        raise ValueError('A valid recipient email is required')
    if not subject or not subject.strip():
        raise ValueError('Subject is required')

    try:
        result = _resend_post(
            '/emails',
            {
                'from': settings.email_from,
                'to': [to],
                'subject': subject.strip(),
                'html': html,
            },
        )
    except RuntimeError:
        logger.exception('Sending email "%s" failed', subject)
        raise
    logger.info('Email "%s" sent (id=%s)', subject, result.get('id'))
    return result


def build_estimate_email(
    *,
    customer_name: str | None,
    brand: str,
    model: str,
    total,
    status_link: str,
    shop_name: str | None,
) -> str:
    return f"""
<div style="font-family: sans-serif; color: #333; max-width: 600px;">
  <h2>Estimate Ready for Approval</h2>
  <p>Hello <strong>{escape(customer_name or 'there')}</strong>,</p>
  <p>We have diagnosed your <strong>{escape(brand)} {escape(model)}</strong>.</p>
  <p style="font-size: 18px;">Total Estimate: <strong style="color: #059669;">{format_currency(total)}</strong></p>
  <p>Please review the details and approve the repair so we can get started.</p>
  <p><a href="{escape(status_link)}" style="background-color: #4F46E5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 5px; font-weight: bold;">View &amp; Approve Estimate</a></p>
  <hr style="border: 0; border-top: 1px solid #eee;" />
  <p style="font-size: 12px; color: #666;">{escape(shop_name or settings.shop_display_name)}</p>
</div>
""".strip()
