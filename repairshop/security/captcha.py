from __future__ import annotations

import json
import logging
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from repairshop.config import settings

logger = logging.getLogger(__name__)


def verification_enabled() -> bool:
    return bool(settings.turnstile_secret_key)


def _turnstile_post(payload: dict) -> dict:
    req = Request(
        url=settings.turnstile_verify_url,
        data=urlencode(payload).encode('utf-8'),
        headers={'Content-Type': 'application/x-www-form-urlencoded'},
        method='POST',
    )
    try:
        with urlopen(req, timeout=settings.turnstile_timeout_seconds) as response:
            return json.loads(response.read().decode('utf-8'))
    except HTTPError as exc:
        body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
        raise RuntimeError(f'Bot verification error {exc.code}: {body}') from exc
    except URLError as exc:
        raise RuntimeError(f'Bot verification network error: {exc.reason}') from exc


def verify_bot_token(token: str | None, *, ip: str | None) -> bool:
    """Return True when the bot-verification token checks out.

    With no secret configured, verification is disabled and every request
    passes. Verification outages count as failures.
    """
    if not verification_enabled():
        return True
    if not token:
        return False

    payload = {'secret': settings.turnstile_secret_key, 'response': token}
    if ip:
        payload['remoteip'] = ip
    try:
        parsed = _turnstile_post(payload)
    except RuntimeError:
        logger.exception('Bot verification request failed')
        return False
    if not parsed.get('success'):
        logger.info('Bot verification rejected: %s', parsed.get('error-codes'))
        return False
    return True
