from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def device_fingerprint(request: Request) -> str:
    ip = get_client_ip(request) or 'unknown-ip'
    user_agent = request.headers.get('user-agent') or 'unknown-agent'
    return f'{ip} | {user_agent[:200]}'


def redirect_with_notice(url: str, notice: str | None = None, level: str = 'success') -> RedirectResponse:
    if notice:
        separator = '&' if '?' in url else '?'
        url = f"{url}{separator}{urlencode({'notice': notice, 'level': level})}"
    return RedirectResponse(url, status_code=303)
