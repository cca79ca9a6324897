from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from repairshop.auth import Capability, get_current_principal, has_capability, home_path_for
from repairshop.config import settings
from repairshop.logging_config import configure_logging
from repairshop.routers import api, auth, customers, inventory, management, portal, public, staff
from repairshop.security.csrf import install_csrf_cookie_middleware
from repairshop.security.headers import install_security_headers
from repairshop.security.sessions import install_auth_session_middleware
from repairshop.services.formatting import format_currency, format_phone_number, humanize_status, initials
from repairshop.services.audit_service import audit_style

configure_logging(settings)

app = FastAPI(title='Repair Shop Desk')

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))


def _csrf_token(request: Request) -> str:
    return getattr(request.state, 'csrf_token', '')


def _can(request: Request, capability: str) -> bool:
    principal = getattr(request.state, 'principal', None)
    return bool(principal) and has_capability(principal.role, Capability(capability))


app.state.templates.env.globals['csrf_token'] = _csrf_token
app.state.templates.env.globals['can'] = _can
app.state.templates.env.globals['shop_display_name'] = settings.shop_display_name
app.state.templates.env.filters['currency'] = format_currency
app.state.templates.env.filters['phone'] = format_phone_number
app.state.templates.env.filters['humanize'] = humanize_status
app.state.templates.env.filters['initials'] = initials
app.state.templates.env.filters['audit_style'] = audit_style

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(staff.router)
app.include_router(inventory.router)
app.include_router(customers.router)
app.include_router(management.router)
app.include_router(portal.router)
app.include_router(public.router)
app.include_router(api.router)


@app.get('/')
def root(request: Request):
    principal = get_current_principal(request)
    return RedirectResponse(home_path_for(principal.role), status_code=303)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
