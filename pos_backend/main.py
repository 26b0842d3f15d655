from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from pos_backend.config import settings
from pos_backend.error_handlers import install_error_handlers
from pos_backend.logging_setup import configure_logging
from pos_backend.routers import auth, catalog, inventory, purchase_orders, receiving
from pos_backend.security.headers import install_security_headers

configure_logging(settings)

app = FastAPI(title='Non-profit POS Backend')

install_security_headers(app)
install_error_handlers(app)

API_PREFIX = '/api/v1'

app.include_router(auth.router, prefix=API_PREFIX)
app.include_router(catalog.router, prefix=API_PREFIX)
app.include_router(purchase_orders.router, prefix=API_PREFIX)
app.include_router(receiving.router, prefix=API_PREFIX)
app.include_router(inventory.router, prefix=API_PREFIX)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
