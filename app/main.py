from __future__ import annotations

from app.api.delivery.preview import router as delivery_preview_router
from app.api.v1.router import api_router
from app.core.config import create_app
from app.core.logging import configure_logging
from app.core.settings import settings

from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware


app = create_app()
configure_logging()

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


@app.get("/", include_in_schema=False)
def root():
    return {"app": settings.APP_NAME, "docs": "/docs", "api": settings.API_V1_STR}


# API del builder
app.include_router(api_router, prefix=settings.API_V1_STR)

# Preview pública (con token firmado) para el render service
app.include_router(delivery_preview_router)
