# app/core/config.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .errors import register_error_handlers
from .settings import settings


def create_app(**kwargs) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, **kwargs)

    if settings.BACKEND_CORS_ORIGINS:
        origins = settings.CORS_ORIGINS
        allow_credentials = True
        if "*" in origins:
            origins = ["*"]
            allow_credentials = False
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=allow_credentials,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_error_handlers(app)
    return app
