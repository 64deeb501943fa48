# app/main.py
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

from app.api.error_handlers import register_exception_handlers
from app.api.routers import carts, cron, stores
from app.core.config import settings
from app.core.logging import setup_logging
from app.core.metrics import export_metrics

# --- Models registration (necesario para que Alembic los detecte) ---
import app.models.store    # noqa: F401
import app.models.product  # noqa: F401
import app.models.cart     # noqa: F401

setup_logging()

# --- Metadatos de la API para la documentación ---
TAGS_METADATA = [
    {"name": "carts", "description": "Sincronizacion con Shopify y recuperacion de carritos abandonados."},
    {"name": "cron", "description": "Disparo del scan periodico de recuperacion."},
    {"name": "stores", "description": "Estado de integraciones y mapeo de productos por tienda."},
]

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    description=(
        "API de recuperacion de carritos abandonados.\n\n"
        "- **Carts**: Sync con Shopify, importacion de checkouts y mensajes de recuperacion.\n"
        "- **Cron**: Scan batch detectar -> notificar -> seguimiento -> expirar.\n"
        "- **Stores**: Credenciales configuradas y mapeo producto/variante.\n\n"
        "Usa el botón **Authorize** para probar los endpoints protegidos."
    ),
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
    },
)

# --- Middlewares ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Ajustar en producción para mayor seguridad
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- Routers ---
app.include_router(carts.router, prefix=settings.API_V1_STR)
app.include_router(cron.router, prefix=settings.API_V1_STR)
app.include_router(stores.router, prefix=settings.API_V1_STR)


# --- Configuración personalizada de OpenAPI ---
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=TAGS_METADATA,
    )

    comps = openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {})
    comps["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
        "description": "Token con scope `admin` o `cron`. Formato: `Bearer <token>`",
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi


@app.get("/metrics", include_in_schema=False)
def metrics():
    payload, content_type = export_metrics()
    return Response(content=payload, media_type=content_type)


# --- Endpoint raíz ---
@app.get("/", include_in_schema=False)
def root():
    return {"status": "ok", "docs_url": "/docs", "redoc_url": "/redoc"}
