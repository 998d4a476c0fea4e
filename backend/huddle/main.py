from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.middleware.trustedhost import TrustedHostMiddleware

from huddle.config import settings
from huddle.gateway.provider import gateway
from huddle.gateway.sqlite_gateway import SqliteGateway
from huddle.logging_config import setup_logging
from huddle.routers import admin, auth, communities, events, notifications
from huddle.services.event_enhancer import event_enhancer
from huddle.services.push_sender import push_sender

setup_logging(settings.log_level)

app = FastAPI(title="Huddle API", version="0.1.0")

allow_any_origin = len(settings.cors_origins) == 1 and settings.cors_origins[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

if not (len(settings.trusted_hosts) == 1 and settings.trusted_hosts[0] == "*"):
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

app.include_router(auth.router)
app.include_router(communities.router)
app.include_router(events.router)
app.include_router(admin.router)
app.include_router(notifications.router)

# Local gateway files are served the way the hosted store serves public buckets.
if isinstance(gateway, SqliteGateway) and settings.public_storage_url.startswith("/"):
    storage_dir = Path(gateway.storage_dir)
    storage_dir.mkdir(parents=True, exist_ok=True)
    app.mount(settings.public_storage_url, StaticFiles(directory=storage_dir), name="storage")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    llm_configured = bool(event_enhancer.llm_available)
    return {
        "status": "ready",
        "gateway": settings.gateway_backend,
        "llm_configured": llm_configured,
        "llm_mode": "openai" if llm_configured else "disabled",
        "push_enabled": push_sender.enabled,
    }
