from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cabinet.auth.router import router as auth_router
from cabinet.auth.router import users_router
from cabinet.common.responses import register_exception_handlers
from cabinet.common.storage import ensure_upload_dirs
from cabinet.config import settings
from cabinet.contact.router import router as contact_router
from cabinet.documents.router import router as documents_router
from cabinet.dossiers.router import router as dossiers_router
from cabinet.logs.router import router as logs_router
from cabinet.messages.router import router as messages_router
from cabinet.middleware import CorrelationIDMiddleware, configure_logging
from cabinet.notifications.router import router as notifications_router
from cabinet.scheduling.router import creneaux_router
from cabinet.scheduling.router import router as appointments_router
from cabinet.tasks.router import router as tasks_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    ensure_upload_dirs()

    # Startup: bootstrap the superadmin if none exists
    from cabinet.auth.service import bootstrap_admin

    await bootstrap_admin()
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Routers. Dossiers and documents share the /api/user prefix and must be
# mounted before users_router, whose /{user_id} route would shadow them.
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(dossiers_router, prefix="/api/user/dossiers", tags=["Dossiers"])
app.include_router(documents_router, prefix="/api/user/documents", tags=["Documents"])
app.include_router(users_router, prefix="/api/user", tags=["Users"])
app.include_router(creneaux_router, prefix="/api/creneaux", tags=["Créneaux"])
app.include_router(appointments_router, prefix="/api/appointments", tags=["Rendez-vous"])
app.include_router(messages_router, prefix="/api/messages", tags=["Messages"])
app.include_router(contact_router, prefix="/api/contact", tags=["Contact"])
app.include_router(tasks_router, prefix="/api/tasks", tags=["Tasks"])
app.include_router(notifications_router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(logs_router, prefix="/api/logs", tags=["Logs"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "version": settings.app_version}
