import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.admissions.router import router as admissions_router
from app.api.v1.audit.router import router as audit_router
from app.api.v1.auth.router import router as auth_router
from app.api.v1.auth.roles_router import router as roles_router
from app.api.v1.fees.router import router as fees_router
from app.api.v1.library.router import router as library_router
from app.api.v1.reconciliation.router import router as reconciliation_router
from app.api.v1.recruitment.router import router as recruitment_router
from app.api.v1.safeguarding.router import router as safeguarding_router
from app.api.v1.schools.router import modules_router, router as schools_router
from app.api.v1.transport.router import router as transport_router
from app.core.config import settings


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="School Management Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(roles_router)
    app.include_router(schools_router)
    app.include_router(modules_router)
    app.include_router(admissions_router)
    app.include_router(library_router)
    app.include_router(transport_router)
    app.include_router(fees_router)
    app.include_router(recruitment_router)
    app.include_router(safeguarding_router)
    app.include_router(audit_router)
    app.include_router(reconciliation_router)

    return app


app = create_app()
