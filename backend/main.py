import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from analysis_quota.api.endpoints import analyses, billing
from analysis_quota.core.database import Base, engine
from analysis_quota.core.settings import settings
from analysis_quota.models import analysis_usage, billing_event, profile, property_analysis, subscription  # noqa: F401

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Property Analysis Quota API")

origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def startup() -> None:
    if settings.is_production and not settings.stripe_webhook_secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET must be set in production")
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)


app.include_router(analyses.router, prefix="/api", tags=["analyses"])
app.include_router(billing.router, prefix="/api", tags=["billing"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
