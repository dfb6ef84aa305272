from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.logging_config import get_logger, setup_logging
from app.routers import integrations, webhook, whatsapp

setup_logging(settings.log_level)
logger = get_logger("main")


def _parse_origins(raw: str) -> list[str]:
    origins = [part.strip() for part in raw.split(",")]
    return [origin for origin in origins if origin] or ["*"]


def create_app() -> FastAPI:
    application = FastAPI(
        title="Clinic Messaging API",
        description="WhatsApp and email integrations for clinics",
        version="0.1.0",
        debug=settings.debug,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_parse_origins(settings.cors_allow_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for module in (integrations, whatsapp, webhook):
        application.include_router(module.router)

    @application.get("/health")
    async def health():
        return {"status": "ok"}

    logger.info("Application configured", extra={"context": {"graph_version": settings.meta_graph_version}})
    return application


app = create_app()
