from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ..schema import HealthStatus

if TYPE_CHECKING:
    from .service import ScraperService


def create_health_app(service: "ScraperService") -> FastAPI:
    """Operational endpoint reporting whether scheduler, validator and workers are alive."""
    app = FastAPI(title="mediawatch scraper", docs_url=None, redoc_url=None)

    @app.get("/health", response_model=HealthStatus)
    async def health_check() -> JSONResponse:
        health = await service.health()
        status_code = 200 if health.status == "ok" else 503
        return JSONResponse(status_code=status_code, content=health.model_dump(mode="json"))

    return app
