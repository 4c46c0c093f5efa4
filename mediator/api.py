"""HTTP routes exposed to OpenHIM."""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from mediator.ingestion.file_ingestor import ObjectIngestor

log = logging.getLogger(__name__)


def create_app(ingestor: ObjectIngestor) -> FastAPI:
    app = FastAPI(
        title="Climate Mediator",
        description="Loads climate data files from MinIO into ClickHouse.",
    )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/process-climate-data")
    def process_climate_data(
        bucket: Optional[str] = None,
        file: Optional[str] = None,
        tableName: Optional[str] = None,
    ) -> JSONResponse:
        status_code, body = ingestor.process_request(bucket, file, tableName)
        return JSONResponse(status_code=status_code, content=body)

    return app
