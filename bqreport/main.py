import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from bqreport.api.router import api_router
from bqreport.core.config import settings
from bqreport.core.errors import ReportError
from bqreport.core.warehouse.connection import connect

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# Build the shared BigQuery client once and close it when the app stops
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fails startup on a missing project id or bad credentials
    app.state.warehouse = connect(
        project_id=settings.GOOGLE_CLOUD_PROJECT,
        location=settings.BQ_LOCATION,
        credentials_json=settings.GOOGLE_APPLICATION_CREDENTIALS_JSON,
        credentials_file=settings.GOOGLE_APPLICATION_CREDENTIALS,
    )
    yield
    app.state.warehouse.close()


app = FastAPI(title="BigQuery Report API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)

# Dashboard assets
app.mount(
    "/static", StaticFiles(directory=settings.STATIC_DIR, check_dir=False), name="static"
)


@app.exception_handler(ReportError)
async def report_error_handler(request: Request, error: ReportError):
    logger.error(f"{request.method} {request.url.path} failed: {error}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": str(error)},
    )


@app.get("/", include_in_schema=False)
async def dashboard():
    index = Path(settings.INDEX_FILE)
    if not index.is_file():
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": f"dashboard page {index} not found"},
        )
    return FileResponse(index)


# Simple healthcheck
@app.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    return "ok"


def run():
    logger.info(f"listening on :{settings.PORT}")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
