import os
from fastapi import FastAPI, Response

from .config import SETTINGS, configure_logging
from .metrics import metrics_response

configure_logging()

app = FastAPI(title="Merge Policy Bot", version=os.getenv("SERVICE_VERSION", "dev"))


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "version": SETTINGS.service_version}


@app.get("/readyz")
async def readyz():
    return {"status": "ready"}


@app.get("/metrics")
async def metrics():
    content_type, data = metrics_response()
    return Response(content=data, media_type=content_type)
