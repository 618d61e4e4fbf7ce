import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from docchat.config import get_settings
from docchat.db.mongo import db
from docchat.dependencies import build_services
from docchat.errors import InputValidationError, NotFoundError, TransientError
from docchat.routes import admin, chat, files

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.connect()
    app.state.services = build_services(db, get_settings())
    yield
    await app.state.services.qa.drain()
    await db.close()

app = FastAPI(title="Document Chat API", version="1.0", lifespan=lifespan)

app.include_router(files.router)
app.include_router(chat.router)
app.include_router(admin.router)

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"success": False, "message": str(exc)})

@app.exception_handler(InputValidationError)
async def validation_handler(request: Request, exc: InputValidationError):
    return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})

@app.exception_handler(TransientError)
async def transient_handler(request: Request, exc: TransientError):
    logger.warning(f"{request.method} {request.url.path} failed transiently: {exc}")
    # Must stay distinguishable from an "insufficient context" answer, which is a success
    return JSONResponse(
        status_code=503,
        content={"success": False, "message": "The service is temporarily unavailable. Please try again."},
    )

@app.get("/")
def health():
    return {"status": "ok"}

if __name__ == "__main__":
    import uvicorn
    import os
    port = int(os.getenv("PORT", 8000))
    # Only reload locally
    is_dev = os.getenv("RENDER") is None
    uvicorn.run("docchat.server:app", host="0.0.0.0", port=port, reload=is_dev)
