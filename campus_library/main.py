import logging
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from campus_library.core.config import configure_logging
from campus_library.core.database import Base, engine
from campus_library.core.errors import LibraryError
from campus_library.api import routes

configure_logging()
logger = logging.getLogger("campus_library")

Base.metadata.create_all(bind=engine)
app = FastAPI(title="Campus Library Circulation API")
app.include_router(routes.router)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.get("/health")
def health():
    return {"status": "ok", "time": datetime.utcnow().isoformat()}
