from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging
import uvicorn

from app import config
from app.db import init_db
from app.errors import (
    AlreadyExists,
    AuthenticationFailed,
    BadFormat,
    Internal,
    NotFound,
    PermissionDenied,
    ServiceError,
    ValidationFailed,
)
from app.routers import auth, courses, problems, submissions, users

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFound: 404,
    AlreadyExists: 409,
    ValidationFailed: 422,
    PermissionDenied: 403,
    AuthenticationFailed: 401,
    BadFormat: 400,
    Internal: 500,
}

app = FastAPI(title="Normal OJ")

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(courses.router)
app.include_router(problems.router)
app.include_router(submissions.router)


@app.on_event("startup")
async def on_startup():
    init_db()


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    status_code = STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"msg": str(exc), "data": exc.data}, status_code=status_code)


def run():
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
