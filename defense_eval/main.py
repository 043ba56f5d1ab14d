import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PayloadError
from starlette.exceptions import HTTPException as StarletteHTTPException

from defense_eval.api.audit import router as audit_router
from defense_eval.api.evaluations import router as evaluations_router
from defense_eval.api.health import router as health_router
from defense_eval.api.me import router as me_router
from defense_eval.api.rankings import router as rankings_router
from defense_eval.api.resources import router as resources_router
from defense_eval.api.root import router as root_router
from defense_eval.api.rubrics import router as rubrics_router
from defense_eval.api.student_evaluations import router as student_evaluations_router
from defense_eval.api.thesis import router as thesis_router
from defense_eval.core.config import settings
from defense_eval.core.errors import AppError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Thesis Defense Evaluation")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag"],
)


def _first_error(errors) -> str:
    if not errors:
        return "Invalid request"
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "header", "path"))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "message": exc.message, **exc.extra},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"ok": False, "message": _first_error(exc.errors())})


@app.exception_handler(PayloadError)
async def payload_validation_handler(request: Request, exc: PayloadError):
    # raised when the resource dispatcher validates a body by hand
    return JSONResponse(status_code=400, content={"ok": False, "message": _first_error(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "message": "Internal server error"})


app.include_router(root_router)
app.include_router(health_router)
app.include_router(me_router)
app.include_router(rubrics_router)
app.include_router(evaluations_router)
app.include_router(student_evaluations_router)
app.include_router(rankings_router)
app.include_router(thesis_router)
app.include_router(audit_router)
app.include_router(resources_router)
