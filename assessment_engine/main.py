"""
Assessment engine API entry point.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from assessment_engine.core.config import settings
from assessment_engine.core.database import init_db
from assessment_engine.core.errors import EngineError
from assessment_engine.api.questions import router as questions_router
from assessment_engine.api.question_sets import router as question_sets_router
from assessment_engine.api.attempts import router as attempts_router, practice_router
from assessment_engine.api.admin import router as admin_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutdown complete")


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, debug=settings.DEBUG, lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
app.include_router(questions_router, prefix="/v1/questions", tags=["questions"])
app.include_router(question_sets_router, prefix="/v1/question-sets", tags=["question-sets"])
app.include_router(attempts_router, prefix="/v1/attempts", tags=["attempts"])
app.include_router(practice_router, prefix="/v1/practice", tags=["practice"])
app.include_router(admin_router, prefix="/v1/admin", tags=["admin"])


@app.exception_handler(EngineError)
async def engine_exception_handler(request: Request, exc: EngineError):
    """Engine errors keep their category so clients can tell a conflict from a bad request."""
    return JSONResponse(status_code=exc.status_code, content={"error": jsonable_encoder(exc.to_dict())})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "type": "http_error",
                "status_code": exc.status_code
            }
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "type": "validation_error",
                "details": jsonable_encoder(exc.errors())
            }
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    message = "An internal error occurred" if settings.is_production() else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"message": message, "type": "internal_error"}}
    )


@app.get("/health")
def health(): return {"status": "ok", "version": settings.APP_VERSION}
