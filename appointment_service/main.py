import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from appointment_service.core import config
from appointment_service.core.logging import correlation_id_ctx, setup_logging
from appointment_service.database import Base, engine, ensure_appointment_schema
from appointment_service.models import appointment, doctor  # noqa: F401
from appointment_service.routes import appointment_routes, availability_routes, health_routes
from appointment_service.routes.dependencies import error_detail
from appointment_service.scheduling.errors import ErrorCode

CORRELATION_HEADERS = ('x-correlation-id', 'correlation-id')

setup_logging()
config.validate_runtime_config()

app = FastAPI(title='Appointment Service')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.middleware('http')
async def log_requests(request: Request, call_next):
    start_time = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start_time) * 1000
    logger.info('%s %s -> %s in %.2fms', request.method, request.url.path, response.status_code, elapsed_ms)
    return response


@app.middleware('http')
async def attach_correlation_id(request: Request, call_next):
    correlation_id = next(
        (request.headers[name] for name in CORRELATION_HEADERS if request.headers.get(name)),
        None,
    ) or str(uuid.uuid4())
    # Left set after the call so the 500 handler can still report it.
    correlation_id_ctx.set(correlation_id)
    response = await call_next(request)
    response.headers['x-correlation-id'] = correlation_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    logger.info('Rejected malformed request %s %s: %s', request.method, request.url.path, problems)
    return JSONResponse(
        status_code=400,
        content={'detail': error_detail(ErrorCode.INVALID_REQUEST, '; '.join(problems) or 'Invalid request.')},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.critical('Unhandled exception for %s %s', request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            'detail': {
                'code': 'INTERNAL_ERROR',
                'message': 'Internal Server Error',
                'retryable': False,
                'correlation_id': correlation_id_ctx.get(),
            }
        },
    )


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


app.include_router(health_routes.router, prefix='/health')
app.include_router(appointment_routes.router, prefix='/v1/appointments')
app.include_router(availability_routes.router, prefix='/v1/doctors')
