# storefront/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.database import get_db, init_db
from storefront.errors import GENERIC_ERROR_MESSAGE, AppError, InsufficientStockError
from storefront.utils.events import RequestEvent, get_event

from storefront.routes.cart import router as cart_router
from storefront.routes.webhooks import router as webhooks_router
from storefront.routes.stock import router as inventory_router
from storefront.routes.reservations import router as reservations_router
from storefront.routes.orders import router as orders_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Storefront API", version=settings.SERVICE_VERSION, lifespan=lifespan)

# CORS Configuration
origins = ["http://localhost:5173", "http://127.0.0.1:5173"]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER, "X-Session-ID"],
)


def _error_body(event: RequestEvent, message: str, **extra):
    return {"error": message, "request_id": event.request_id, **extra}


# One wide event per request, emitted on the way out
@app.middleware("http")
async def request_events(request: Request, call_next):
    event = RequestEvent(
        method=request.method,
        path=request.url.path,
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )
    incoming = request.headers.get(REQUEST_ID_HEADER)
    if incoming:
        event.request_id = incoming
    request.state.event = event

    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        event.error(type(e).__name__, str(e))
        response = JSONResponse(status_code=500, content=_error_body(event, GENERIC_ERROR_MESSAGE))

    response.headers[REQUEST_ID_HEADER] = event.request_id
    event.emit(response.status_code)
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    event = get_event(request)
    if "error" not in event.fields:
        event.error(type(exc).__name__, exc.message, **exc.details)
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)

    extra = {}
    if isinstance(exc, InsufficientStockError):
        extra["items"] = exc.items
    if exc.retriable:
        extra["retriable"] = True
    return JSONResponse(status_code=exc.status_code, content=_error_body(event, exc.public_message, **extra))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    event = get_event(request)
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    event.error("ValidationError", "Invalid request", issues=errors)
    return JSONResponse(status_code=422, content=_error_body(event, "Invalid request", details=errors))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    event = get_event(request)
    logger.exception("CRITICAL: database error on %s %s", request.method, request.url.path)
    event.error("DatabaseError", str(exc.__class__.__name__))
    return JSONResponse(status_code=500, content=_error_body(event, GENERIC_ERROR_MESSAGE))


# Register routers
app.include_router(cart_router)
app.include_router(webhooks_router)
app.include_router(inventory_router)
app.include_router(reservations_router)
app.include_router(orders_router)


@app.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        database = "unreachable"
    get_event(request).set(database=database)
    status_code = 200 if database == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={"status": "ok" if database == "ok" else "degraded", "database": database,
                 "service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION},
    )
