import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import socketio

from bloodfinder.config import get_settings
from bloodfinder.db.postgres import engine, init_models
from bloodfinder.api.routes import auth, donor, recipient, donations, admin, emergency
from bloodfinder.api.websocket.handler import sio
from bloodfinder.api.middleware.rate_limit import RateLimitMiddleware
from bloodfinder.services.errors import DomainError

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting (must be added before CORS so it runs after CORS in the middleware stack)
app.add_middleware(RateLimitMiddleware, max_requests=200, window_seconds=60)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(auth.router, prefix=settings.API_PREFIX, tags=["Auth"])
app.include_router(donor.router, prefix=settings.API_PREFIX, tags=["Donor"])
app.include_router(recipient.router, prefix=settings.API_PREFIX, tags=["Recipient"])
app.include_router(donations.router, prefix=settings.API_PREFIX, tags=["Donations"])
app.include_router(admin.router, prefix=settings.API_PREFIX, tags=["Admin"])
app.include_router(emergency.router, prefix=settings.API_PREFIX, tags=["Emergency"])


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.detail, exc.code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


@app.on_event("startup")
async def startup():
    await init_models(engine)
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)


@app.on_event("shutdown")
async def shutdown():
    await engine.dispose()


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.APP_VERSION}


# Socket.IO integration
sio_app = socketio.ASGIApp(sio, other_asgi_app=app)
