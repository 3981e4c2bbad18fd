from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging

from config import get_settings
from database import Base, engine, utcnow
from core.exceptions import ForexSpinException
from core.logging_config import setup_logging
from core.scheduler import round_scheduler
from api import admin, affiliate, auth, bets, chat, faq, legal, preferences, premium, rounds, users, wallet, websocket

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料表，啟動回合排程器
    Base.metadata.create_all(bind=engine)
    if settings.scheduler_enabled:
        round_scheduler.start()
    yield
    # Shutdown: 停止排程器
    round_scheduler.shutdown()


app = FastAPI(
    title=settings.app_name,
    description="Backend API for the Forex Spin prediction platform",
    version=settings.app_version,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ 統一錯誤格式 ============

def error_response(request: Request, status_code: int, message: str, code: str = None) -> JSONResponse:
    body = {
        "statusCode": status_code,
        "message": message,
        "data": None,
        "path": request.url.path,
        "method": request.method,
        "timestamp": utcnow().isoformat() + "Z",
    }
    if code:
        body["code"] = code
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ForexSpinException)
async def domain_exception_handler(request: Request, exc: ForexSpinException):
    return error_response(request, exc.status_code, exc.message, exc.code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return error_response(request, 400, "; ".join(messages) or "Validation failed")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response(request, 500, "Internal server error")


# Include routers
app.include_router(auth.router)
app.include_router(rounds.router)
app.include_router(bets.router)
app.include_router(wallet.router)
app.include_router(affiliate.router)
app.include_router(chat.router)
app.include_router(faq.router)
app.include_router(legal.router)
app.include_router(premium.router)
app.include_router(preferences.router)
app.include_router(users.router)
app.include_router(admin.router)
app.include_router(websocket.router)


@app.get("/")
def root():
    return {"message": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy", "version": settings.app_version}


@app.get("/status")
def status():
    return {
        "status": "ok",
        "environment": settings.environment,
        "serverTime": utcnow().isoformat(),
        "scheduler": round_scheduler.status(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
