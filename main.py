from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging

from database import Base, SessionLocal, engine, get_settings
from api import displays, form, redemptions, tokens, websocket
from core.sweeper import start_sweepers, stop_sweepers
from core.token_service import get_token_service

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料庫表，啟動背景清理
    Base.metadata.create_all(bind=engine)
    tasks = []
    if settings.background_sweeps_enabled:
        tasks = start_sweepers(settings, get_token_service())
    yield
    # Shutdown: 停止背景清理
    await stop_sweepers(tasks)


app = FastAPI(
    title="Prize Kiosk API",
    description="Backend API for QR-code prize wheel kiosks",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(form.router)
app.include_router(tokens.router)
app.include_router(redemptions.router)
app.include_router(displays.router)
app.include_router(websocket.router)


@app.get("/")
def root():
    return {"message": "Prize Kiosk API", "status": "ok"}


@app.get("/health")
def health():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Database connection unavailable")
    finally:
        db.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
