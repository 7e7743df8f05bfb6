import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings
from services.runtime import WhisperRuntime

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🕯️ Whisper chronicler starting up...")
    runtime = getattr(app.state, "runtime", None) or WhisperRuntime.build(settings)
    app.state.runtime = runtime
    await runtime.start()
    yield
    await runtime.stop()
    logger.info("Chronicler shutting down.")


app = FastAPI(
    title="Whisper",
    version="0.1.0",
    description="Round-event chronicler: batched lore, short-form teasers and a daily marketing post",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"ok": True, "service": "whisper", "version": "0.1.0", "ts": int(time.time() * 1000)}


from routers.lore_router import router as lore_router

app.include_router(lore_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
