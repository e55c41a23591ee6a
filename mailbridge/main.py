# mailbridge/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mailbridge.api.tools import router as tools_router, shutdown as shutdown_tools
from mailbridge.api.gmail import router as gmail_router
from mailbridge.utils.config import settings
from mailbridge.utils.logging import configure_logging

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await shutdown_tools()


app = FastAPI(title="mailbridge", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Register Routes ===
app.include_router(gmail_router, prefix="/gmail", tags=["gmail"])
app.include_router(tools_router, prefix="/tools", tags=["tools"])

@app.get("/health")
def health():
    return {"status": "ok"}
