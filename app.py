from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from constants import CORS_ALLOW_ORIGINS, LOG_FILE, LOG_LEVEL
from logging_config import get_logger, setup_logging
from routers.rooms import rooms_router
from routers.signaling import relay, signaling_router
from schemas.rooms import HealthResponse

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

app = FastAPI(title="Mesh signaling relay")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(signaling_router)
app.include_router(rooms_router)

logger.info("FastAPI application initialized")


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", rooms=len(relay.store.list_rooms()), sessions=len(relay.registry))
