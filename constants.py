import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 5000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# "memory" keeps rooms in this process, "redis" shares them between relay instances
ROOM_STORE_BACKEND = os.getenv("ROOM_STORE_BACKEND", "memory")

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_LOCK_TIMEOUT = float(os.getenv("REDIS_LOCK_TIMEOUT", 5))
# how many times a leave retries the room store before giving up
STORE_RETRY_ATTEMPTS = int(os.getenv("STORE_RETRY_ATTEMPTS", 3))

CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]

SIGNALING_PATH = "/connect"

# Client side defaults
SIGNALING_ENDPOINT = os.getenv("SIGNALING_ENDPOINT", "ws://localhost:5000")
ICE_SERVERS = [
    s.strip()
    for s in os.getenv(
        "ICE_SERVERS",
        "stun:stun.l.google.com:19302,stun:stun1.l.google.com:19302,stun:stun2.l.google.com:19302",
    ).split(",")
    if s.strip()
]
