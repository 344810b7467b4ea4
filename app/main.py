import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import games, payment
from app.core.config import get_settings
from app.core.database import create_tables


settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.APP_NAME)


origins = [
    origin.strip()
    for origin in settings.BACKEND_CORS_ORIGINS.split(",")
    if origin.strip()
]

# Wildcard origins cannot be combined with credentials
allow_credentials = bool(origins) and "*" not in origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


create_tables()


app.include_router(payment.router)
app.include_router(games.router)
