from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reservation_agent.config import get_settings
from reservation_agent.logging.flight_recorder import register_log_middleware
from reservation_agent.routes import calls, chat, health


def create_app() -> FastAPI:
    app = FastAPI(title="Reservation Agent", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_log_middleware(app)

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(chat.router, prefix="/chat", tags=["chat"])
    app.include_router(calls.router, prefix="/calls", tags=["calls"])

    get_settings().validate_startup()

    return app


app = create_app()
