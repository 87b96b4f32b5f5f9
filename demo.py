#!/usr/bin/env python3
"""
Demo entry point: `python demo.py` serves the HTTP API, `python demo.py chat`
talks to the agent from the terminal.
"""

import asyncio
import os
import subprocess
import sys

from logging_config import setup_logging
from reservation_agent.config import get_settings
from reservation_agent.models.turns import TurnState
from reservation_agent.services.sessions import create_session


def start_demo_server():
    """Start the API server with clean demo logging"""
    settings = get_settings()
    setup_logging(settings.log_level)
    settings.validate_startup()

    print("Starting Reservation Agent server on :8000")
    print("-" * 50)

    cmd = [
        sys.executable, "-m", "uvicorn",
        "reservation_agent.main:app",
        "--host", "0.0.0.0",
        "--port", "8000",
        "--log-level", settings.log_level.lower(),
    ]

    try:
        subprocess.run(cmd, cwd=os.getcwd())
    except KeyboardInterrupt:
        print("\nDemo server stopped")


async def chat_loop():
    settings = get_settings()
    setup_logging("WARNING" if not settings.debug else "DEBUG")
    session = create_session(settings)
    print(f"jason> {session.orchestrator.display[0].content}")

    while True:
        try:
            text = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return
        if text.lower() in {"quit", "exit"}:
            return
        if not text:
            continue
        outcome = await session.send(text)
        for reply in outcome.replies:
            print(f"jason> {reply}")
        if outcome.state == TurnState.CALL_DISPATCHED:
            print(f"[call queued: {outcome.dispatch.call_id if outcome.dispatch else 'unknown'}]")


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "chat":
        asyncio.run(chat_loop())
    else:
        start_demo_server()
