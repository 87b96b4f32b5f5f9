import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Console logging for the server and the terminal chat."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level.upper())
    formatter = logging.Formatter(
        '%(asctime)s | %(name)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    # Stage timings are useful in a trace, not in a demo
    logging.getLogger("reservation_agent.logging.flight_recorder").setLevel(logging.WARNING)
    logging.getLogger("reservation_agent").setLevel(level.upper())


if __name__ == "__main__":
    setup_logging()
