"""
ASGI entry point.

    uvicorn noncebind.main:app

The identity store, nonce strategy and logging come from the environment
(see noncebind.config).
"""

from . import config
from .api import create_app
from .cli import build_engine, build_store
from .logging_config import configure_logging
from .orchestrator import VerificationOrchestrator

configure_logging(
    level="DEBUG" if config.is_debug() else config.LOG_LEVEL,
    json_format=config.LOG_JSON,
)

engine = build_engine(build_store(config.STORE_BACKEND, config.DB_PATH))
orchestrator = VerificationOrchestrator(engine.store, engine)

app = create_app(engine, orchestrator)
