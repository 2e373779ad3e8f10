"""FastAPI server startup module for the tasksync REST API.

This module provides the start_server function used by the CLI serve command.
"""
import logging
from pathlib import Path
from typing import Optional

import uvicorn

from .bootstrap import create_engine
from .config import get_base_path
from .rest_api import create_app

logger = logging.getLogger(__name__)


def start_server(host: str = "127.0.0.1", port: int = 8421, base_path: Optional[Path] = None) -> None:
    """Start the tasksync webhook/API server using uvicorn.

    Args:
        host: Host address to bind to
        port: Port to bind to
        base_path: tasksync data directory (default: resolved by get_base_path)

    Raises:
        ConfigurationError: If sync is disabled or credentials are missing
    """
    base_path = get_base_path(base_path)
    engine = create_engine(base_path)
    app = create_app(engine)

    logger.info(f"Starting tasksync server on {host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=True
    )
