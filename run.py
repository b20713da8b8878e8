#!/usr/bin/env python3
"""
Vehicle Finance Ledger Entry Point

Starts the FastAPI server (port 8091 unless VF_API_PORT says otherwise).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from vehicle_finance.api import run_server
from vehicle_finance.logging_config import get_logger


if __name__ == "__main__":
    logger = get_logger("vehicle_finance.run")
    try:
        run_server()
    except KeyboardInterrupt:
        logger.info("Shutting down vehicle finance ledger")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)
