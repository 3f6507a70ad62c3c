#!/usr/bin/env python3
"""
Bridge main entry point.

Allows the bridge to be run as a module: python3 -m bridge
"""

import asyncio
import logging
import os
import sys

# Set default log level from environment, or INFO if not set
log_level = os.getenv("BRIDGE_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

# Webhook POSTs would otherwise log one INFO line each
logging.getLogger("httpx").setLevel(logging.WARNING)

from bridge.errors import BindError
from bridge.service import BridgeService


def main() -> int:
    try:
        service = BridgeService()
        asyncio.run(service.run_forever())
    except KeyboardInterrupt:
        logging.info("Bridge shutdown requested")
        return 0
    except BindError as e:
        logging.error(f"Bridge failed to start: {e}")
        return 1
    except Exception as e:
        logging.error(f"Bridge failed to start: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
