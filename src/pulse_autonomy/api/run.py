"""
Pulse Autonomy REST API entry point.

Usage:
    pulse-autonomy-api                      # Default port 8003
    PULSE_API_PORT=9000 pulse-autonomy-api  # Custom port
    PULSE_DEV_MODE=1 pulse-autonomy-api     # Dev mode (no auth, auto-reload)
"""

import os

import uvicorn

DEFAULT_PORT = 8003
DEFAULT_HOST = "127.0.0.1"


def main():
    port = int(os.getenv("PULSE_API_PORT", DEFAULT_PORT))
    host = os.getenv("PULSE_API_HOST", DEFAULT_HOST)
    reload = os.getenv("PULSE_DEV_MODE", "").lower() in ("1", "true", "yes")

    uvicorn.run(
        "pulse_autonomy.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
