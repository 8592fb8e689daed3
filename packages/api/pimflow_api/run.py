"""Startup script for the pimflow API with graceful shutdown configuration."""

import os

import uvicorn


def main() -> None:
    """Start the API server with graceful shutdown configuration."""
    host = os.getenv("PIMFLOW_API_HOST", "0.0.0.0")
    port = int(os.getenv("PIMFLOW_API_PORT", "8000"))
    reload = os.getenv("PIMFLOW_API_RELOAD", "false").lower() == "true"
    shutdown_timeout = int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))

    config = uvicorn.Config(
        "pimflow_api.main:app",
        host=host,
        port=port,
        reload=reload,
        timeout_graceful_shutdown=shutdown_timeout,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )

    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()
