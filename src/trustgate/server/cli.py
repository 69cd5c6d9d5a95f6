"""Server CLI entry point for ``trustgate serve``."""

from __future__ import annotations


def run_server(host: str, port: int, *, log_level: str = "info") -> None:
    """Start the gateway server with uvicorn."""
    import uvicorn

    uvicorn.run(
        "trustgate.server.app:create_app_from_env",
        factory=True,
        host=host,
        port=port,
        log_level=log_level,
    )
