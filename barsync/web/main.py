"""Web service entry point."""

import os

import uvicorn


def barsync_web_main() -> None:
    """Serve the HTTP API with uvicorn."""

    host = os.getenv("BARSYNC_HOST", "127.0.0.1")
    port = int(os.getenv("BARSYNC_PORT", "8080"))
    reload = os.getenv("BARSYNC_RELOAD", "false").lower() == "true"

    uvicorn.run("barsync.web.app:create_app", factory=True, host=host, port=port, reload=reload, log_level="info")


if __name__ == "__main__":
    barsync_web_main()
