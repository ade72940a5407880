"""
bff_core.api.__main__

Entrypoint for running the BFF via `python -m bff_core.api`.

Responsibilities:
- Load settings (fails fast on production misconfiguration).
- Create the app.
- Start uvicorn with structlog-compatible logging and proxy-aware client addresses.
"""

from __future__ import annotations

import uvicorn

from bff_core.api.app import create_app
from bff_core.settings import get_settings


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,  # structlog
        # Audit events record the caller IP; only the configured proxy may supply it.
        proxy_headers=True,
        forwarded_allow_ips=settings.forwarded_allow_ips,
    )


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Deployed behind a TLS-terminating proxy; secure cookies rely on it forwarding https.
