from __future__ import annotations

import uvicorn

from lineage.core.config import get_settings


def main() -> None:
    # Serve the gateway with env-driven host/port; the app builds its engine on startup.
    settings = get_settings()
    uvicorn.run("lineage.apps.api.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
