"""Serve the API: ``python -m splitbook``.

uvicorn handles SIGINT/SIGTERM by finishing in-flight requests before exiting.
"""

import uvicorn

from splitbook.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "splitbook.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
