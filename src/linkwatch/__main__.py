"""Run the linkwatch API, scheduler and background workers."""

import uvicorn

from .core.config import settings
from .main import create_app


def main() -> None:
    uvicorn.run(
        create_app(),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
