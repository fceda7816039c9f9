from __future__ import annotations

import uvicorn

from narrator.ingestor.app import create_ingestor_app, get_ingestor_settings
from narrator.utils.logging import setup_logging


def main() -> None:
    setup_logging()
    settings = get_ingestor_settings()
    uvicorn.run(create_ingestor_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
