from __future__ import annotations

import uvicorn

from .config import Settings, settings
from .logger import configure_logging


def main(config: Settings = settings) -> None:
    configure_logging(config.log_level, config.log_dir)
    uvicorn.run(
        "focusflow.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
