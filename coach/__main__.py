from __future__ import annotations

import uvicorn

from .config import CoachConfig
from .logs import configure_logging


def main() -> None:
    cfg = CoachConfig.from_env()
    configure_logging(cfg.log_level)
    uvicorn.run("coach.server:app", host="0.0.0.0", port=cfg.port, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
