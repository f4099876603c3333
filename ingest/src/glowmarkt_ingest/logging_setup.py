import os
import logging
import sys
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:

    level = os.getenv("LOG_LEVEL", level).upper()
    log_dir = log_dir or os.getenv("LOG_DIR")

    root = logging.getLogger()
    root.handlers.clear()

    root.setLevel(getattr(logging, level, logging.INFO))

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if log_dir:     # file log only when asked for
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file = logging.FileHandler(path / "ingest.log", encoding="utf-8")
        file.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file)

    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(max(root.level, logging.INFO))
