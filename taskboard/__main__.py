import os

import uvicorn

from .config import LOG_LEVEL


def run() -> None:
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "4000"))
    uvicorn.run("taskboard.main:app", host=host, port=port, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
