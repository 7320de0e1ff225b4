import os

import uvicorn

from monzo_budget.app import app
from monzo_budget.logger import get_logging_config

__all__ = ["app", "run"]


def run() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host=host, port=port, log_config=get_logging_config())


if __name__ == "__main__":
    run()
