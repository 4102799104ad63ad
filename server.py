import uvicorn  # type: ignore

from app.core import config
from app.utils import get_logger, setup_logging

log = get_logger(__name__)

if __name__ == "__main__":
    setup_logging(config.LOG_LEVEL)
    log.info("Running server")
    uvicorn.run("app.main:app", reload=True, host="127.0.0.1", port=8000)
