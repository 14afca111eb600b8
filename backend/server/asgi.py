"""
ASGI entry point.

Used by uvicorn / gunicorn.
"""

from dotenv import load_dotenv

load_dotenv()

from config import AppConfig  # pylint: disable=wrong-import-position
from observability import logger  # pylint: disable=wrong-import-position
from server.app import create_app  # pylint: disable=wrong-import-position

config = AppConfig.load_from_env()
logger.configure(log_level=config.log_level, json_lines=config.enable_json_logs)

app = create_app(config)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "server.asgi:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
        reload=config.env == "dev",
    )
