import logging
import sys

import uvicorn

from logdrain.app import create_app
from logdrain.config import Settings
from logdrain.delivery_context import DeliveryContextFilter
from logdrain.errors import ConfigError

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(delivery_id)s]: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(DeliveryContextFilter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    # boto/urllib3 are chatty at DEBUG
    for name in ("botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(max(logging.INFO, root.level))


def main():
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"logdrain: {e}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings.log_level)
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        access_log=False,
    )
