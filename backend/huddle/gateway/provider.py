import logging

from huddle.config import Settings, settings
from huddle.gateway.base import DataGateway
from huddle.gateway.rest_gateway import RestGateway
from huddle.gateway.sqlite_gateway import SqliteGateway

logger = logging.getLogger(__name__)


def build_gateway(config: Settings) -> DataGateway:
    if config.gateway_backend == "rest":
        logger.info("Using REST gateway at %s", config.gateway_url)
        return RestGateway(base_url=config.gateway_url, api_key=config.gateway_key, timeout=config.gateway_timeout)
    logger.info("Using SQLite gateway at %s", config.db_path)
    return SqliteGateway(
        db_path=config.db_path,
        storage_dir=config.storage_dir,
        public_storage_url=config.public_storage_url,
    )


gateway = build_gateway(settings)
