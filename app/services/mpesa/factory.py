"""Factory for the shared Daraja client."""
import logging
from functools import lru_cache

from app.core.config import settings

from .client import DarajaClient
from .config import MpesaConfig

logger = logging.getLogger(__name__)


@lru_cache
def get_daraja_client() -> DarajaClient:
    """
    Build the process-wide Daraja client.

    One instance per process so the access token cache and connection pool are shared.

    Raises:
        ConfigurationError: If any M-Pesa credential is missing
    """
    config = MpesaConfig.from_settings(settings)
    logger.info("Daraja client configured environment=%s shortcode=%s", config.environment, config.shortcode)
    return DarajaClient(config)
