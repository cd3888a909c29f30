"""
State Store Factory

Selects the backing store from ``STATE_BACKEND``.
"""

from inference_gateway.core.config.constants import StateBackend
from inference_gateway.core.config.settings import Settings
from inference_gateway.core.interfaces.state_store import StateStore
from inference_gateway.core.logging.logger import get_logger
from inference_gateway.infrastructure.state.memory_store import MemoryStateStore
from inference_gateway.infrastructure.state.redis_store import connect_redis_store

logger = get_logger(__name__)


async def create_state_store(settings: Settings) -> StateStore:
    """
    Build the state store for this process.

    The memory store is only correct for a single instance; any horizontally
    scaled deployment must set ``STATE_BACKEND=redis``.
    """
    if settings.STATE_BACKEND == StateBackend.REDIS:
        return await connect_redis_store(settings)

    logger.info("Using in-memory state store", stage="STORE.0", backend=StateBackend.MEMORY.value)
    return MemoryStateStore(sweep_interval=settings.cache.MEMORY_SWEEP_INTERVAL)
