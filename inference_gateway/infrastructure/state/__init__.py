from inference_gateway.infrastructure.state.factory import create_state_store
from inference_gateway.infrastructure.state.memory_store import MemoryStateStore
from inference_gateway.infrastructure.state.redis_store import RedisStateStore, connect_redis_store

__all__ = ["MemoryStateStore", "RedisStateStore", "connect_redis_store", "create_state_store"]
