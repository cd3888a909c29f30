from inference_gateway.core.interfaces.state_store import Clock, StateStore, UpdateFn, WindowSpec

__all__ = ["Clock", "StateStore", "UpdateFn", "WindowSpec"]
