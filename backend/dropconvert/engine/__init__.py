from .adapter import EngineAdapter
from .events import EventHub, Subscription

__all__ = ["EngineAdapter", "EventHub", "Subscription"]
