from core.events import MessageEvents, EVENT_NAMES
from core.dispatcher import MessageDispatcher
from core.bootstrap import build_dispatcher

__all__ = ["MessageEvents", "EVENT_NAMES", "MessageDispatcher", "build_dispatcher"]
