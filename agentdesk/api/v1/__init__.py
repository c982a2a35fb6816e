from . import conversations, stream

__all__ = ["conversations", "stream"]
