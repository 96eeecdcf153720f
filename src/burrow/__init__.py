"""Burrow - conversation engine, process executor and sub-agents."""

from .chat import ChatConfig, ChatSession
from .process import ProcessExecutor
from .runtime import RuntimeContext

__version__ = "0.1.0"

__all__ = ["ChatConfig", "ChatSession", "ProcessExecutor", "RuntimeContext"]
