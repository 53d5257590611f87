"""
Game server console integration

Key Components:
- ConsoleBridge: Console output matching, roster/chat callbacks, command routing
- ProcessConsole: Child process with stdin/stdout pipes for the server
"""

from .console_bridge import ConsoleBridge
from .process_console import ProcessConsole

__all__ = [
    'ConsoleBridge',
    'ProcessConsole'
]
