"""idebridge - Claude CLI IDE bridge and code review runner.

Lets a host application advertise itself to the claude CLI as an IDE over an
authenticated loopback WebSocket, and run code reviews by driving the CLI's
stream-json output.
"""

__version__ = "0.1.0"

from idebridge.config import IDEBridgeConfig
from idebridge.ide.bridge import BridgeController, IDEBridge
from idebridge.review import CodeReview, ReviewState, ReviewStatus
from idebridge.stream.parser import StreamJsonParser

__all__ = [
    "__version__",
    "BridgeController",
    "CodeReview",
    "IDEBridge",
    "IDEBridgeConfig",
    "ReviewState",
    "ReviewStatus",
    "StreamJsonParser",
]
