"""
Multi-model conversation completion toolkit.

The main entry point is 'CompletionController':

    from polychat import CompletionController

    controller = CompletionController.from_settings()
    conversation = await controller.create_conversation("user-1", {"model": "gpt-4o"})
    response = await controller.submit_completion(
        {"conversation_id": conversation.id, "content": "Hello, how are you?"}, user_id="user-1"
    )
"""

from polychat.config import PolychatSettings
from polychat.conversation_database.controller import (
    CompletionController,
    CompletionRequest,
    CompletionResponse,
    CompletionState,
)
from polychat.errors import PolychatError

__all__ = [
    "CompletionController",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionState",
    "PolychatError",
    "PolychatSettings",
]
