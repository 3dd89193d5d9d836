"""
Send one message to a fresh conversation and print the reply.

Usage:
    POLYCHAT_OPENAI_API_KEY=... python -m polychat

    Override the query or model at runtime:
        QUERY="What is a context window?" POLYCHAT_DEFAULT_MODEL=gpt-4o-mini python -m polychat
        POLYCHAT_ANTHROPIC_API_KEY=... POLYCHAT_DEFAULT_MODEL=claude-3.5-sonnet python -m polychat
"""

import asyncio
import os

from loguru import logger

from polychat.config import PolychatSettings
from polychat.conversation_database.controller import CompletionController
from polychat.errors import PolychatError

USER_ID = "cli-user"
DEFAULT_QUERY = "Hello, how are you?"


async def main() -> int:
    settings = PolychatSettings()
    controller = CompletionController.from_settings(settings)
    query = os.environ.get("QUERY", DEFAULT_QUERY)

    conversation = await controller.create_conversation(USER_ID)
    logger.info(f"Conversation {conversation.id} using {conversation.settings.model}")
    logger.info(f"Query: {query!r}")
    try:
        response = await controller.submit_completion(
            {"conversation_id": conversation.id, "content": query}, user_id=USER_ID
        )
    except PolychatError as e:
        logger.error(f"{e.kind}: {e.message}")
        return 1

    logger.info(f"Usage: {response.usage.model_dump()}")
    print(response.message.content)
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
