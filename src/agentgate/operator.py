"""Operator channel.

Components never print directly. They queue messages for the operator here
and the outer runtime (console or MCP server) decides how to show them.
"""

from __future__ import annotations

import logging
from collections import deque

logger = logging.getLogger(__name__)


class OperatorChannel:
    """Queue of messages addressed to the human operator."""

    def __init__(self):
        """Initialize with an empty queue."""
        self._output_queue: deque[str] = deque()

    def say(self, message: str) -> None:
        """Queue a message for the operator."""
        logger.debug("operator say message=%s", message)
        self._output_queue.append(message)

    def get_pending_messages(self) -> list[str]:
        """Get and clear all pending messages.

        Called by the outer runtime to retrieve what should be displayed.
        """
        messages = list(self._output_queue)
        self._output_queue.clear()
        return messages

    def peek(self) -> list[str]:
        """Return pending messages without clearing them."""
        return list(self._output_queue)
