"""
Error taxonomy for the chat core.

- SlotValidationError: malformed slot input (inverted or negative budget).
  Recovered locally by the dialogue, which re-prompts.
- ExternalLookupError: knowledge/partner store failure or timeout.
  Converted into structured failure results at the component boundary.
- ConversationNotFoundError: history/end requested for an unknown id.

Out-of-context queries are not errors; they are a classifier verdict.
"""
from typing import List, Optional


class SoukBotError(Exception):
    """Base class for every error raised by the chat core."""


class SlotValidationError(SoukBotError):
    """A slot value was extracted but violates the session invariants."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class ExternalLookupError(SoukBotError):
    """An external collaborator failed or did not answer in time."""

    def __init__(self, operation: str, message: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation}: {message}")


class ConversationNotFoundError(SoukBotError):
    """No conversation exists with the requested id."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")
