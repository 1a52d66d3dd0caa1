"""Error taxonomy for direct messaging.

Caller errors are never retried. ``StorageUnavailable`` is transient: every
operation here is idempotent or purely additive, so repeating it is safe.
"""
from typing import Any, Dict, Optional


class ChatError(Exception):
    """Base exception for the messaging core."""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: str = "CHAT_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidParticipants(ChatError):
    """Raised when a pair key cannot be formed, e.g. a self-conversation."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_PARTICIPANTS", details)


class NotAParticipant(ChatError):
    """Raised when a user acts on a conversation they do not belong to."""

    def __init__(self, conversation_id: str, participant_id: str):
        message = f"'{participant_id}' is not a participant of conversation '{conversation_id}'"
        super().__init__(
            message,
            "NOT_A_PARTICIPANT",
            {"conversation_id": conversation_id, "participant_id": participant_id},
        )


class ConversationNotFound(ChatError):

    def __init__(self, conversation_id: str):
        message = f"Conversation '{conversation_id}' not found"
        super().__init__(message, "CONVERSATION_NOT_FOUND", {"conversation_id": conversation_id})


class EmptyBody(ChatError):

    def __init__(self) -> None:
        super().__init__("Message body cannot be empty", "EMPTY_BODY")


class MessageTooLong(ChatError):

    def __init__(self, length: int, limit: int):
        super().__init__(
            f"Message body is {length} characters, limit is {limit}",
            "MESSAGE_TOO_LONG",
            {"length": length, "limit": limit},
        )


class InvalidCursor(ChatError):

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "INVALID_CURSOR", details)


class StorageUnavailable(ChatError):
    """Raised when the store times out or cannot be reached."""

    retryable = True

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Storage unavailable during {operation}", "STORAGE_UNAVAILABLE", details)
