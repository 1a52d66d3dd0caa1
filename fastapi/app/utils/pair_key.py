from typing import Tuple

from app.exceptions import InvalidParticipants


PAIR_KEY_SEPARATOR = ":"


def _normalize(participant_id) -> str:
    value = str(participant_id).strip() if participant_id is not None else ""
    if not value:
        raise InvalidParticipants("Participant id cannot be empty")
    if PAIR_KEY_SEPARATOR in value:
        raise InvalidParticipants(
            f"Participant id cannot contain '{PAIR_KEY_SEPARATOR}'",
            {"participant_id": value},
        )
    return value


def canonical_participants(user_a, user_b) -> Tuple[str, str]:
    a = _normalize(user_a)
    b = _normalize(user_b)
    if a == b:
        raise InvalidParticipants("Cannot start a conversation with yourself", {"participant_id": a})
    first, second = sorted((a, b))
    return first, second


def canonical_key(user_a, user_b) -> str:
    """Order-independent key for a participant pair: ``canonical_key(a, b) == canonical_key(b, a)``."""
    return PAIR_KEY_SEPARATOR.join(canonical_participants(user_a, user_b))
