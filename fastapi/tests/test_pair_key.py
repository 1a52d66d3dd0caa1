import pytest

from app.exceptions import InvalidParticipants
from app.utils.pair_key import canonical_key, canonical_participants


def test_key_is_order_independent():
    assert canonical_key("u1", "u2") == canonical_key("u2", "u1") == "u1:u2"


def test_key_accepts_integer_ids():
    assert canonical_key(42, 7) == "42:7"


@pytest.mark.parametrize("user", ["u1", "  u1 ", "0"])
def test_self_pair_rejected(user):
    with pytest.raises(InvalidParticipants):
        canonical_key(user, user.strip())


@pytest.mark.parametrize("a, b", [("", "u2"), ("u1", "   "), (None, "u2")])
def test_empty_participant_rejected(a, b):
    with pytest.raises(InvalidParticipants, match="empty"):
        canonical_key(a, b)


def test_separator_in_id_rejected():
    # "a:b" + "c" and "a" + "b:c" must never share a key
    with pytest.raises(InvalidParticipants):
        canonical_key("a:b", "c")


def test_participants_are_sorted_and_stripped():
    assert canonical_participants(" zed", "amy ") == ("amy", "zed")
