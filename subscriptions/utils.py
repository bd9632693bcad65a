"""
Utility functions for participant ID normalization and identity generation
"""
import random
import string
from typing import Any, Callable, Iterable, Optional


def normalize_uid(uid: Any) -> str:
    """Canonical string form of a participant id (str or number)"""
    if uid is None:
        return ""
    if isinstance(uid, float) and uid.is_integer():
        uid = int(uid)
    return str(uid).strip()


def uids_equal(a: Any, b: Any) -> bool:
    return normalize_uid(a) == normalize_uid(b)


def find_participant(participants: Iterable[Any], uid: Any) -> Optional[Any]:
    """Return the participant whose normalized uid matches, or None"""
    target = normalize_uid(uid)
    for participant in participants or ():
        if normalize_uid(getattr(participant, "uid", None)) == target:
            return participant
    return None


def make_prefix_predicate(prefixes: Iterable[str]) -> Callable[[Any], bool]:
    """Bot classifier matching normalized uids against known prefixes"""
    prefixes = tuple(p.strip() for p in prefixes if p and p.strip())

    def is_automated(uid: Any) -> bool:
        return bool(prefixes) and normalize_uid(uid).startswith(prefixes)

    return is_automated


def generate_agent_identity(length: int = 9) -> str:
    """Generate a random identity for the subscriber agent"""
    alphabet = string.ascii_lowercase + string.digits
    return "subscriber_" + "".join(random.choice(alphabet) for _ in range(length))
