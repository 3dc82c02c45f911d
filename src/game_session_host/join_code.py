import re
import secrets

# No 0/O or 1/I so codes survive being read aloud or typed from a screen.
JOIN_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
JOIN_CODE_LENGTH = 6

_GENERATED_RE = re.compile(rf"^[{JOIN_CODE_ALPHABET}]{{{JOIN_CODE_LENGTH}}}$")
_RELAY_RE = re.compile(r"^[A-Z0-9]{6,12}$")


def generate_join_code(length: int = JOIN_CODE_LENGTH) -> str:
    """Return a stub join code for when no real game server reported one."""
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(length))


def is_generated_join_code(code: object) -> bool:
    return isinstance(code, str) and bool(_GENERATED_RE.match(code))


def is_relay_join_code(code: object) -> bool:
    """Codes reported by a real server are 6-12 uppercase alphanumerics."""
    return isinstance(code, str) and bool(_RELAY_RE.match(code))


__all__ = [
    "JOIN_CODE_ALPHABET",
    "JOIN_CODE_LENGTH",
    "generate_join_code",
    "is_generated_join_code",
    "is_relay_join_code",
]
