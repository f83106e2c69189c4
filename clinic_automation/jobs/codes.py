"""Sequential per-tenant codes such as INV-000042 and APT-000007."""

from typing import Optional

CODE_DIGITS = 6


def next_code(prefix: str, last_code: Optional[str]) -> str:
    """The code following last_code; the first code when there is none or it is not ours."""
    number = 0
    if last_code and last_code.startswith(f"{prefix}-"):
        suffix = last_code[len(prefix) + 1:]
        if suffix.isdigit():
            number = int(suffix)
    return f"{prefix}-{number + 1:0{CODE_DIGITS}d}"
