"""Input validation predicates for the authentication flow.

Pure functions with no side effects; the orchestrator calls them before
any provider request is made.
"""

from __future__ import annotations


def normalize_email(email: str) -> str:
    """Trim and lower-case an email (allow-list key form)."""
    return email.strip().lower()


def is_valid_email(email: str, strict: bool = True) -> bool:
    """Check that ``email`` is syntactically plausible.

    Parameters
    ----------
    email : str
        The address to check. Surrounding whitespace is ignored.
    strict : bool
        Also require a non-empty local part and a dotted domain.

    Returns
    -------
    bool
        True if the address passes the format check.
    """
    email = email.strip()
    if "@" not in email:
        return False
    if not strict:
        return True
    local, _, domain = email.rpartition("@")
    if not local or " " in email:
        return False
    head, dot, tail = domain.rpartition(".")
    return bool(head and dot and tail)


def is_valid_login_input(email: str, password: str, strict: bool = True) -> bool:
    """Non-empty email and password, with a plausible email."""
    if not email or not password:
        return False
    return is_valid_email(email, strict=strict)


def is_valid_otp(code: str, length: int = 6) -> bool:
    """Exactly ``length`` ASCII digits."""
    return len(code) == length and code.isascii() and code.isdigit()


def password_problems(new_password: str, confirm_password: str, min_length: int = 8) -> list[str]:
    """List the password requirements ``new_password`` does not meet.

    Parameters
    ----------
    new_password : str
        The candidate password.
    confirm_password : str
        The confirmation entry; must equal ``new_password``.
    min_length : int
        Minimum number of characters.

    Returns
    -------
    list[str]
        Human-readable unmet requirements, empty when the password is valid.
    """
    problems = []
    if len(new_password) < min_length:
        problems.append(f"at least {min_length} characters")
    if not any(ch.isupper() for ch in new_password):
        problems.append("an upper-case letter")
    if not any(ch.islower() for ch in new_password):
        problems.append("a lower-case letter")
    if not any(ch.isdigit() for ch in new_password):
        problems.append("a digit")
    if not any(not ch.isalpha() and not ch.isdigit() for ch in new_password):
        problems.append("a special character")
    if new_password != confirm_password:
        problems.append("matching confirmation")
    return problems


def is_valid_new_password(new_password: str, confirm_password: str, min_length: int = 8) -> bool:
    """Whether the password policy and the confirmation are satisfied."""
    return not password_problems(new_password, confirm_password, min_length)
