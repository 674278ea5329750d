import hashlib

from session_cache.models.session import SessionType


def session_key(session_type: SessionType | str, email: str) -> str:
    """
    Derive the cache key for a session.

    The email is normalized (stripped, lower-cased) before hashing, so
    cosmetic differences in the address map to the same key.

    Args:
        session_type: Session type.
        email: Account email.

    Returns:
        Key of the form ``{sessionType}-{emailHash}``.
    """
    email_hash = hashlib.md5(email.strip().lower().encode("utf-8"), usedforsecurity=False)
    return f"{SessionType(session_type)}-{email_hash.hexdigest()[:8]}"
