import bcrypt

from .error_handlers import ValidationError, get_error_message

# bcrypt only looks at the first 72 bytes.
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    if not password:
        raise ValidationError(get_error_message("weak_password"))

    pw_bytes = password.encode("utf-8")
    if len(pw_bytes) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be {MAX_PASSWORD_BYTES} bytes or less")

    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    pw_bytes = password.encode("utf-8")
    if len(pw_bytes) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False
