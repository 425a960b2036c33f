import base64
import secrets

def rand_letters(size: int) -> str:
    """
    Returns `size` URL-safe characters derived from `size` random bytes.
    Truncating the base64 text is not uniform over the output alphabet; the
    value only ever serves as a correlation id in URLs, never as a secret.
    """
    if size <= 0:
        return ""
    random = secrets.token_bytes(size)
    return base64.urlsafe_b64encode(random).decode("ascii")[:size]
