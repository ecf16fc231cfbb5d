import hashlib
import hmac
import secrets
from typing import Optional, Tuple


# Hash de senha com PBKDF2 (sem dependências externas)
def hash_password(password: str, salt: Optional[str] = None) -> Tuple[str, str]:
    salt = salt or secrets.token_hex(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), 100_000)
    return salt, dk.hex()


def verify_password(password: str, salt: str, hashed_hex: str) -> bool:
    _, check = hash_password(password, salt)
    return secrets.compare_digest(check, hashed_hex)


def encode_password(password: str) -> str:
    salt, hashed = hash_password(password)
    return f"{salt}${hashed}"


def check_password(password: str, stored: Optional[str]) -> bool:
    try:
        salt, stored_hex = (stored or "").split("$", 1)
    except ValueError:
        return False
    return verify_password(password, salt, stored_hex)


# --- Token HMAC simples: "<user_id>.<hex hmac>" ---
def make_token(secret_key: str, user_id: int) -> str:
    sig = hmac.new(secret_key.encode(), str(user_id).encode(), hashlib.sha256).hexdigest()
    return f"{user_id}.{sig}"


def parse_token(secret_key: str, token: str) -> Optional[int]:
    user_str, _, sig = (token or "").partition(".")
    if not user_str.isdigit() or not sig:
        return None
    exp = hmac.new(secret_key.encode(), user_str.encode(), hashlib.sha256).hexdigest()
    if hmac.compare_digest(exp, sig):
        return int(user_str)
    return None
