from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext

# Password Hasher (Argon2)
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# JWT Configuration
ALGORITHM = "HS256"


def verify_password(plain_password, hashed_password):
    """Checks a login attempt against the stored hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, secret_key: str, expire_minutes: int = 60):
    """Signed bearer token; `sub` carries the user id."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> dict:
    """Raises jose.JWTError for bad signatures and expired tokens."""
    return jwt.decode(token, secret_key, algorithms=[ALGORITHM])
