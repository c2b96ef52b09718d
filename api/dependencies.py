"""API Dependencies - Authentication"""
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from domain.auth import User, UserInDB
from domain.enums import UserRole
from infrastructure.security import decode_access_token, get_password_hash
from api.schemas import TokenData

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# Demo user store; passwords are hashed on first access
_fake_users_db = {
    "admin": {
        "username": "admin",
        "full_name": "Admin User",
        "email": "admin@example.com",
        "plain_password": "admin123",
        "role": UserRole.ADMIN,
        "disabled": False,
        "user_id": "123e4567-e89b-12d3-a456-426614174000"
    },
    "manager": {
        "username": "manager",
        "full_name": "Hotel Manager",
        "email": "manager@example.com",
        "plain_password": "manager123",
        "role": UserRole.HOTEL_MANAGER,
        "disabled": False,
        "user_id": "123e4567-e89b-12d3-a456-426614174001"
    },
    "alice": {
        "username": "alice",
        "full_name": "Alice Guest",
        "email": "alice@example.com",
        "plain_password": "alice123",
        "role": UserRole.GUEST,
        "disabled": False,
        "user_id": "123e4567-e89b-12d3-a456-426614174002"
    },
    "bob": {
        "username": "bob",
        "full_name": "Bob Guest",
        "email": "bob@example.com",
        "plain_password": "bob123",
        "role": UserRole.GUEST,
        "disabled": False,
        "user_id": "123e4567-e89b-12d3-a456-426614174003"
    },
    "carol": {
        "username": "carol",
        "full_name": "Carol Inactive",
        "email": "carol@example.com",
        "plain_password": "carol123",
        "role": UserRole.GUEST,
        "disabled": True,
        "user_id": "123e4567-e89b-12d3-a456-426614174004"
    }
}

fake_users_db = _fake_users_db

_password_hash_cache = {}

def _get_hashed_password(username: str) -> str:
    """Lazily hash passwords on first access"""
    if username not in _password_hash_cache:
        user = _fake_users_db.get(username)
        if user and "plain_password" in user:
            _password_hash_cache[username] = get_password_hash(user["plain_password"])
    return _password_hash_cache.get(username, "")

def get_user(db, username: str):
    if username in db:
        user_dict = db[username].copy()
        if "plain_password" in user_dict:
            user_dict["hashed_password"] = _get_hashed_password(username)
            del user_dict["plain_password"]
        return UserInDB(**user_dict)
    return None

async def get_current_user(token: str = Depends(oauth2_scheme)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        claims = decode_access_token(token)
        token_data = TokenData(username=claims["sub"])
    except JWTError:
        raise credentials_exception

    user = get_user(_fake_users_db, username=token_data.username)
    if user is None:
        raise credentials_exception
    # a token issued before a role change no longer grants that role
    if claims.get("role", user.role.value) != user.role.value:
        raise credentials_exception
    return user

async def get_current_active_user(current_user: User = Depends(get_current_user)):
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user

async def get_current_admin_user(current_user: User = Depends(get_current_active_user)):
    if not current_user.is_admin():
        raise HTTPException(status_code=403, detail="Administrator access required")
    return current_user
