# institute_api/auth.py
# Bearer tokens are issued by the identity service; this module only resolves them.
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from institute_api import config, models
from institute_api.database import get_db
from institute_api.errors import PermissionDenied

security = HTTPBearer(auto_error=False)

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> models.User:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Access denied. No token provided.")
    try:
        payload = jwt.decode(credentials.credentials, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    user_id = payload.get("id")
    user = db.get(models.User, user_id) if user_id is not None else None
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid token or user not active.")
    return user


def require_roles(*roles: str):
    def role_checker(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in roles:
            raise PermissionDenied(
                "Access denied. Insufficient permissions.",
                required=list(roles),
                current=current_user.role,
            )
        return current_user
    return role_checker
