import logging
from datetime import timedelta
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from school_library.config import settings
from school_library.models.user import User, Student
from school_library.database import get_db
from school_library.utils.timezone import now_local

logger = logging.getLogger(__name__)

# HTTP Bearer token - auto_error=False so we can handle errors ourselves
security = HTTPBearer(auto_error=False)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create a JWT access token signed with the secret shared with the school auth service."""
    to_encode = data.copy()
    if expires_delta:
        expire = now_local() + expires_delta
    else:
        expire = now_local() + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return encoded_jwt

def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from JWT token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials. Please provide a valid Authorization header with Bearer token.",
        headers={"WWW-Authenticate": "Bearer"},
    )

    # Check if credentials were provided
    if credentials is None:
        auth_header = request.headers.get("Authorization")
        if auth_header:
            logger.warning(f"Authorization header present but invalid format: {auth_header[:50]}")
        else:
            logger.warning("Authorization header missing")
        raise credentials_exception

    try:
        token = credentials.credentials
        if not token:
            raise credentials_exception

        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        user_id_str: str = payload.get("sub")
        if user_id_str is None:
            raise credentials_exception
        user_id = int(user_id_str)
    except JWTError as e:
        logger.warning(f"JWT validation error: {str(e)}")
        raise credentials_exception
    except (ValueError, TypeError) as e:
        logger.warning(f"Token parsing error: {str(e)}")
        raise credentials_exception

    user = db.query(User).filter(User.user_id == user_id).first()
    if user is None:
        raise credentials_exception
    return user

def require_staff(current_user: User = Depends(get_current_user)) -> User:
    """Librarians and admins only."""
    if not current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only librarians and admins can perform this operation"
        )
    return current_user

def student_for_user(db: Session, user: User) -> Optional[Student]:
    return db.query(Student).filter(Student.user_id == user.user_id).first()

def ensure_student_access(db: Session, user: User, student_id: int):
    """Staff see every student; a student only their own records."""
    if user.is_staff:
        return
    student = student_for_user(db, user)
    if student is None or student.student_id != student_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only access your own library records"
        )
