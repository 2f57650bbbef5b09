from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth as firebase_auth
from sqlalchemy.orm import Session

from assessment_portal.core.settings import settings
from assessment_portal.db import get_db
from assessment_portal.models.user import User, UserRole
from assessment_portal.utils.datetime import utc_now_naive

security = HTTPBearer()

# Fixed development tokens; persisted on first use so foreign keys resolve
MOCK_TOKENS = {
    "mock-admin-token": ("admin-1", "Admin One", "admin@example.com", UserRole.admin),
    "mock-candidate-token": ("candidate-1", "Candidate One", "candidate@example.com", UserRole.candidate),
    "mock-supervisor-token": ("supervisor-1", "Supervisor One", "supervisor@example.com", UserRole.supervisor),
}


def mock_tokens_enabled() -> bool:
    return settings.is_development or settings.environment.lower() == "test"


def _role_from_claim(claim) -> UserRole:
    if claim == "admin":
        return UserRole.admin
    if claim == "supervisor":
        return UserRole.supervisor
    return UserRole.candidate


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    if token in MOCK_TOKENS and mock_tokens_enabled():
        uid, name, email, role = MOCK_TOKENS[token]
        user = db.query(User).filter(User.id == uid).first()
        if not user:
            user = User(id=uid, name=name, email=email, role=role, created_at=utc_now_naive())
            db.add(user)
            db.commit()
            db.refresh(user)
        return user

    try:
        decoded_token = firebase_auth.verify_id_token(token)
        user_id = decoded_token["uid"]
        email = decoded_token["email"]
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired Firebase token",
        )

    user = db.query(User).filter(User.id == user_id).first()
    if user:
        return user

    # Accounts provisioned before first login are matched by email
    user = db.query(User).filter(User.email == email).first()
    if user:
        user.id = user_id
        db.commit()
        return user

    user = User(
        id=user_id,
        email=email,
        name=decoded_token.get("name") or email.split("@")[0].title(),
        role=_role_from_claim(decoded_token.get("role")),
        candidate_id=decoded_token.get("candidate_id"),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return user
