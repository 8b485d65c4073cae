from collections.abc import Callable, Generator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from core.context import ActorContext
from database.session import SessionLocal
from models.user import User
from services.auth_service import InvalidToken, actor_for, decode_token
from services.notification_service import NotificationDispatcher, StoreNotificationDispatcher

bearer = HTTPBearer(auto_error=False)


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


SessionFactoryDep = Annotated[Callable[[], Session], Depends(get_session_factory)]


def get_db(factory: SessionFactoryDep) -> Generator[Session, None, None]:
    db = factory()
    try:
        yield db
    finally:
        db.close()


DbDep = Annotated[Session, Depends(get_db)]


def get_dispatcher(factory: SessionFactoryDep) -> NotificationDispatcher:
    return StoreNotificationDispatcher(factory)


DispatcherDep = Annotated[NotificationDispatcher, Depends(get_dispatcher)]


def get_current_user(
    db: DbDep, creds: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)]
) -> User:
    if not creds or not creds.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated.")

    try:
        payload = decode_token(creds.credentials)
    except InvalidToken:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")

    user = db.query(User).filter(User.id == payload["sub"]).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found.")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def get_actor(user: CurrentUserDep) -> ActorContext:
    try:
        return actor_for(user)
    except InvalidToken:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role.")


ActorDep = Annotated[ActorContext, Depends(get_actor)]


def require_coordinator(actor: ActorDep) -> ActorContext:
    if not actor.is_coordinator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Coordinator access required.")
    return actor


CoordinatorDep = Annotated[ActorContext, Depends(require_coordinator)]
