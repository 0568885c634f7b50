from fastapi import Depends, HTTPException, Request, status

from orderauth.schemas.session import Session
from orderauth.services.engine import AuthEngine


def get_engine(request: Request) -> AuthEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting",
        )
    return engine


async def get_current_session(engine: AuthEngine = Depends(get_engine)) -> Session:
    session = await engine.sessions.get_session()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return session


def require_admin(session: Session = Depends(get_current_session)) -> Session:
    if not session.is_admin:
        raise HTTPException(status_code=403, detail="The user is not an admin")
    return session


def require_customer(session: Session = Depends(get_current_session)) -> Session:
    if session.is_admin:
        raise HTTPException(status_code=403, detail="The user is not a customer")
    return session
