from fastapi import APIRouter, Depends, HTTPException

from orderauth.api.deps import get_engine, require_customer
from orderauth.schemas.auth import CustomerOut, ProfileUpdateIn
from orderauth.schemas.session import Session
from orderauth.services.engine import AuthEngine

router = APIRouter(prefix="/me", tags=["profile"])


@router.get("/profile", response_model=CustomerOut)
async def get_profile(
    engine: AuthEngine = Depends(get_engine),
    session: Session = Depends(require_customer),
):
    customer = await engine.rows.get_customer(session.id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return customer


@router.patch("/profile", response_model=CustomerOut)
async def update_profile(
    payload: ProfileUpdateIn,
    engine: AuthEngine = Depends(get_engine),
    session: Session = Depends(require_customer),
):
    changes = payload.model_dump(exclude_unset=True)
    customer = await engine.rows.update_customer(session.id, changes)
    if customer is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    await engine.sessions.remember(Session.from_customer(customer))
    return customer
