from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import bearer_token, get_current_user, revoke_session_token
from ..database import get_db

# purpose: let session holders inspect and end their own session
# status: production

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.get("/me", response_model=schemas.UserOut)
def read_current_user(user: models.User = Depends(get_current_user)):
    return user


@router.post("/logout")
def logout(
    token: Optional[str] = Depends(bearer_token),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    revoked = revoke_session_token(db, token)
    return {"revoked": revoked}
