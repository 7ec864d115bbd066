"""User listing and presence routes."""
from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from . import schemas
from .auth import get_current_user_id
from .database import get_db
from .models import User

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=List[schemas.UserOut])
def list_users(db: Session = Depends(get_db), _: int = Depends(get_current_user_id)):
    return db.query(User).order_by(User.id).all()


@router.get("/online", response_model=schemas.OnlineUsersOut)
async def online_users(request: Request, _: int = Depends(get_current_user_id)):
    user_ids = await request.app.state.registry.online_user_ids()
    return schemas.OnlineUsersOut(user_ids=user_ids)
