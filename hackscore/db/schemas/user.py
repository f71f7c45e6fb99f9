# db/schemas/user.py
import uuid
from typing import Optional
from hackscore.db.schemas._base import OrmModel
from hackscore.db.enums import UserRole
from hackscore.utils.sentinels import Missing

class UserBase(OrmModel):
    tg_id: Optional[int] = None
    tg_username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language_code: Optional[str] = None
    role: UserRole = UserRole.PARTICIPANT

class UserCreate(UserBase): ...

class UserUpdate(OrmModel):
    id: uuid.UUID
    tg_username: str | Missing | None = Missing()
    first_name: str | Missing | None = Missing()
    last_name: str | Missing | None = Missing()
    language_code: str | Missing | None = Missing()
    role: UserRole | Missing = Missing()

class UserRead(UserBase):
    id: uuid.UUID
