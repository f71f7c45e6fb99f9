from typing import Self, ClassVar, Optional

from aiogram.types import User as TgUser

from hackscore.db.schemas.user import UserRead, UserCreate, UserUpdate
from hackscore.db.database import DataBase
from hackscore.bot.services.audit_log import instrument_service_class


class UserService:
    _instance: ClassVar[Optional["UserService"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self.database = DataBase()
        self.users: dict[int, UserRead] = dict()
        self._initialized = True

    async def create_user(self, user: UserCreate) -> UserRead:
        new_user = await self.database.create_user(user)
        if type(new_user.tg_id) is int:
            self.users[new_user.tg_id] = new_user
        return new_user

    async def update_user(self, user: UserUpdate) -> UserRead:
        new_user = await self.database.update_user(user)
        if type(new_user.tg_id) is int:
            self.users[new_user.tg_id] = new_user
        return new_user

    async def get_user(self, tg_user: TgUser, autocreate: bool = True) -> Optional[UserRead]:
        """
        Resolve the platform user behind a Telegram account.
        Cached users are refreshed when their Telegram profile changed.
        """
        user = self.users.get(tg_user.id)
        if user is None:
            user = await self.database.get_user_by_tg_id(tg_user.id)
            if user is None and autocreate:
                return await self.create_user(
                    UserCreate(
                        tg_id=tg_user.id,
                        tg_username=tg_user.username,
                        first_name=tg_user.first_name,
                        last_name=tg_user.last_name,
                        language_code=tg_user.language_code,
                    )
                )
            if user is None:
                return None
            self.users[tg_user.id] = user

        changed = UserUpdate(id=user.id)
        upd = False
        if user.tg_username != tg_user.username:
            changed.tg_username = tg_user.username
            upd = True
        if user.language_code != tg_user.language_code:
            changed.language_code = tg_user.language_code
            upd = True
        if upd:
            user = await self.update_user(changed)
        return user


instrument_service_class(
    UserService,
    prefix="services.user",
    actor_fields=("user",),
    exclude={"get_user"},
)
