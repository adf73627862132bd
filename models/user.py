import uuid
import enum
from sqlalchemy import Column, Text, TIMESTAMP, Enum, Uuid
from sqlalchemy.sql import func

from .base import Base


class UserRole(enum.Enum):
    PHOTOGRAPHER = "PHOTOGRAPHER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


# Higher rank inherits every permission of the lower ones.
ROLE_RANK = {
    UserRole.PHOTOGRAPHER: 0,
    UserRole.ADMIN: 1,
    UserRole.SUPER_ADMIN: 2,
}


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=False)
    name = Column(Text, nullable=False, default="")
    password_hash = Column(Text, nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.PHOTOGRAPHER)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_admin(self) -> bool:
        """Admins and super admins."""
        return self.has_role(UserRole.ADMIN)

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    def has_role(self, minimum: UserRole) -> bool:
        return ROLE_RANK[self.role] >= ROLE_RANK[minimum]
