import enum
from sqlalchemy import String, Integer, Enum, ForeignKey, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.base import Base

class Role(str, enum.Enum):
    USER = "user"
    INTER_LAB_SENDER = "inter_lab_sender"
    DELEGATED_ADMIN = "delegated_admin"
    SUPERADMIN = "superadmin"

ADMIN_ROLES = (Role.DELEGATED_ADMIN, Role.SUPERADMIN)

ROLE_LABELS = {
    Role.USER: "User",
    Role.INTER_LAB_SENDER: "Inter Lab sender",
    Role.DELEGATED_ADMIN: "Delegated Admin",
    Role.SUPERADMIN: "Superadmin",
}

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str] = mapped_column(String(180), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), default="")

    role: Mapped[Role] = mapped_column(Enum(Role), index=True, default=Role.USER)

    lab_id: Mapped[int | None] = mapped_column(ForeignKey("labs.id"), nullable=True, index=True)
    designation: Mapped[str] = mapped_column(String(120), default="", index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    lab = relationship("Lab", back_populates="users")

    @property
    def role_label(self) -> str:
        return ROLE_LABELS.get(self.role, self.role.value)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
