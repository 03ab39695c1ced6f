from __future__ import annotations
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, JSON, DateTime, text
from typing import List

Base = declarative_base()


class User(Base):
    __tablename__ = 'users'
    ROLE_ADMIN = 'Admin'
    ROLE_MANAGER = 'Manager'
    ROLE_USER = 'User'
    ALL_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_USER)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_USER)
    # Empty for Admin (implicitly every shop)
    shops: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    def set_password(self, raw: str):
        from tailorshop.services.identity import hash_password
        self.password_hash = hash_password(raw)

    def verify_password(self, raw: str) -> bool:
        from tailorshop.services.identity import verify_password
        return verify_password(raw, self.password_hash)
