from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class User(SQLModel, table=True):
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    full_name: str = ""
    role: str = "customer"  # "admin" | "customer"
    is_active: bool = True
    created_at: datetime | None = Field(default_factory=utcnow)
