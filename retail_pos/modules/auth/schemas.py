from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class Role(str, Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    CASHIER = "cashier"


class AuthContext(BaseModel):
    """Identidad del usuario autenticado, tal como la entrega el proveedor de identidad."""
    user_id: UUID
    user_role: Optional[Role] = None
    email: Optional[str] = None
