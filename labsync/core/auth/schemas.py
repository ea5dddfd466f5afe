from typing import Optional
from pydantic import BaseModel, ConfigDict


class WarehousePermissions(BaseModel):
    """Banderas de almacén; ausencia de registro equivale a ambas en False"""
    chat_access: bool = False
    stock_modify: bool = False


class UserResponse(BaseModel):
    """Principal autenticado que reciben los servicios"""
    id: int
    name: str
    email: str
    role: str
    is_active: bool
    group_id: Optional[int] = None
    permissions: WarehousePermissions = WarehousePermissions()

    model_config = ConfigDict(from_attributes=True)

