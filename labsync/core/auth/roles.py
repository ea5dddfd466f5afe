"""
Roles del sistema y tabla de capacidades.

Todos los chequeos de autorización pasan por aquí en lugar de comparar
identificadores de rol en cada endpoint.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    WAREHOUSE = "warehouse"
    ADMIN = "admin"


class Capability(str, Enum):
    CREATE_REQUEST = "create_request"
    REVIEW_REQUEST = "review_request"
    DELIVER_REQUEST = "deliver_request"
    MODIFY_STOCK = "modify_stock"
    CHAT = "chat"
    MANAGE_USERS = "manage_users"


# Capacidades que solo se activan con la bandera correspondiente de WarehousePermission
WAREHOUSE_FLAG_FOR_CAPABILITY: Dict[Capability, str] = {
    Capability.DELIVER_REQUEST: "stock_modify",
    Capability.MODIFY_STOCK: "stock_modify",
    Capability.CHAT: "chat_access",
}

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.STUDENT: frozenset({Capability.CREATE_REQUEST, Capability.CHAT}),
    Role.TEACHER: frozenset({Capability.CREATE_REQUEST, Capability.REVIEW_REQUEST, Capability.CHAT}),
    Role.WAREHOUSE: frozenset({Capability.DELIVER_REQUEST, Capability.MODIFY_STOCK, Capability.CHAT}),
    Role.ADMIN: frozenset({Capability.MODIFY_STOCK, Capability.MANAGE_USERS, Capability.CHAT}),
}


def parse_role(value: str) -> Optional[Role]:
    try:
        return Role(value)
    except ValueError:
        return None


def has_capability(role: str, capability: Capability, permissions: Optional[dict] = None) -> bool:
    """
    True si el rol concede la capacidad. Para almacén, además exige la
    bandera de permiso asociada; sin registro de permisos ambas son False.
    """
    parsed = parse_role(role)
    if parsed is None or capability not in ROLE_CAPABILITIES[parsed]:
        return False

    if parsed == Role.WAREHOUSE and capability in WAREHOUSE_FLAG_FOR_CAPABILITY:
        flag = WAREHOUSE_FLAG_FOR_CAPABILITY[capability]
        return bool((permissions or {}).get(flag, False))

    return True
