"""
Módulo de Administración - LabSync

Alta, bloqueo y eliminación de usuarios, permisos finos de almacén,
estadísticas y mantenimiento.
"""

from .router import router as admin_router
from .service import AdminService

__all__ = ["admin_router", "AdminService"]
