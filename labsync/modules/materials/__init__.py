"""
Módulo de Materiales - LabSync

Catálogo de las cuatro tablas de material (líquidos, sólidos, equipos y
material de laboratorio) y el libro de stock que las modifica.

Arquitectura:
- resolver.py: etiqueta de tipo -> (tabla, columna de stock)
- repository.py: consultas del catálogo y StockLedger
- service.py: ajustes de inventario
- router.py: Endpoints FastAPI
- schemas.py: Modelos Pydantic de request/response
"""

from .router import router as materials_router
from .service import MaterialService
from .repository import MaterialRepository, StockLedger
from .resolver import MaterialType, resolve_material_type

__all__ = [
    "materials_router",
    "MaterialService",
    "MaterialRepository",
    "StockLedger",
    "MaterialType",
    "resolve_material_type"
]
