"""
Resolución del tipo de material.

Un renglón de solicitud o un adeudo apunta a su material con el par
(material_type, material_id); la tabla de destino depende del tipo. Esta es
la única correspondencia etiqueta -> (tabla, columna de stock) del sistema.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Type

from fastapi import HTTPException, status

from labsync.shared.database.models import (
    MaterialLiquid, MaterialSolid, MaterialEquipment, MaterialLabItem
)

INVALID_MATERIAL_TYPE = "Tipo de material inválido"


class MaterialType(str, Enum):
    LIQUID = "liquid"
    SOLID = "solid"
    EQUIPMENT = "equipment"
    LAB = "lab"


@dataclass(frozen=True)
class MaterialTable:
    tag: MaterialType
    model: Type
    quantity_field: str
    unit: str
    has_hazards: bool = False

    @property
    def quantity_column(self):
        return getattr(self.model, self.quantity_field)

    def quantity_of(self, material) -> int:
        return getattr(material, self.quantity_field)


_MATERIAL_TABLES: Dict[MaterialType, MaterialTable] = {
    MaterialType.LIQUID: MaterialTable(MaterialType.LIQUID, MaterialLiquid, "quantity_ml", "mL", True),
    MaterialType.SOLID: MaterialTable(MaterialType.SOLID, MaterialSolid, "quantity_g", "g", True),
    MaterialType.EQUIPMENT: MaterialTable(MaterialType.EQUIPMENT, MaterialEquipment, "quantity_units", "u"),
    MaterialType.LAB: MaterialTable(MaterialType.LAB, MaterialLabItem, "quantity_units", "u"),
}


def resolve_material_type(tag: Optional[str]) -> MaterialTable:
    """Etiqueta de tipo -> tabla y columna de stock; etiqueta desconocida es un 400"""
    try:
        return _MATERIAL_TABLES[MaterialType(tag)]
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_MATERIAL_TYPE)


def all_material_tables():
    return list(_MATERIAL_TABLES.values())
