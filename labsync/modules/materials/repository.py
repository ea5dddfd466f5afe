from datetime import datetime
from typing import List, Optional, Dict, Any
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import desc

from labsync.shared.database.models import InventoryChange
from .resolver import MaterialTable, resolve_material_type, all_material_tables

MATERIAL_NOT_FOUND = "Material no encontrado"

class MaterialRepository:
    """Consultas del catálogo sobre las cuatro tablas de material"""

    def __init__(self, db: Session):
        self.db = db

    def get_material(self, material_type: str, material_id: int):
        table = resolve_material_type(material_type)
        return self.db.query(table.model).filter(table.model.id == material_id).first()

    def get_material_name(self, material_type: str, material_id: int) -> Optional[str]:
        table = resolve_material_type(material_type)
        return self.db.query(table.model.name).filter(table.model.id == material_id).scalar()

    def list_materials(self, material_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Lista unificada de las subtablas (o de una sola si se indica el tipo)"""
        tables = [resolve_material_type(material_type)] if material_type else all_material_tables()

        materials = []
        for table in tables:
            for material in self.db.query(table.model).order_by(table.model.name).all():
                materials.append(self.to_dict(table, material))
        return materials

    def get_low_stock(self, threshold: int) -> List[Dict[str, Any]]:
        materials = []
        for table in all_material_tables():
            rows = self.db.query(table.model)\
                .filter(table.quantity_column <= threshold)\
                .order_by(table.quantity_column, table.model.name)\
                .all()
            materials.extend(self.to_dict(table, m) for m in rows)
        return materials

    def create_material(self, table: MaterialTable, material_data: dict, quantity: int):
        material = table.model(**material_data)
        setattr(material, table.quantity_field, quantity)
        self.db.add(material)
        self.db.flush()
        return material

    def get_movements(
        self,
        material_type: Optional[str] = None,
        material_id: Optional[int] = None,
        limit: int = 100
    ) -> List[InventoryChange]:
        query = self.db.query(InventoryChange)
        if material_type:
            query = query.filter(InventoryChange.material_type == resolve_material_type(material_type).tag.value)
        if material_id is not None:
            query = query.filter(InventoryChange.material_id == material_id)
        return query.order_by(desc(InventoryChange.created_at), desc(InventoryChange.id)).limit(limit).all()

    @staticmethod
    def to_dict(table: MaterialTable, material) -> Dict[str, Any]:
        data = {
            "id": material.id,
            "name": material.name,
            "type": table.tag.value,
            "quantity": table.quantity_of(material),
            "unit": table.unit,
            "description": material.description,
            "image_url": material.image_url,
        }
        if table.has_hazards:
            data["physical_hazards"] = _split_tags(material.physical_hazards)
            data["health_hazards"] = _split_tags(material.health_hazards)
            data["environmental_hazards"] = _split_tags(material.environmental_hazards)
        return data


def _split_tags(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [tag.strip() for tag in value.split(";") if tag.strip()]


class StockLedger:
    """
    Contadores de stock por tipo. Toda mutación pasa por aquí y deja un
    renglón en InventoryChange. No hace commit: el servicio que la invoca
    define la transacción.
    """

    def __init__(self, db: Session):
        self.db = db

    def _current_quantity(self, table: MaterialTable, material_id: int, for_update: bool = False) -> int:
        query = self.db.query(table.quantity_column).filter(table.model.id == material_id)
        if for_update:
            query = query.with_for_update()
        quantity = query.scalar()
        if quantity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MATERIAL_NOT_FOUND)
        return quantity

    def available(self, material_type: str, material_id: int) -> int:
        return self._current_quantity(resolve_material_type(material_type), material_id)

    def decrement(
        self,
        material_type: str,
        material_id: int,
        quantity: int,
        change_type: str,
        user_id: Optional[int] = None,
        reference_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> int:
        """Descuento condicional: solo se aplica si el stock resultante es >= 0"""
        table = resolve_material_type(material_type)
        self._current_quantity(table, material_id)

        column = table.quantity_column
        rows_updated = self.db.query(table.model)\
            .filter(table.model.id == material_id, column >= quantity)\
            .update({column: column - quantity}, synchronize_session=False)

        if rows_updated == 0:
            available = self._current_quantity(table, material_id)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Stock insuficiente para el material {material_id} ({table.tag.value}). "
                       f"Disponible: {available}, Solicitado: {quantity}"
            )

        after = self._current_quantity(table, material_id)
        self._record(table, material_id, change_type, after + quantity, after, user_id, reference_id, notes)
        return after

    def increment(
        self,
        material_type: str,
        material_id: int,
        quantity: int,
        change_type: str,
        user_id: Optional[int] = None,
        reference_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> int:
        table = resolve_material_type(material_type)
        self._current_quantity(table, material_id)

        column = table.quantity_column
        self.db.query(table.model)\
            .filter(table.model.id == material_id)\
            .update({column: column + quantity}, synchronize_session=False)

        after = self._current_quantity(table, material_id)
        self._record(table, material_id, change_type, after - quantity, after, user_id, reference_id, notes)
        return after

    def set_quantity(
        self,
        material_type: str,
        material_id: int,
        new_quantity: int,
        change_type: str,
        user_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> int:
        """Ajuste absoluto (no delta)"""
        table = resolve_material_type(material_type)
        if new_quantity < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="La cantidad no puede ser negativa"
            )

        before = self._current_quantity(table, material_id, for_update=True)
        self._write(table, material_id, new_quantity)
        self._record(table, material_id, change_type, before, new_quantity, user_id, None, notes)
        return new_quantity

    def apply_delta(
        self,
        material_type: str,
        material_id: int,
        delta: int,
        change_type: str,
        user_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> int:
        """Leer actual, sumar delta, validar no negativo, escribir"""
        table = resolve_material_type(material_type)
        before = self._current_quantity(table, material_id, for_update=True)

        new_quantity = before + delta
        if new_quantity < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"La cantidad no puede ser negativa (material {material_id}, {table.tag.value})"
            )

        self._write(table, material_id, new_quantity)
        self._record(table, material_id, change_type, before, new_quantity, user_id, None, notes)
        return new_quantity

    def _write(self, table: MaterialTable, material_id: int, quantity: int):
        self.db.query(table.model)\
            .filter(table.model.id == material_id)\
            .update({table.quantity_column: quantity}, synchronize_session=False)

    def _record(
        self,
        table: MaterialTable,
        material_id: int,
        change_type: str,
        quantity_before: int,
        quantity_after: int,
        user_id: Optional[int],
        reference_id: Optional[int],
        notes: Optional[str]
    ):
        self.db.add(InventoryChange(
            material_id=material_id,
            material_type=table.tag.value,
            change_type=change_type,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            reference_id=reference_id,
            user_id=user_id,
            notes=notes,
            created_at=datetime.utcnow()
        ))
