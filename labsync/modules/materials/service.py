import logging
from typing import List, Optional
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from labsync.config.database import transaction
from labsync.config.settings import settings
from labsync.core.auth.schemas import UserResponse
from .repository import MaterialRepository, StockLedger, MATERIAL_NOT_FOUND
from .resolver import resolve_material_type
from .schemas import (
    MaterialCreate, MaterialResponse, InventoryAdjustment, BulkAdjustment,
    AdjustmentResponse, BulkAdjustmentResponse, InventoryChangeResponse, ChangeType
)

logger = logging.getLogger(__name__)


class MaterialService:

    def __init__(self, db: Session):
        self.db = db
        self.repository = MaterialRepository(db)
        self.ledger = StockLedger(db)

    # ===== CATÁLOGO =====

    def list_materials(self, material_type: Optional[str] = None) -> List[MaterialResponse]:
        return [MaterialResponse(**m) for m in self.repository.list_materials(material_type)]

    def get_material(self, material_id: int, material_type: Optional[str]) -> MaterialResponse:
        table = resolve_material_type(material_type)
        material = self.repository.get_material(table.tag.value, material_id)
        if not material:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MATERIAL_NOT_FOUND)
        return MaterialResponse(**self.repository.to_dict(table, material))

    def create_material(self, material_data: MaterialCreate, user: UserResponse) -> MaterialResponse:
        table = resolve_material_type(material_data.type)

        fields = {
            "name": material_data.name,
            "description": material_data.description,
            "image_url": material_data.image_url,
        }
        if table.has_hazards:
            fields["physical_hazards"] = ";".join(material_data.physical_hazards) or None
            fields["health_hazards"] = ";".join(material_data.health_hazards) or None
            fields["environmental_hazards"] = ";".join(material_data.environmental_hazards) or None

        with transaction(self.db):
            material = self.repository.create_material(table, fields, material_data.quantity)
            response = MaterialResponse(**self.repository.to_dict(table, material))

        logger.info(f"Material creado: {table.tag.value}#{response.id} '{response.name}' por usuario {user.id}")
        return response

    def get_low_stock(self, threshold: Optional[int] = None) -> List[MaterialResponse]:
        limit = settings.low_stock_threshold if threshold is None else threshold
        return [MaterialResponse(**m) for m in self.repository.get_low_stock(limit)]

    def get_movements(
        self,
        material_type: Optional[str] = None,
        material_id: Optional[int] = None,
        limit: int = 100
    ) -> List[InventoryChangeResponse]:
        movements = self.repository.get_movements(material_type, material_id, limit)
        return [InventoryChangeResponse.model_validate(m) for m in movements]

    # ===== AJUSTES DE INVENTARIO =====

    def adjust_inventory(self, material_id: int, adjustment: InventoryAdjustment,
                         user: UserResponse) -> AdjustmentResponse:
        """Ajuste absoluto: la cantidad recibida reemplaza el stock actual"""
        table = resolve_material_type(adjustment.type)

        with transaction(self.db):
            new_stock = self.ledger.set_quantity(
                table.tag.value,
                material_id,
                adjustment.quantity,
                ChangeType.ADJUST.value,
                user_id=user.id,
                notes=adjustment.notes
            )

        logger.info(f"Inventario ajustado: {table.tag.value}#{material_id} -> {new_stock} por usuario {user.id}")
        return AdjustmentResponse(
            message="Inventario actualizado correctamente",
            material_id=material_id,
            type=table.tag.value,
            new_stock=new_stock
        )

    def bulk_adjust(self, bulk: BulkAdjustment, user: UserResponse) -> BulkAdjustmentResponse:
        """Ajuste masivo por deltas; si un renglón falla no se aplica ninguno"""
        for entry in bulk.adjustments:
            resolve_material_type(entry.type)

        results = []
        with transaction(self.db):
            for entry in bulk.adjustments:
                new_stock = self.ledger.apply_delta(
                    entry.type,
                    entry.id,
                    entry.delta,
                    ChangeType.BULK_ADJUST.value,
                    user_id=user.id,
                    notes=bulk.notes
                )
                results.append(AdjustmentResponse(
                    message="Inventario actualizado correctamente",
                    material_id=entry.id,
                    type=resolve_material_type(entry.type).tag.value,
                    new_stock=new_stock
                ))

        logger.info(f"Ajuste masivo de {len(results)} materiales por usuario {user.id}")
        return BulkAdjustmentResponse(
            message=f"{len(results)} ajustes aplicados",
            results=results
        )
