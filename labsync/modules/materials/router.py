from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from labsync.config.database import get_db
from labsync.core.auth.dependencies import get_current_user, require_capability, require_roles
from labsync.core.auth.roles import Capability, Role
from labsync.core.auth.schemas import UserResponse
from .service import MaterialService
from .schemas import (
    MaterialCreate, MaterialResponse, InventoryAdjustment, BulkAdjustment,
    AdjustmentResponse, BulkAdjustmentResponse, InventoryChangeResponse
)

router = APIRouter(prefix="/materials", tags=["Materials - Catálogo e inventario"])

# ===== CATÁLOGO =====

@router.get("", response_model=List[MaterialResponse])
async def list_materials(
    type: Optional[str] = Query(None, description="Filtrar por tipo: liquid, solid, equipment, lab"),
    current_user: UserResponse = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Lista unificada de las cuatro subtablas de material con su stock y unidad
    """
    service = MaterialService(db)
    return service.list_materials(type)


@router.post("", response_model=MaterialResponse, status_code=status.HTTP_201_CREATED)
async def create_material(
    material_data: MaterialCreate,
    current_user: UserResponse = Depends(require_capability(Capability.MODIFY_STOCK)),
    db: Session = Depends(get_db)
):
    """Alta de material (almacén con permiso de stock o administrador)"""
    service = MaterialService(db)
    return service.create_material(material_data, current_user)


@router.get("/low-stock", response_model=List[MaterialResponse])
async def get_low_stock_materials(
    threshold: Optional[int] = Query(None, ge=0, description="Umbral; por defecto el configurado"),
    current_user: UserResponse = Depends(require_capability(Capability.MODIFY_STOCK)),
    db: Session = Depends(get_db)
):
    """Materiales con stock igual o menor al umbral"""
    service = MaterialService(db)
    return service.get_low_stock(threshold)


@router.get("/movements", response_model=List[InventoryChangeResponse])
async def get_inventory_movements(
    type: Optional[str] = Query(None, description="Filtrar por tipo de material"),
    material_id: Optional[int] = Query(None, description="Filtrar por material"),
    limit: int = Query(100, ge=1, le=500),
    current_user: UserResponse = Depends(require_roles([Role.ADMIN])),
    db: Session = Depends(get_db)
):
    """
    Historial de movimientos de stock (solo administradores)

    Incluye reservas, liberaciones, entregas, devoluciones y ajustes.
    """
    service = MaterialService(db)
    return service.get_movements(type, material_id, limit)


@router.post("/adjust-bulk", response_model=BulkAdjustmentResponse)
async def bulk_adjust_inventory(
    bulk: BulkAdjustment,
    current_user: UserResponse = Depends(require_capability(Capability.MODIFY_STOCK)),
    db: Session = Depends(get_db)
):
    """
    Ajuste masivo de stock por deltas

    **Validaciones:**
    - Cada resultado debe ser no negativo
    - Si un renglón falla no se aplica ninguno
    - Se registra un movimiento por renglón
    """
    service = MaterialService(db)
    return service.bulk_adjust(bulk, current_user)


@router.get("/{material_id}", response_model=MaterialResponse)
async def get_material(
    material_id: int,
    type: Optional[str] = Query(None, description="Tipo del material (obligatorio)"),
    current_user: UserResponse = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Obtener un material por ID y tipo. Ejemplo: GET /materials/12?type=liquid"""
    service = MaterialService(db)
    return service.get_material(material_id, type)


@router.post("/{material_id}/adjust", response_model=AdjustmentResponse)
async def adjust_inventory(
    material_id: int,
    adjustment: InventoryAdjustment,
    current_user: UserResponse = Depends(require_capability(Capability.MODIFY_STOCK)),
    db: Session = Depends(get_db)
):
    """
    Ajuste absoluto de inventario

    La cantidad enviada reemplaza el stock actual; debe ser un entero no negativo.
    """
    service = MaterialService(db)
    return service.adjust_inventory(material_id, adjustment, current_user)
