from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

# ===== REQUEST SCHEMAS =====

class SettleItem(BaseModel):
    item_id: int = Field(..., gt=0, description="ID del renglón de la solicitud")
    quantity: Optional[int] = Field(None, gt=0, description="Cantidad devuelta; por defecto todo lo pendiente")

class SettleRequest(BaseModel):
    """Devolución (total o parcial) de materiales entregados"""
    items: List[SettleItem] = Field(..., min_length=1)

class DamageReport(BaseModel):
    """Material entregado que regresó dañado; vuelve a quedar como adeudo"""
    item_id: int = Field(..., gt=0, description="ID del renglón de la solicitud")
    quantity: int = Field(..., gt=0, description="Cantidad dañada")
    description: Optional[str] = Field(None, max_length=255)

# ===== RESPONSE SCHEMAS =====

class DebtItemResponse(BaseModel):
    item_id: int
    material_id: int
    type: str
    material_name: Optional[str] = None
    outstanding_quantity: int
    delivered_at: datetime

class DebtDetailResponse(BaseModel):
    """Encabezado de la solicitud y renglones aún pendientes"""
    request_id: int
    folio: str
    student_name: str
    reviewer_name: str
    delivered_at: Optional[datetime] = None
    items: List[DebtItemResponse] = []

class SettledItemResponse(BaseModel):
    item_id: int
    returned_quantity: int
    outstanding_quantity: int
    new_stock: int

class SettleResponse(BaseModel):
    success: bool = True
    message: str
    request_id: int
    settled_items: List[SettledItemResponse]
    remaining_items: int
    fully_settled: bool

class DeliveredRequestSummary(BaseModel):
    request_id: int
    folio: str
    student_name: str
    delivered_at: Optional[datetime] = None
    outstanding_items: int

class DamageResponse(BaseModel):
    success: bool = True
    message: str
    request_id: int
    item_id: int
    outstanding_quantity: int
