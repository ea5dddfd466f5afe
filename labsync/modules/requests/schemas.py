from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field
from enum import Enum

# ===== ENUMS =====

class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

# ===== REQUEST SCHEMAS =====

class RequestItemCreate(BaseModel):
    """Material solicitado dentro de una solicitud agrupada"""
    material_id: int = Field(..., gt=0, description="ID del material en su tabla")
    type: str = Field(..., description="liquid, solid, equipment o lab")
    quantity: int = Field(..., gt=0, description="Cantidad en la unidad del tipo")

class LoanRequestCreate(BaseModel):
    """Schema para crear solicitud de préstamo"""
    items: List[RequestItemCreate] = Field(..., min_length=1, description="Materiales solicitados")
    reason: str = Field(..., min_length=1, max_length=1000, description="Motivo de la solicitud")
    request_date: Optional[datetime] = Field(None, description="Fecha de la solicitud; por defecto ahora")
    reviewer_id: Optional[int] = Field(None, description="Docente que revisará la solicitud")
    auto_approve: bool = Field(default=False, description="Crear la solicitud ya aprobada")
    debt_amount: Optional[Decimal] = Field(None, ge=0, description="Monto de adeudo asociado")

class WarehouseCancellation(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Motivo de cancelación")

# ===== RESPONSE SCHEMAS =====

class LoanRequestCreated(BaseModel):
    success: bool = True
    message: str
    request_id: int
    folio: str
    status: RequestStatus
    reviewer_name: str
    group_name: Optional[str] = None

class RequestItemResponse(BaseModel):
    id: int
    material_id: int
    type: str
    quantity: int
    material_name: Optional[str] = None

class LoanRequestResponse(BaseModel):
    """Response completo de solicitud"""
    id: int
    folio: str
    status: RequestStatus
    user_id: int
    student_name: str
    reviewer_id: Optional[int] = None
    reviewer_name: str
    request_date: datetime
    reason: Optional[str] = None
    group_id: Optional[int] = None
    group_name: Optional[str] = None
    debt_amount: Optional[Decimal] = None
    delivered_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    items: List[RequestItemResponse] = []

class ActionResponse(BaseModel):
    success: bool = True
    message: str
    request_id: int
    status: Optional[RequestStatus] = None

class DeliveryResponse(ActionResponse):
    debts_created: int

class PurgeResponse(BaseModel):
    success: bool = True
    message: str
    deleted: int

# ===== REPORTES =====

class PopularMaterialReport(BaseModel):
    material_id: int
    type: str
    material_name: Optional[str] = None
    unit: str
    times_requested: int
    total_quantity: int

class StudentRequestReport(BaseModel):
    """Conteo de solicitudes de un alumno por estado"""
    user_id: int
    name: str
    email: str
    total_requests: int
    pending: int
    approved: int
    delivered: int
    rejected: int
    cancelled: int
