from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict, field_validator
from enum import Enum

# ===== ENUMS =====

class ChangeType(str, Enum):
    RESERVE = "reserve"
    RELEASE = "release"
    DELIVER = "deliver"
    RETURN = "return"
    ADJUST = "adjust"
    BULK_ADJUST = "bulk_adjust"

# ===== REQUEST SCHEMAS =====

class MaterialCreate(BaseModel):
    """Alta de material en el catálogo"""
    type: str = Field(..., description="liquid, solid, equipment o lab")
    name: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(default=0, ge=0, description="Stock inicial en la unidad del tipo")
    description: Optional[str] = Field(None, max_length=1000)
    image_url: Optional[str] = Field(None, max_length=255)
    physical_hazards: List[str] = Field(default_factory=list, description="Solo reactivos")
    health_hazards: List[str] = Field(default_factory=list, description="Solo reactivos")
    environmental_hazards: List[str] = Field(default_factory=list, description="Solo reactivos")

    @field_validator('name')
    @classmethod
    def strip_name(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("El nombre no puede estar vacío")
        return v

class InventoryAdjustment(BaseModel):
    """Ajuste absoluto de inventario"""
    type: str = Field(..., description="Tipo de material")
    quantity: int = Field(..., description="Nueva cantidad absoluta")
    notes: Optional[str] = Field(None, max_length=255)

class BulkAdjustmentItem(BaseModel):
    id: int = Field(..., gt=0, description="ID del material")
    type: str = Field(..., description="Tipo de material")
    delta: int = Field(..., description="Cantidad a sumar (negativa para restar)")

class BulkAdjustment(BaseModel):
    """Ajuste masivo por deltas"""
    adjustments: List[BulkAdjustmentItem] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=255)

# ===== RESPONSE SCHEMAS =====

class MaterialResponse(BaseModel):
    id: int
    name: str
    type: str
    quantity: int
    unit: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    physical_hazards: Optional[List[str]] = None
    health_hazards: Optional[List[str]] = None
    environmental_hazards: Optional[List[str]] = None

class AdjustmentResponse(BaseModel):
    success: bool = True
    message: str
    material_id: int
    type: str
    new_stock: int

class BulkAdjustmentResponse(BaseModel):
    success: bool = True
    message: str
    results: List[AdjustmentResponse]

class InventoryChangeResponse(BaseModel):
    id: int
    material_id: int
    material_type: str
    change_type: str
    quantity_before: Optional[int] = None
    quantity_after: Optional[int] = None
    reference_id: Optional[int] = None
    user_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
