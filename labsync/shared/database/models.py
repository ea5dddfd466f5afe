from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from labsync.config.database import Base

class MaterialMixin:
    """Columnas comunes a las cuatro tablas de material"""
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text)
    image_url = Column(String(255))
    created_at = Column(DateTime, server_default=func.current_timestamp())

class ReagentMixin:
    """Pictogramas de riesgo: listas de etiquetas separadas por ';'"""
    physical_hazards = Column(Text)
    health_hazards = Column(Text)
    environmental_hazards = Column(Text)

# ===== USUARIOS =====

class Group(Base):
    """Grupo escolar"""
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)

    users = relationship("User", back_populates="group")

class User(Base):
    """Modelo de Usuario"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), default='student', nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id"))
    created_at = Column(DateTime, server_default=func.current_timestamp())

    # Relationships
    group = relationship("Group", back_populates="users")
    warehouse_permission = relationship(
        "WarehousePermission",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan"
    )

class WarehousePermission(Base):
    """Permisos finos del personal de almacén; se crea al primer cambio"""
    __tablename__ = "warehouse_permissions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    chat_access = Column(Boolean, default=False, nullable=False)
    stock_modify = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="warehouse_permission")

# ===== MATERIALES =====

class MaterialLiquid(Base, MaterialMixin, ReagentMixin):
    """Reactivo líquido, stock en mL"""
    __tablename__ = "materials_liquid"

    quantity_ml = Column(Integer, default=0, nullable=False)

class MaterialSolid(Base, MaterialMixin, ReagentMixin):
    """Reactivo sólido, stock en g"""
    __tablename__ = "materials_solid"

    quantity_g = Column(Integer, default=0, nullable=False)

class MaterialEquipment(Base, MaterialMixin):
    """Equipo, stock en unidades"""
    __tablename__ = "materials_equipment"

    quantity_units = Column(Integer, default=0, nullable=False)

class MaterialLabItem(Base, MaterialMixin):
    """Material de laboratorio, stock en unidades"""
    __tablename__ = "materials_lab"

    quantity_units = Column(Integer, default=0, nullable=False)

class InventoryChange(Base):
    """Bitácora de movimientos de stock"""
    __tablename__ = "inventory_changes"

    id = Column(Integer, primary_key=True, index=True)
    material_id = Column(Integer, nullable=False, index=True)
    material_type = Column(String(20), nullable=False)
    change_type = Column(String(50), nullable=False)
    quantity_before = Column(Integer)
    quantity_after = Column(Integer)
    reference_id = Column(Integer)
    user_id = Column(Integer)
    notes = Column(String(255))
    created_at = Column(DateTime, server_default=func.current_timestamp(), nullable=False)

# ===== SOLICITUDES =====

class LoanRequest(Base):
    """Solicitud de préstamo agrupada"""
    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    request_date = Column(DateTime, server_default=func.current_timestamp(), nullable=False)
    status = Column(String(50), default='pending', nullable=False, index=True)
    reason = Column(Text)
    reviewer_id = Column(Integer, ForeignKey("users.id"))
    student_name = Column(String(255), nullable=False)
    reviewer_name = Column(String(255), nullable=False)
    folio = Column(String(16), unique=True, nullable=False, index=True)
    group_id = Column(Integer, ForeignKey("groups.id"))
    debt_amount = Column(Numeric(10, 2))
    stock_reserved = Column(Boolean, default=False, nullable=False)
    delivered_at = Column(DateTime)
    cancel_reason = Column(Text)
    # Alta en el servidor; la retención se mide con este campo, no con request_date
    created_at = Column(DateTime, server_default=func.current_timestamp(), nullable=False, index=True)

    # Relationships
    requester = relationship("User", foreign_keys=[user_id])
    reviewer = relationship("User", foreign_keys=[reviewer_id])
    group = relationship("Group")
    items = relationship(
        "LoanRequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="LoanRequestItem.id"
    )
    debts = relationship("Debt", back_populates="request", cascade="all, delete-orphan")

class LoanRequestItem(Base):
    """Renglón de una solicitud; (material_type, material_id) apunta a una de las tablas de material"""
    __tablename__ = "request_items"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    material_id = Column(Integer, nullable=False)
    material_type = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)

    request = relationship("LoanRequest", back_populates="items")

class Debt(Base):
    """Adeudo: material entregado pendiente de devolución"""
    __tablename__ = "debts"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    request_item_id = Column(Integer, ForeignKey("request_items.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    material_id = Column(Integer, nullable=False)
    material_type = Column(String(20), nullable=False)
    outstanding_quantity = Column(Integer, nullable=False)
    delivered_at = Column(DateTime, nullable=False)

    # Relationships
    request = relationship("LoanRequest", back_populates="debts")
    item = relationship("LoanRequestItem")
    user = relationship("User")
