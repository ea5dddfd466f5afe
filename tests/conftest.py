import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("ENABLE_PURGE_JOB", "false")
os.environ.setdefault("AUTO_CREATE_DB", "false")

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from labsync.config.database import Base, get_db
from labsync.config.settings import settings
from labsync.core.auth.security import get_password_hash
from labsync.main import app
from labsync.modules.materials.resolver import resolve_material_type
from labsync.shared.database.models import (
    Group, User, WarehousePermission, MaterialLiquid, MaterialSolid,
    MaterialEquipment, MaterialLabItem
)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_token(user_id: int) -> str:
    return jwt.encode({"sub": str(user_id)}, settings.secret_key, algorithm=settings.algorithm)


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {make_token(user.id)}"}


@pytest.fixture
def group(db_session):
    group = Group(name="IDGS-81")
    db_session.add(group)
    db_session.commit()
    return group


def _create_user(db_session, name, email, role, group_id=None, is_active=True, permissions=None):
    user = User(
        name=name,
        email=email,
        password_hash=get_password_hash("secreto123"),
        role=role,
        is_active=is_active,
        group_id=group_id,
    )
    db_session.add(user)
    db_session.flush()
    if permissions is not None:
        db_session.add(WarehousePermission(user_id=user.id, **permissions))
    db_session.commit()
    return user


@pytest.fixture
def student(db_session, group):
    return _create_user(db_session, "Ana Alumna", "ana@utsjr.edu.mx", "student", group_id=group.id)


@pytest.fixture
def other_student(db_session, group):
    return _create_user(db_session, "Beto Alumno", "beto@utsjr.edu.mx", "student", group_id=group.id)


@pytest.fixture
def teacher(db_session):
    return _create_user(db_session, "Carla Docente", "carla@utsjr.edu.mx", "teacher")


@pytest.fixture
def warehouse(db_session):
    return _create_user(
        db_session, "Diego Almacén", "diego@utsjr.edu.mx", "warehouse",
        permissions={"chat_access": True, "stock_modify": True}
    )


@pytest.fixture
def warehouse_readonly(db_session):
    return _create_user(
        db_session, "Elena Almacén", "elena@utsjr.edu.mx", "warehouse",
        permissions={"chat_access": True, "stock_modify": False}
    )


@pytest.fixture
def admin(db_session):
    return _create_user(db_session, "Fer Admin", "fer@utsjr.edu.mx", "admin")


@pytest.fixture
def materials(db_session):
    """Un material de cada tipo"""
    liquid = MaterialLiquid(name="Etanol", quantity_ml=10, physical_hazards="inflamable;volatil")
    solid = MaterialSolid(name="Cloruro de sodio", quantity_g=500)
    equipment = MaterialEquipment(name="Microscopio", quantity_units=5)
    lab = MaterialLabItem(name="Vaso de precipitado", quantity_units=20)
    db_session.add_all([liquid, solid, equipment, lab])
    db_session.commit()
    return {"liquid": liquid, "solid": solid, "equipment": equipment, "lab": lab}


@pytest.fixture
def stock_of():
    """Leer el stock actual directo de la base, sin caché de sesión"""
    def _stock_of(material_type: str, material_id: int) -> int:
        table = resolve_material_type(material_type)
        session = TestingSessionLocal()
        try:
            return session.query(table.quantity_column).filter(table.model.id == material_id).scalar()
        finally:
            session.close()
    return _stock_of
