import re
from datetime import datetime, timedelta

import pytest

from labsync.config.settings import settings
from labsync.modules.requests import service as request_service_module
from labsync.modules.requests.service import LoanRequestService
from labsync.shared.database.models import LoanRequest, LoanRequestItem, Debt, InventoryChange

from .conftest import auth_headers

API = "/api/v1/requests"


def create_request(client, user, items, **extra):
    payload = {"items": items, "reason": "Práctica de laboratorio"}
    payload.update(extra)
    return client.post(API, json=payload, headers=auth_headers(user))


def item(material, material_type, quantity):
    return {"material_id": material.id, "type": material_type, "quantity": quantity}


@pytest.fixture
def sodium_chloride(db_session, materials):
    solid = materials["solid"]
    solid.quantity_g = 100
    db_session.commit()
    return solid

# ===== CREACIÓN =====

def test_student_request_is_pending_and_reserves_stock(client, student, teacher, group, sodium_chloride, stock_of):
    response = create_request(client, student, [item(sodium_chloride, "solid", 30)])

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["reviewer_name"] == "Carla Docente"
    assert body["group_name"] == "IDGS-81"
    assert re.fullmatch(r"[0-9A-F]{4}", body["folio"])
    assert stock_of("solid", sodium_chloride.id) == 70


def test_reject_restores_stock(client, student, teacher, sodium_chloride, stock_of):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 30)]).json()["request_id"]

    response = client.post(f"{API}/{request_id}/reject", headers=auth_headers(teacher))

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert stock_of("solid", sodium_chloride.id) == 100


def test_teacher_request_is_approved_without_touching_stock(client, teacher, materials, stock_of):
    microscope = materials["equipment"]
    response = create_request(client, teacher, [item(microscope, "equipment", 5)])

    assert response.status_code == 201
    assert response.json()["status"] == "approved"
    assert response.json()["reviewer_name"] == "Carla Docente"
    assert stock_of("equipment", microscope.id) == 5


def test_teacher_deliver_and_settle_scenario(client, db_session, teacher, warehouse, materials, stock_of):
    microscope = materials["equipment"]
    request_id = create_request(client, teacher, [item(microscope, "equipment", 5)]).json()["request_id"]

    delivered = client.post(f"{API}/{request_id}/deliver", headers=auth_headers(warehouse))
    assert delivered.status_code == 200
    assert delivered.json()["debts_created"] == 1
    assert stock_of("equipment", microscope.id) == 0

    debt = db_session.query(Debt).filter(Debt.request_id == request_id).one()
    assert debt.outstanding_quantity == 5

    settled = client.post(
        f"/api/v1/debts/{request_id}/settle",
        json={"items": [{"item_id": debt.request_item_id}]},
        headers=auth_headers(warehouse)
    )
    assert settled.status_code == 200
    assert settled.json()["fully_settled"] is True
    assert stock_of("equipment", microscope.id) == 5

    db_session.expire_all()
    assert db_session.query(Debt).filter(Debt.request_id == request_id).one().outstanding_quantity == 0


def test_student_auto_approve_leaves_stock(client, student, teacher, sodium_chloride, stock_of):
    response = create_request(client, student, [item(sodium_chloride, "solid", 30)], auto_approve=True)

    assert response.status_code == 201
    assert response.json()["status"] == "approved"
    assert response.json()["reviewer_name"] == "Ana Alumna"
    assert stock_of("solid", sodium_chloride.id) == 100


def test_student_auto_approve_can_be_disabled(client, student, teacher, sodium_chloride, monkeypatch, stock_of):
    monkeypatch.setattr(settings, "allow_student_auto_approve", False)

    response = create_request(client, student, [item(sodium_chloride, "solid", 30)], auto_approve=True)

    assert response.json()["status"] == "pending"
    assert stock_of("solid", sodium_chloride.id) == 70


def test_student_stock_is_checked_even_when_auto_approved(client, db_session, student, sodium_chloride):
    response = create_request(client, student, [item(sodium_chloride, "solid", 101)], auto_approve=True)

    assert response.status_code == 400
    assert response.json()["error"].startswith("Stock insuficiente")
    assert db_session.query(LoanRequest).count() == 0


def test_reviewer_falls_back_to_unassigned(client, student, sodium_chloride):
    response = create_request(client, student, [item(sodium_chloride, "solid", 1)])

    assert response.status_code == 201
    assert response.json()["reviewer_name"] == "Sin asignar"


def test_explicit_reviewer_must_be_active_teacher(client, db_session, student, teacher, sodium_chloride):
    response = create_request(client, student, [item(sodium_chloride, "solid", 1)], reviewer_id=student.id)

    request = db_session.query(LoanRequest).filter(LoanRequest.id == response.json()["request_id"]).one()
    assert request.reviewer_id == teacher.id


def test_invalid_type_writes_nothing(client, db_session, student, sodium_chloride, stock_of):
    response = create_request(client, student, [
        item(sodium_chloride, "solid", 10),
        {"material_id": 1, "type": "gas", "quantity": 1},
    ])

    assert response.status_code == 400
    assert response.json() == {"error": "Tipo de material inválido"}
    assert db_session.query(LoanRequest).count() == 0
    assert stock_of("solid", sodium_chloride.id) == 100


def test_unknown_material_is_404(client, db_session, student, materials):
    response = create_request(client, student, [{"material_id": 999, "type": "lab", "quantity": 1}])

    assert response.status_code == 404
    assert db_session.query(LoanRequest).count() == 0


def test_failing_item_rolls_back_whole_request(client, db_session, student, materials, stock_of):
    ethanol = materials["liquid"]
    response = create_request(client, student, [item(ethanol, "liquid", 8), item(ethanol, "liquid", 8)])

    assert response.status_code == 400
    assert stock_of("liquid", ethanol.id) == 10
    assert db_session.query(LoanRequest).count() == 0
    assert db_session.query(LoanRequestItem).count() == 0
    assert db_session.query(InventoryChange).count() == 0


def test_competing_requests_cannot_oversell(client, student, other_student, materials, stock_of):
    ethanol = materials["liquid"]

    first = create_request(client, student, [item(ethanol, "liquid", 8)])
    second = create_request(client, other_student, [item(ethanol, "liquid", 8)])

    assert first.status_code == 201
    assert second.status_code == 400
    assert second.json()["error"].startswith("Stock insuficiente")
    assert stock_of("liquid", ethanol.id) == 2


def test_empty_items_is_bad_request(client, student):
    response = client.post(API, json={"items": [], "reason": "x"}, headers=auth_headers(student))
    assert response.status_code == 400


def test_warehouse_cannot_create_requests(client, warehouse, sodium_chloride):
    response = create_request(client, warehouse, [item(sodium_chloride, "solid", 1)])
    assert response.status_code == 403


def test_student_with_outstanding_debt_is_blocked(client, student, teacher, warehouse, sodium_chloride):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 10)]).json()["request_id"]
    client.post(f"{API}/{request_id}/approve", headers=auth_headers(teacher))
    client.post(f"{API}/{request_id}/deliver", headers=auth_headers(warehouse))

    for _ in range(2):
        response = create_request(client, student, [item(sodium_chloride, "solid", 1)])
        assert response.status_code == 400
        assert response.json() == {"error": "Usuario con adeudos pendientes"}


def test_folio_is_regenerated_on_collision(client, student, sodium_chloride, monkeypatch):
    tokens = iter(["ABCD", "ABCD", "BEEF"])
    monkeypatch.setattr(request_service_module, "new_folio", lambda: next(tokens))

    first = create_request(client, student, [item(sodium_chloride, "solid", 1)])
    second = create_request(client, student, [item(sodium_chloride, "solid", 1)])

    assert first.json()["folio"] == "ABCD"
    assert second.json()["folio"] == "BEEF"


def test_folio_attempts_exhausted_is_server_error(client, student, sodium_chloride, monkeypatch, stock_of):
    monkeypatch.setattr(request_service_module, "new_folio", lambda: "ABCD")
    monkeypatch.setattr(settings, "folio_max_attempts", 2)

    create_request(client, student, [item(sodium_chloride, "solid", 1)])
    response = create_request(client, student, [item(sodium_chloride, "solid", 1)])

    assert response.status_code == 500
    assert response.json() == {"error": "No se pudo generar un folio único"}
    assert stock_of("solid", sodium_chloride.id) == 99

# ===== REVISIÓN =====

def test_approve_is_idempotent(client, student, teacher, sodium_chloride):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 5)]).json()["request_id"]

    assert client.post(f"{API}/{request_id}/approve", headers=auth_headers(teacher)).json()["status"] == "approved"
    again = client.post(f"{API}/{request_id}/approve", headers=auth_headers(teacher))
    assert again.status_code == 200
    assert again.json()["status"] == "approved"


def test_approve_rejected_request_fails(client, student, teacher, sodium_chloride):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 5)]).json()["request_id"]
    client.post(f"{API}/{request_id}/reject", headers=auth_headers(teacher))

    response = client.post(f"{API}/{request_id}/approve", headers=auth_headers(teacher))
    assert response.status_code == 400


def test_only_teachers_review(client, student, warehouse, sodium_chloride):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 5)]).json()["request_id"]

    assert client.post(f"{API}/{request_id}/approve", headers=auth_headers(student)).status_code == 403
    assert client.post(f"{API}/{request_id}/reject", headers=auth_headers(warehouse)).status_code == 403


def test_review_missing_request_is_404(client, teacher):
    response = client.post(f"{API}/999/approve", headers=auth_headers(teacher))
    assert response.status_code == 404
    assert response.json() == {"error": "Solicitud no encontrada"}


def test_reject_approved_request_releases_reserved_stock(client, student, teacher, sodium_chloride, stock_of):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 30)]).json()["request_id"]
    client.post(f"{API}/{request_id}/approve", headers=auth_headers(teacher))

    client.post(f"{API}/{request_id}/reject", headers=auth_headers(teacher))
    assert stock_of("solid", sodium_chloride.id) == 100


def test_reject_delivered_request_fails(client, teacher, warehouse, materials):
    request_id = create_request(client, teacher, [item(materials["lab"], "lab", 2)]).json()["request_id"]
    client.post(f"{API}/{request_id}/deliver", headers=auth_headers(warehouse))

    assert client.post(f"{API}/{request_id}/reject", headers=auth_headers(teacher)).status_code == 400

# ===== ENTREGA =====

def test_deliver_creates_one_debt_per_item(client, db_session, student, teacher, warehouse, materials, stock_of):
    items = [item(materials["liquid"], "liquid", 4), item(materials["lab"], "lab", 3)]
    request_id = create_request(client, student, items).json()["request_id"]
    client.post(f"{API}/{request_id}/approve", headers=auth_headers(teacher))

    response = client.post(f"{API}/{request_id}/deliver", headers=auth_headers(warehouse))

    assert response.status_code == 200
    debts = db_session.query(Debt).filter(Debt.request_id == request_id).order_by(Debt.id).all()
    assert [(d.material_type, d.outstanding_quantity) for d in debts] == [("liquid", 4), ("lab", 3)]
    # Reservado al crear: la entrega no vuelve a descontar
    assert stock_of("liquid", materials["liquid"].id) == 6
    assert stock_of("lab", materials["lab"].id) == 17


def test_deliver_requires_approved_status(client, student, warehouse, sodium_chloride):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 5)]).json()["request_id"]

    response = client.post(f"{API}/{request_id}/deliver", headers=auth_headers(warehouse))
    assert response.status_code == 400


def test_deliver_requires_stock_permission(client, teacher, warehouse_readonly, materials):
    request_id = create_request(client, teacher, [item(materials["lab"], "lab", 2)]).json()["request_id"]

    response = client.post(f"{API}/{request_id}/deliver", headers=auth_headers(warehouse_readonly))
    assert response.status_code == 403


def test_deliver_without_stock_rolls_back(client, db_session, teacher, warehouse, materials, stock_of):
    microscope = materials["equipment"]
    request_id = create_request(client, teacher, [item(microscope, "equipment", 9)]).json()["request_id"]

    response = client.post(f"{API}/{request_id}/deliver", headers=auth_headers(warehouse))

    assert response.status_code == 400
    assert stock_of("equipment", microscope.id) == 5
    assert db_session.query(Debt).count() == 0
    assert db_session.query(LoanRequest).filter(LoanRequest.id == request_id).one().status == "approved"

# ===== CANCELACIÓN =====

def test_student_cancel_deletes_and_restores(client, db_session, student, sodium_chloride, stock_of):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 30)]).json()["request_id"]

    response = client.post(f"{API}/{request_id}/cancel", headers=auth_headers(student))

    assert response.status_code == 200
    assert stock_of("solid", sodium_chloride.id) == 100
    assert db_session.query(LoanRequest).count() == 0
    assert db_session.query(LoanRequestItem).count() == 0


def test_student_cannot_cancel_someone_elses_request(client, student, other_student, sodium_chloride):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 5)]).json()["request_id"]

    response = client.post(f"{API}/{request_id}/cancel", headers=auth_headers(other_student))
    assert response.status_code == 403


def test_student_can_only_cancel_pending(client, student, teacher, sodium_chloride):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 5)]).json()["request_id"]
    client.post(f"{API}/{request_id}/approve", headers=auth_headers(teacher))

    response = client.post(f"{API}/{request_id}/cancel", headers=auth_headers(student))
    assert response.status_code == 400


def test_warehouse_cancel_is_soft_and_releases_stock(client, db_session, student, teacher, warehouse,
                                                     sodium_chloride, stock_of):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 30)]).json()["request_id"]
    client.post(f"{API}/{request_id}/approve", headers=auth_headers(teacher))

    response = client.post(
        f"{API}/{request_id}/cancel",
        json={"reason": "Material en mantenimiento"},
        headers=auth_headers(warehouse)
    )

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    request = db_session.query(LoanRequest).filter(LoanRequest.id == request_id).one()
    assert request.cancel_reason == "Material en mantenimiento"
    assert stock_of("solid", sodium_chloride.id) == 100


def test_warehouse_cannot_cancel_delivered(client, teacher, warehouse, materials):
    request_id = create_request(client, teacher, [item(materials["lab"], "lab", 2)]).json()["request_id"]
    client.post(f"{API}/{request_id}/deliver", headers=auth_headers(warehouse))

    response = client.post(f"{API}/{request_id}/cancel", headers=auth_headers(warehouse))
    assert response.status_code == 400


def test_teacher_cannot_cancel(client, teacher, materials):
    request_id = create_request(client, teacher, [item(materials["lab"], "lab", 2)]).json()["request_id"]
    assert client.post(f"{API}/{request_id}/cancel", headers=auth_headers(teacher)).status_code == 403

# ===== CONSULTAS =====

def test_listings_by_role(client, student, teacher, warehouse, admin, sodium_chloride):
    pending_id = create_request(client, student, [item(sodium_chloride, "solid", 5)]).json()["request_id"]
    approved_id = create_request(client, teacher, [item(sodium_chloride, "solid", 5)]).json()["request_id"]

    mine = client.get(f"{API}/mine", headers=auth_headers(student)).json()
    assert [r["id"] for r in mine] == [pending_id]
    assert mine[0]["items"][0]["material_name"] == "Cloruro de sodio"

    pending = client.get(f"{API}/pending", headers=auth_headers(teacher)).json()
    assert [r["id"] for r in pending] == [pending_id]

    approved = client.get(f"{API}/approved", headers=auth_headers(warehouse)).json()
    assert [r["id"] for r in approved] == [approved_id]

    filtered = client.get(API, params={"status": "approved"}, headers=auth_headers(admin)).json()
    assert [r["id"] for r in filtered] == [approved_id]
    assert len(client.get(API, headers=auth_headers(teacher)).json()) == 2

    assert client.get(f"{API}/pending", headers=auth_headers(student)).status_code == 403


def test_student_only_sees_own_detail(client, student, other_student, teacher, sodium_chloride):
    request_id = create_request(client, student, [item(sodium_chloride, "solid", 5)]).json()["request_id"]

    assert client.get(f"{API}/{request_id}", headers=auth_headers(student)).status_code == 200
    assert client.get(f"{API}/{request_id}", headers=auth_headers(other_student)).status_code == 404
    assert client.get(f"{API}/{request_id}", headers=auth_headers(teacher)).status_code == 200

# ===== DEPURACIÓN =====

def _age_request(db_session, request_id, days):
    db_session.query(LoanRequest)\
        .filter(LoanRequest.id == request_id)\
        .update({"created_at": datetime.utcnow() - timedelta(days=days)})
    db_session.commit()


def test_purge_only_removes_closed_requests(client, db_session, student, teacher, warehouse, materials):
    lab = materials["lab"]

    rejected_old = create_request(client, teacher, [item(lab, "lab", 1)]).json()["request_id"]
    client.post(f"{API}/{rejected_old}/reject", headers=auth_headers(teacher))

    rejected_recent = create_request(client, teacher, [item(lab, "lab", 1)]).json()["request_id"]
    client.post(f"{API}/{rejected_recent}/reject", headers=auth_headers(teacher))

    pending_old = create_request(client, student, [item(lab, "lab", 1)]).json()["request_id"]

    delivered_with_debt = create_request(client, teacher, [item(lab, "lab", 1)]).json()["request_id"]
    client.post(f"{API}/{delivered_with_debt}/deliver", headers=auth_headers(warehouse))

    for request_id in (rejected_old, pending_old, delivered_with_debt):
        _age_request(db_session, request_id, 30)

    deleted = LoanRequestService(db_session).purge_old_requests()

    assert deleted == 1
    remaining = {r.id for r in db_session.query(LoanRequest).all()}
    assert remaining == {rejected_recent, pending_old, delivered_with_debt}


def test_backdated_request_date_does_not_shorten_retention(client, db_session, teacher, materials):
    lab = materials["lab"]
    backdated = (datetime.utcnow() - timedelta(days=90)).isoformat()

    request_id = create_request(client, teacher, [item(lab, "lab", 1)], request_date=backdated).json()["request_id"]
    client.post(f"{API}/{request_id}/reject", headers=auth_headers(teacher))

    assert LoanRequestService(db_session).purge_old_requests() == 0

    db_session.expire_all()
    loan_request = db_session.query(LoanRequest).filter(LoanRequest.id == request_id).one()
    assert loan_request.request_date < datetime.utcnow() - timedelta(days=60)
    assert loan_request.created_at > datetime.utcnow() - timedelta(days=1)


# ===== FILTROS Y REPORTES =====

@pytest.fixture
def filterable_requests(client, student, other_student, teacher, materials):
    """Tres solicitudes con fechas, tipos y solicitantes distintos"""
    liquid_old = create_request(
        client, student, [item(materials["liquid"], "liquid", 1)],
        reason="Titulación de ácidos", request_date="2026-01-10T09:00:00"
    ).json()
    lab_mid = create_request(
        client, other_student, [item(materials["lab"], "lab", 2)],
        reason="Práctica de densidad", request_date="2026-02-15T09:00:00"
    ).json()
    mixed_new = create_request(
        client, student, [item(materials["lab"], "lab", 1), item(materials["equipment"], "equipment", 1)],
        reason="Observación celular", request_date="2026-03-20T09:00:00"
    ).json()
    return {"liquid_old": liquid_old, "lab_mid": lab_mid, "mixed_new": mixed_new}


def _listed_ids(client, user, **params):
    response = client.get(API, params=params, headers=auth_headers(user))
    assert response.status_code == 200
    return [r["id"] for r in response.json()]


def test_filter_by_date_range(client, teacher, filterable_requests):
    ids = _listed_ids(client, teacher, **{"from": "2026-02-01T00:00:00", "to": "2026-03-31T23:59:59"})
    assert ids == [filterable_requests["mixed_new"]["request_id"], filterable_requests["lab_mid"]["request_id"]]


def test_filter_by_material_type_and_user(client, teacher, student, filterable_requests):
    lab_ids = _listed_ids(client, teacher, type="lab")
    assert set(lab_ids) == {filterable_requests["lab_mid"]["request_id"], filterable_requests["mixed_new"]["request_id"]}

    student_lab_ids = _listed_ids(client, teacher, type="lab", user_id=student.id)
    assert student_lab_ids == [filterable_requests["mixed_new"]["request_id"]]


def test_filter_by_invalid_material_type(client, teacher, filterable_requests):
    response = client.get(API, params={"type": "gas"}, headers=auth_headers(teacher))
    assert response.status_code == 400
    assert response.json() == {"error": "Tipo de material inválido"}


def test_search_matches_folio_reason_and_names(client, teacher, filterable_requests):
    folio = filterable_requests["lab_mid"]["folio"]
    assert _listed_ids(client, teacher, q=folio.lower()) == [filterable_requests["lab_mid"]["request_id"]]
    assert _listed_ids(client, teacher, q="titulación") == [filterable_requests["liquid_old"]["request_id"]]
    assert len(_listed_ids(client, teacher, q="Beto")) == 1


def test_filters_require_teacher_or_admin(client, student, filterable_requests):
    assert client.get(API, params={"type": "lab"}, headers=auth_headers(student)).status_code == 403


def test_popular_materials_report(client, teacher, filterable_requests):
    # Solo cuentan solicitudes aprobadas o entregadas
    for key in ("lab_mid", "mixed_new"):
        client.post(f"{API}/{filterable_requests[key]['request_id']}/approve", headers=auth_headers(teacher))

    response = client.get(f"{API}/reports/popular-materials", headers=auth_headers(teacher))

    assert response.status_code == 200
    report = response.json()
    assert report[0]["type"] == "lab"
    assert report[0]["material_name"] == "Vaso de precipitado"
    assert report[0]["times_requested"] == 2
    assert report[0]["total_quantity"] == 3
    assert report[0]["unit"] == "u"
    assert {r["type"] for r in report} == {"lab", "equipment"}


def test_student_report_counts_by_status(client, teacher, student, other_student, filterable_requests):
    client.post(f"{API}/{filterable_requests['liquid_old']['request_id']}/reject", headers=auth_headers(teacher))

    report = client.get(f"{API}/reports/students", headers=auth_headers(teacher)).json()
    by_user = {r["user_id"]: r for r in report}

    assert by_user[student.id]["total_requests"] == 2
    assert by_user[student.id]["rejected"] == 1
    assert by_user[student.id]["pending"] == 1
    assert by_user[other_student.id]["total_requests"] == 1
    assert report[0]["user_id"] == student.id

    single = client.get(
        f"{API}/reports/students", params={"user_id": other_student.id}, headers=auth_headers(teacher)
    ).json()
    assert [r["user_id"] for r in single] == [other_student.id]
