import json
import os
from datetime import date, timedelta

from fastapi.testclient import TestClient

from conftest import admission_payload, auth_header, create_access_token
from institute_api import admissions as admission_service
from institute_api import models
from institute_api.main import app


def test_create_admission_derives_fees_from_course(client, seed, create_admission):
    admission = create_admission()

    year = date.today().year
    assert admission["receiptNumber"] == f"ADM-{year}-000001"
    assert admission["status"] == "Active"
    assert admission["studentId"] == seed.student.id
    assert admission["createdBy"]["id"] == seed.admin.id

    course_details = admission["courseDetails"]
    assert course_details["courseFees"] == 15000
    assert course_details["courseDuration"] == "6 months"
    assert course_details["batchId"] == "7"
    assert course_details["course"]["code"] == "TALLY"
    assert course_details["branch"]["code"] == "NTH"

    payment = admission["paymentDetails"]
    assert payment["totalFees"] == 15000
    assert payment["paidAmount"] == 0
    assert payment["pendingAmount"] == 15000
    assert payment["paymentStatus"] == "PENDING"
    assert payment["registrationFees"] == 500


def test_receipt_numbers_increase(create_admission):
    first = create_admission()
    second = create_admission()
    assert first["receiptNumber"] != second["receiptNumber"]
    assert first["receiptNumber"] < second["receiptNumber"]
    assert second["receiptNumber"].endswith("000002")


def test_emi_admission_schedules_installments(client, seed, create_admission):
    admission = create_admission(course=seed.design, paymentType="EMI", numberOfInstallments=3)
    assert admission["paymentDetails"]["installmentAmount"] == 4000

    resp = client.get(f"/api/payments/installments/{admission['id']}", headers=auth_header(seed.admin))
    assert resp.status_code == 200
    installments = resp.json()["installments"]
    assert [i["installmentNo"] for i in installments] == [1, 2, 3]
    assert all(i["amount"] == 4000 and i["status"] == "UNPAID" for i in installments)
    assert all(i["totalAmount"] == 4000 for i in installments)


def test_student_creates_own_admission(client, seed):
    body = admission_payload(course_id=seed.tally.id, branch_id=seed.north.id)
    resp = client.post("/api/admissions", json=body, headers=auth_header(seed.student))
    assert resp.status_code == 201, resp.text
    assert resp.json()["admission"]["studentId"] == seed.student.id


def test_student_cannot_create_for_someone_else(client, seed):
    body = admission_payload(seed.other_student.id, seed.tally.id, seed.north.id)
    resp = client.post("/api/admissions", json=body, headers=auth_header(seed.student))
    assert resp.status_code == 403
    assert resp.json()["success"] is False


def test_create_requires_student_for_staff(client, seed):
    body = admission_payload(course_id=seed.tally.id, branch_id=seed.north.id)
    resp = client.post("/api/admissions", json=body, headers=auth_header(seed.admin))
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "studentId"


def test_create_rejects_unknown_course(client, seed):
    body = admission_payload(seed.student.id, 999, seed.north.id)
    resp = client.post("/api/admissions", json=body, headers=auth_header(seed.admin))
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Course not found"}


def test_create_rejects_unknown_branch(client, seed):
    body = admission_payload(seed.student.id, seed.tally.id, 999)
    resp = client.post("/api/admissions", json=body, headers=auth_header(seed.admin))
    assert resp.status_code == 404
    assert resp.json()["message"] == "Branch not found"


def test_create_validation_errors(client, seed):
    body = admission_payload(seed.student.id, seed.tally.id, seed.north.id)
    body["personalDetails"]["mobileNumber"] = "12345"
    body["address"]["pincode"] = "4110"
    resp = client.post("/api/admissions", json=body, headers=auth_header(seed.admin))
    assert resp.status_code == 400
    data = resp.json()
    assert data["success"] is False
    assert data["message"] == "Validation failed"
    fields = {e["field"] for e in data["errors"]}
    assert "personalDetails.mobileNumber" in fields
    assert "address.pincode" in fields


def test_create_multipart_with_photo(client, seed, upload_dir):
    body = admission_payload(seed.student.id, seed.tally.id, seed.north.id)
    form = {key: json.dumps(value) if isinstance(value, dict) else str(value) for key, value in body.items()}
    resp = client.post(
        "/api/admissions",
        data=form,
        files={"photo": ("face.png", b"\x89PNG fake image bytes", "image/png")},
        headers=auth_header(seed.reception),
    )
    assert resp.status_code == 201, resp.text
    photo_url = resp.json()["admission"]["personalDetails"]["photoUrl"]
    assert photo_url.startswith("/uploads/admissions/student-")
    assert photo_url.endswith(".png")
    assert os.path.exists(os.path.join(upload_dir, "admissions", os.path.basename(photo_url)))


def test_create_multipart_rejects_non_image(client, seed, upload_dir):
    body = admission_payload(seed.student.id, seed.tally.id, seed.north.id)
    form = {key: json.dumps(value) if isinstance(value, dict) else str(value) for key, value in body.items()}
    resp = client.post(
        "/api/admissions",
        data=form,
        files={"photo": ("notes.pdf", b"%PDF-1.4", "application/pdf")},
        headers=auth_header(seed.admin),
    )
    assert resp.status_code == 400
    assert "image" in resp.json()["message"]
    assert not os.listdir(upload_dir)


def test_failed_create_removes_uploaded_photo(client, seed, upload_dir):
    body = admission_payload(seed.student.id, 999, seed.north.id)
    form = {key: json.dumps(value) if isinstance(value, dict) else str(value) for key, value in body.items()}
    resp = client.post(
        "/api/admissions",
        data=form,
        files={"photo": ("face.jpg", b"jpeg bytes", "image/jpeg")},
        headers=auth_header(seed.admin),
    )
    assert resp.status_code == 404
    assert os.listdir(os.path.join(upload_dir, "admissions")) == []


def test_unexpected_failure_removes_uploaded_photo(client, seed, upload_dir, monkeypatch):
    def broken_create(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(admission_service, "create_admission", broken_create)
    body = admission_payload(seed.student.id, seed.tally.id, seed.north.id)
    form = {key: json.dumps(value) if isinstance(value, dict) else str(value) for key, value in body.items()}
    resp = TestClient(app, raise_server_exceptions=False).post(
        "/api/admissions",
        data=form,
        files={"photo": ("face.png", b"png bytes", "image/png")},
        headers=auth_header(seed.admin),
    )
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Internal server error"}
    assert os.listdir(os.path.join(upload_dir, "admissions")) == []


def test_list_is_scoped_by_role(client, seed, create_admission):
    create_admission(student=seed.student, branch=seed.north)
    create_admission(student=seed.other_student, branch=seed.south)

    resp = client.get("/api/admissions", headers=auth_header(seed.admin))
    assert resp.json()["pagination"]["total"] == 2

    resp = client.get("/api/admissions", headers=auth_header(seed.north_admin))
    admissions = resp.json()["admissions"]
    assert [a["courseDetails"]["branchId"] for a in admissions] == [seed.north.id]

    # a Branch Admin cannot widen their view with a branch filter
    resp = client.get(f"/api/admissions?branchId={seed.south.id}", headers=auth_header(seed.north_admin))
    assert [a["courseDetails"]["branchId"] for a in resp.json()["admissions"]] == [seed.north.id]

    resp = client.get("/api/admissions", headers=auth_header(seed.other_student))
    assert [a["studentId"] for a in resp.json()["admissions"]] == [seed.other_student.id]


def test_list_filters_and_pagination(client, seed, create_admission):
    for _ in range(3):
        create_admission(branch=seed.north)
    create_admission(branch=seed.south, student=seed.other_student)

    resp = client.get(f"/api/admissions?branchId={seed.south.id}", headers=auth_header(seed.admin))
    assert resp.json()["pagination"]["total"] == 1

    resp = client.get("/api/admissions?page=2&limit=3", headers=auth_header(seed.admin))
    data = resp.json()
    assert data["pagination"] == {"page": 2, "limit": 3, "total": 4, "pages": 2}
    assert len(data["admissions"]) == 1

    resp = client.get("/api/admissions?status=Completed", headers=auth_header(seed.admin))
    assert resp.json()["admissions"] == []


def test_get_out_of_scope_is_not_found(client, seed, create_admission):
    admission = create_admission(student=seed.other_student, branch=seed.south)

    assert client.get(f"/api/admissions/{admission['id']}", headers=auth_header(seed.admin)).status_code == 200
    for actor in (seed.north_admin, seed.student):
        resp = client.get(f"/api/admissions/{admission['id']}", headers=auth_header(actor))
        assert resp.status_code == 404
        assert resp.json()["message"] == "Admission not found"


def test_student_admissions(client, seed, create_admission):
    create_admission(student=seed.student)
    create_admission(student=seed.student, course=seed.design)

    resp = client.get(f"/api/admissions/student/{seed.student.id}", headers=auth_header(seed.student))
    assert resp.status_code == 200
    assert len(resp.json()) == 2

    resp = client.get(f"/api/admissions/student/{seed.student.id}", headers=auth_header(seed.other_student))
    assert resp.status_code == 403


def test_update_merges_sections(client, seed, create_admission):
    admission = create_admission()
    resp = client.put(
        f"/api/admissions/{admission['id']}",
        json={"status": "Completed", "personalDetails": {"fullName": "Priya S. Sharma"}},
        headers=auth_header(seed.reception),
    )
    assert resp.status_code == 200, resp.text
    updated = resp.json()["admission"]
    assert updated["status"] == "Completed"
    assert updated["personalDetails"]["fullName"] == "Priya S. Sharma"
    assert updated["personalDetails"]["mobileNumber"] == "9876543210"
    assert updated["address"] == admission["address"]
    assert updated["receiptNumber"] == admission["receiptNumber"]


def test_update_does_not_recompute_payment_fields(client, seed, create_admission):
    admission = create_admission()
    resp = client.put(
        f"/api/admissions/{admission['id']}",
        json={"paymentDetails": {"paidAmount": 2000}},
        headers=auth_header(seed.admin),
    )
    payment = resp.json()["admission"]["paymentDetails"]
    assert payment["paidAmount"] == 2000
    assert payment["pendingAmount"] == 15000
    assert payment["paymentStatus"] == "PENDING"


def test_update_rejects_unknown_course(client, seed, create_admission):
    admission = create_admission()
    resp = client.put(
        f"/api/admissions/{admission['id']}",
        json={"courseDetails": {"courseId": 999}},
        headers=auth_header(seed.admin),
    )
    assert resp.status_code == 404
    assert resp.json()["message"] == "Course not found"


def test_update_role_gate(client, seed, create_admission):
    admission = create_admission()
    resp = client.put(
        f"/api/admissions/{admission['id']}", json={"status": "Inactive"}, headers=auth_header(seed.teacher)
    )
    assert resp.status_code == 403


def test_update_ignores_null_for_required_fields(client, seed, create_admission):
    admission = create_admission()
    resp = client.put(
        f"/api/admissions/{admission['id']}",
        json={
            "personalDetails": {"fullName": None, "emailId": None},
            "address": {"city": None, "landmark": "Near the bus stand"},
            "courseDetails": {"branchId": None},
        },
        headers=auth_header(seed.admin),
    )
    assert resp.status_code == 200, resp.text
    updated = resp.json()["admission"]
    assert updated["personalDetails"]["fullName"] == "Priya Sharma"
    assert updated["personalDetails"]["emailId"] is None
    assert updated["address"]["city"] == "Pune"
    assert updated["address"]["landmark"] == "Near the bus stand"
    assert updated["courseDetails"]["branchId"] == seed.north.id


def test_branch_admin_cannot_move_admission_out_of_branch(client, seed, create_admission):
    admission = create_admission(branch=seed.north)
    resp = client.put(
        f"/api/admissions/{admission['id']}",
        json={"status": "Completed", "courseDetails": {"branchId": seed.south.id}},
        headers=auth_header(seed.north_admin),
    )
    assert resp.status_code == 403
    assert resp.json()["success"] is False

    stored = client.get(f"/api/admissions/{admission['id']}", headers=auth_header(seed.admin)).json()
    assert stored["courseDetails"]["branchId"] == seed.north.id
    assert stored["status"] == "Active"

    resp = client.put(
        f"/api/admissions/{admission['id']}",
        json={"courseDetails": {"branchId": seed.south.id}},
        headers=auth_header(seed.admin),
    )
    assert resp.status_code == 200
    assert resp.json()["admission"]["courseDetails"]["branchId"] == seed.south.id


def test_delete_removes_photo_and_ledger(client, seed, db, upload_dir):
    body = admission_payload(seed.student.id, seed.design.id, seed.north.id, paymentType="EMI", numberOfInstallments=2)
    form = {key: json.dumps(value) if isinstance(value, dict) else str(value) for key, value in body.items()}
    resp = client.post(
        "/api/admissions",
        data=form,
        files={"photo": ("face.gif", b"GIF89a", "image/gif")},
        headers=auth_header(seed.admin),
    )
    admission = resp.json()["admission"]
    photo_path = os.path.join(upload_dir, "admissions", os.path.basename(admission["personalDetails"]["photoUrl"]))
    assert os.path.exists(photo_path)

    assert client.delete(f"/api/admissions/{admission['id']}", headers=auth_header(seed.reception)).status_code == 403

    resp = client.delete(f"/api/admissions/{admission['id']}", headers=auth_header(seed.north_admin))
    assert resp.status_code == 200
    assert resp.json() == {"message": "Admission deleted successfully"}
    assert not os.path.exists(photo_path)
    assert client.get(f"/api/admissions/{admission['id']}", headers=auth_header(seed.admin)).status_code == 404
    assert db.query(models.Installment).count() == 0


def test_stats(client, seed, create_admission):
    create_admission(course=seed.tally, registrationFees=500)
    create_admission(course=seed.tally, registrationFees=1000)
    create_admission(course=seed.design, branch=seed.south, student=seed.other_student, registrationFees=250)

    resp = client.get("/api/admissions/stats", headers=auth_header(seed.admin))
    assert resp.status_code == 200
    data = resp.json()
    assert data["stats"] == {
        "totalAdmissions": 3,
        "activeAdmissions": 3,
        "completedAdmissions": 0,
        "totalRevenue": 1750,
    }
    assert data["courseStats"] == [
        {"course": "Tally Prime", "count": 2, "revenue": 1500},
        {"course": "Graphic Design", "count": 1, "revenue": 250},
    ]

    resp = client.get("/api/admissions/stats", headers=auth_header(seed.south_admin))
    assert resp.json()["stats"]["totalAdmissions"] == 1


def test_missing_token(client, seed):
    resp = client.get("/api/admissions")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Access denied. No token provided."}


def test_invalid_token(client, seed):
    resp = client.get("/api/admissions", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid token."


def test_expired_token(client, seed):
    token = create_access_token(seed.admin.id, expires_delta=timedelta(minutes=-5))
    resp = client.get("/api/admissions", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid token."


def test_insufficient_role(client, seed):
    resp = client.get("/api/admissions", headers=auth_header(seed.accountant))
    assert resp.status_code == 403
    data = resp.json()
    assert data["message"] == "Access denied. Insufficient permissions."
    assert data["current"] == "Accountant"
    assert "Student" in data["required"]
