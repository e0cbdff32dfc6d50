"""
API tests for authentication, requests, expenses, receipts and notifications.

Tokens are minted with the real JWT code; the app reads the same in-memory
database as the test session.
"""

import uuid

import pytest


TRAVEL_PAYLOAD = {
    "requestType": "normal",
    "project": "General Operations",
    "purpose": "District monitoring visit",
    "travelDateFrom": "2026-03-02",
    "travelDateTo": "2026-03-05",
    "expenses": [
        {"category": "accommodation", "amount": "120.50", "description": "3 nights"},
        {"category": "per-diem", "amount": "79.50"},
    ],
}

IN_VALLEY_PAYLOAD = {
    "purpose": "Partner coordination meeting",
    "expenseDate": "2026-03-10",
    "location": "Lalitpur",
    "paymentMethod": "cash",
    "meetingType": "coordination",
    "meetingParticipants": "6",
}


def create_travel(client, headers, **overrides):
    payload = {**TRAVEL_PAYLOAD, **overrides}
    response = client.post("/requests", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def decide(client, headers, request_id, role, status, comments=None):
    body = {"role": role, "status": status}
    if comments is not None:
        body["comments"] = comments
    return client.patch(f"/requests/{request_id}/status", json=body, headers=headers)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TestAuth:
    def test_login_and_me(self, client, employee):
        response = client.post("/auth/login", json={"email": employee.email, "password": "Password123!"})
        assert response.status_code == 200
        token = response.json()["access_token"]
        assert response.json()["role"] == "employee"

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["email"] == employee.email

    def test_wrong_password(self, client, employee):
        response = client.post("/auth/login", json={"email": employee.email, "password": "nope-nope"})
        assert response.status_code == 401

    def test_inactive_user_cannot_login(self, client, make_user):
        user = make_user("employee", is_active=False)
        response = client.post("/auth/login", json={"email": user.email, "password": "Password123!"})
        assert response.status_code == 401

    def test_missing_token(self, client):
        assert client.get("/requests").status_code == 401


# ---------------------------------------------------------------------------
# Creating and reading requests
# ---------------------------------------------------------------------------


class TestCreateAndRead:
    def test_create_travel_request(self, client, auth_headers, employee, approver):
        data = create_travel(client, auth_headers(employee), approverId=str(approver.id))

        assert data["status"] == "pending"
        assert data["totalAmount"] == 200.0
        assert data["employeeName"] == employee.name
        assert data["approverId"] == str(approver.id)
        assert len(data["expenses"]) == 2
        assert data["travelDateFrom"] == "2026-03-02"

    def test_create_in_valley_request(self, client, auth_headers, employee):
        response = client.post("/requests/in-valley", json=IN_VALLEY_PAYLOAD, headers=auth_headers(employee))

        assert response.status_code == 201
        data = response.json()
        assert data["requestType"] == "in-valley"
        assert data["location"] == "Lalitpur"
        assert data["totalAmount"] == 0.0

    def test_in_valley_type_rejected_on_travel_endpoint(self, client, auth_headers, employee):
        response = client.post("/requests", json={**TRAVEL_PAYLOAD, "requestType": "in-valley"}, headers=auth_headers(employee))

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationFailed"

    def test_unknown_approver(self, client, auth_headers, employee):
        response = client.post(
            "/requests", json={**TRAVEL_PAYLOAD, "approverId": str(uuid.uuid4())}, headers=auth_headers(employee)
        )
        assert response.status_code == 404

    def test_negative_amount_is_422(self, client, auth_headers, employee):
        payload = {**TRAVEL_PAYLOAD, "expenses": [{"category": "per-diem", "amount": "-5"}]}
        response = client.post("/requests", json=payload, headers=auth_headers(employee))
        assert response.status_code == 422

    def test_employee_cannot_read_others_request(self, client, auth_headers, employee, make_user):
        data = create_travel(client, auth_headers(employee))
        stranger = make_user("employee")

        response = client.get(f"/requests/{data['id']}", headers=auth_headers(stranger))

        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    def test_missing_request_is_404(self, client, auth_headers, checker):
        response = client.get(f"/requests/{uuid.uuid4()}", headers=auth_headers(checker))
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"


class TestListing:
    def test_employee_sees_only_own(self, client, auth_headers, employee, make_user):
        other = make_user("employee")
        create_travel(client, auth_headers(employee))
        create_travel(client, auth_headers(other))

        mine = client.get("/requests", headers=auth_headers(employee)).json()

        assert len(mine) == 1
        assert mine[0]["employeeId"] == str(employee.id)
        assert mine[0]["totalAmount"] == 200.0

    def test_checker_sees_everything(self, client, auth_headers, employee, make_user, checker):
        create_travel(client, auth_headers(employee))
        create_travel(client, auth_headers(make_user("employee")))

        assert len(client.get("/requests", headers=auth_headers(checker)).json()) == 2

    def test_approver_sees_assigned_and_unassigned(self, client, auth_headers, employee, approver, make_user):
        other_approver = make_user("approver")
        create_travel(client, auth_headers(employee), approverId=str(approver.id))
        create_travel(client, auth_headers(employee), approverId=str(other_approver.id))
        create_travel(client, auth_headers(employee))

        listed = client.get("/requests", headers=auth_headers(approver)).json()

        assert len(listed) == 2
        assert {r["approverId"] for r in listed} == {str(approver.id), None}

    def test_pending_filter_for_approver_includes_travel_approved(self, client, auth_headers, employee, approver):
        in_valley = client.post("/requests/in-valley", json=IN_VALLEY_PAYLOAD, headers=auth_headers(employee)).json()
        create_travel(client, auth_headers(employee))
        decide(client, auth_headers(approver), in_valley["id"], "approver", "approved")

        listed = client.get("/requests", params={"status": "pending"}, headers=auth_headers(approver)).json()

        assert {r["status"] for r in listed} == {"pending", "travel_approved"}

    def test_filter_by_request_type(self, client, auth_headers, employee, checker):
        client.post("/requests/in-valley", json=IN_VALLEY_PAYLOAD, headers=auth_headers(employee))
        create_travel(client, auth_headers(employee))

        listed = client.get("/requests", params={"requestType": "in-valley"}, headers=auth_headers(checker)).json()

        assert [r["requestType"] for r in listed] == ["in-valley"]


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------


class TestStatus:
    def test_travel_lifecycle(self, client, auth_headers, employee, approver, checker):
        data = create_travel(client, auth_headers(employee), approverId=str(approver.id))

        response = decide(client, auth_headers(approver), data["id"], "approver", "approved", "Go ahead")
        assert response.status_code == 200
        assert response.json()["status"] == "pending_verification"
        assert response.json()["approverComments"] == "Go ahead"
        assert response.json()["notificationsSent"] == 2

        response = decide(client, auth_headers(checker), data["id"], "checker", "approved")
        assert response.json()["status"] == "approved"

        history = client.get(f"/requests/{data['id']}/history", headers=auth_headers(employee)).json()
        assert [h["action"] for h in history].count("TRANSITION") == 2

    def test_checker_on_pending_is_conflict(self, client, auth_headers, employee, checker):
        data = create_travel(client, auth_headers(employee))

        response = decide(client, auth_headers(checker), data["id"], "checker", "approved")

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransition"

    def test_repeat_decision_is_conflict(self, client, auth_headers, employee, approver):
        data = create_travel(client, auth_headers(employee))
        assert decide(client, auth_headers(approver), data["id"], "approver", "rejected").status_code == 200

        assert decide(client, auth_headers(approver), data["id"], "approver", "rejected").status_code == 409

    def test_employee_cannot_change_status(self, client, auth_headers, employee):
        data = create_travel(client, auth_headers(employee))

        assert decide(client, auth_headers(employee), data["id"], "approver", "approved").status_code == 403

    def test_approver_cannot_claim_checker_role(self, client, auth_headers, employee, approver):
        data = create_travel(client, auth_headers(employee))

        response = decide(client, auth_headers(approver), data["id"], "checker", "approved")

        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    def test_in_valley_lifecycle(self, client, auth_headers, employee, approver, checker):
        data = client.post("/requests/in-valley", json=IN_VALLEY_PAYLOAD, headers=auth_headers(employee)).json()
        assert decide(client, auth_headers(approver), data["id"], "approver", "approved").json()["status"] == "travel_approved"

        response = client.post(
            f"/requests/{data['id']}/submit-expenses",
            json={"expenses": [{"category": "meeting-cost", "amount": "55"}]},
            headers=auth_headers(employee),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "pending_verification"
        assert response.json()["totalAmount"] == 55.0

        response = decide(client, auth_headers(checker), data["id"], "checker", "rejected", "Duplicate")
        assert response.json()["status"] == "rejected_by_checker"
        assert response.json()["checkerComments"] == "Duplicate"

    def test_submit_without_items_is_conflict(self, client, auth_headers, employee, approver):
        data = client.post("/requests/in-valley", json=IN_VALLEY_PAYLOAD, headers=auth_headers(employee)).json()
        decide(client, auth_headers(approver), data["id"], "approver", "approved")

        response = client.post(f"/requests/{data['id']}/submit-expenses", json={"expenses": []}, headers=auth_headers(employee))

        assert response.status_code == 409


# ---------------------------------------------------------------------------
# Expenses and receipts
# ---------------------------------------------------------------------------


class TestExpensesAndReceipts:
    def test_add_and_list_expenses(self, client, auth_headers, employee):
        data = client.post("/requests/in-valley", json=IN_VALLEY_PAYLOAD, headers=auth_headers(employee)).json()

        response = client.post(
            f"/requests/{data['id']}/expenses",
            json={"category": "vehicle-hiring", "amount": "30", "description": "Taxi"},
            headers=auth_headers(employee),
        )
        assert response.status_code == 201

        listed = client.get(f"/requests/{data['id']}/expenses", headers=auth_headers(employee)).json()
        assert [e["category"] for e in listed] == ["vehicle-hiring"]
        assert listed[0]["receipts"] == []

        detail = client.get(f"/requests/{data['id']}", headers=auth_headers(employee)).json()
        assert detail["totalAmount"] == 30.0

    def test_upload_and_download_receipt(self, client, auth_headers, employee, checker):
        data = create_travel(client, auth_headers(employee))
        item_id = data["expenses"][0]["id"]

        response = client.post(
            f"/expenses/{item_id}/receipts",
            files={"file": ("hotel bill.pdf", b"%PDF-1.4 receipt", "application/pdf")},
            headers=auth_headers(employee),
        )
        assert response.status_code == 201, response.text
        receipt = response.json()
        assert receipt["originalFilename"] == "hotel bill.pdf"
        assert receipt["sizeBytes"] == 16

        listed = client.get(f"/expenses/{item_id}/receipts", headers=auth_headers(checker)).json()
        assert [r["id"] for r in listed] == [receipt["id"]]

        download = client.get(f"/files/local/{receipt['storageKey'].lstrip('/')}")
        assert download.status_code == 200
        assert download.content == b"%PDF-1.4 receipt"

    def test_stranger_cannot_see_receipts(self, client, auth_headers, employee, make_user):
        data = create_travel(client, auth_headers(employee))
        item_id = data["expenses"][0]["id"]

        response = client.get(f"/expenses/{item_id}/receipts", headers=auth_headers(make_user("employee")))

        assert response.status_code == 403


# ---------------------------------------------------------------------------
# Finance comments and notifications
# ---------------------------------------------------------------------------


class TestNotifications:
    def test_finance_comment_reaches_employee_inbox(self, client, auth_headers, employee, checker):
        data = create_travel(client, auth_headers(employee))

        response = client.post(
            f"/requests/{data['id']}/finance-comment",
            json={"comment": "Please attach the hotel invoice"},
            headers=auth_headers(checker),
        )
        assert response.status_code == 200
        assert response.json()["financeComments"] == "Please attach the hotel invoice"

        # Submission notice plus the comment
        assert client.get("/notifications/unread-count", headers=auth_headers(employee)).json() == {"count": 2}
        inbox = client.get("/notifications", headers=auth_headers(employee)).json()
        comments = [n for n in inbox if n["message"].startswith("Financial comment")]
        assert [n["message"] for n in comments] == ['Financial comment received: "Please attach the hotel invoice"']
        assert comments[0]["requestId"] == data["id"]

    def test_employee_cannot_post_finance_comment(self, client, auth_headers, employee):
        data = create_travel(client, auth_headers(employee))

        response = client.post(f"/requests/{data['id']}/finance-comment", json={"comment": "hi"}, headers=auth_headers(employee))

        assert response.status_code == 403

    def test_mark_read_and_mark_all(self, client, auth_headers, employee, approver, checker):
        first = create_travel(client, auth_headers(employee))
        second = create_travel(client, auth_headers(employee))
        decide(client, auth_headers(approver), first["id"], "approver", "approved")
        decide(client, auth_headers(approver), second["id"], "approver", "rejected")

        inbox = client.get("/notifications", headers=auth_headers(employee)).json()
        assert len(inbox) == 4

        response = client.post(f"/notifications/{inbox[0]['id']}/read", headers=auth_headers(employee))
        assert response.status_code == 200
        assert response.json()["read"] is True
        assert client.get("/notifications/unread-count", headers=auth_headers(employee)).json()["count"] == 3

        response = client.post("/notifications/mark-all-read", headers=auth_headers(employee))
        assert response.json()["updated"] == 3
        assert client.get("/notifications", params={"unread_only": True}, headers=auth_headers(employee)).json() == []

        # Checker was told about the approved request only
        assert client.get("/notifications/unread-count", headers=auth_headers(checker)).json()["count"] == 1
        # Approver heard about both new requests
        assert client.get("/notifications/unread-count", headers=auth_headers(approver)).json()["count"] == 2

    def test_cannot_mark_someone_elses_notification(self, client, auth_headers, employee, approver, checker):
        data = create_travel(client, auth_headers(employee))
        decide(client, auth_headers(approver), data["id"], "approver", "rejected")
        notification_id = client.get("/notifications", headers=auth_headers(employee)).json()[0]["id"]

        response = client.post(f"/notifications/{notification_id}/read", headers=auth_headers(checker))

        assert response.status_code == 404


@pytest.mark.parametrize("path", ["/users/approvers", "/users/employees", "/projects"])
def test_lookup_lists_need_login(client, path):
    assert client.get(path).status_code == 401
