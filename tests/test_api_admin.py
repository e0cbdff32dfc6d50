"""
API tests for user directory, admin user management, projects, budgets and
dashboard statistics.
"""

from datetime import datetime, timezone


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


def test_approver_directory_lists_active_approvers(client, auth_headers, employee, approver, make_user):
    make_user("approver", is_active=False)

    listed = client.get("/users/approvers", headers=auth_headers(employee)).json()

    assert [a["id"] for a in listed] == [str(approver.id)]


def test_employee_directory(client, auth_headers, employee, checker):
    listed = client.get("/users/employees", headers=auth_headers(checker)).json()

    assert [e["email"] for e in listed] == [employee.email]


# ---------------------------------------------------------------------------
# Admin: users
# ---------------------------------------------------------------------------


class TestAdminUsers:
    def test_create_user_then_login(self, client, auth_headers, admin):
        response = client.post(
            "/admin/users",
            json={"email": "New.Checker@Example.com", "name": "New Checker", "password": "S3cure-pass", "role": "checker"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        assert response.json()["email"] == "new.checker@example.com"

        login = client.post("/auth/login", json={"email": "new.checker@example.com", "password": "S3cure-pass"})
        assert login.status_code == 200
        assert login.json()["role"] == "checker"

    def test_duplicate_email_is_conflict(self, client, auth_headers, admin, employee):
        response = client.post(
            "/admin/users",
            json={"email": employee.email, "name": "Copy", "password": "S3cure-pass"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 409

    def test_invalid_role_rejected(self, client, auth_headers, admin):
        response = client.post(
            "/admin/users",
            json={"email": "x@example.com", "name": "X", "password": "S3cure-pass", "role": "superuser"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400

    def test_update_role_and_deactivate(self, client, auth_headers, admin, employee):
        response = client.patch(
            f"/admin/users/{employee.id}",
            json={"role": "approver", "is_active": False},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json()["role"] == "approver"
        assert response.json()["isActive"] is False

        # Deactivated users lose access immediately
        assert client.get("/auth/me", headers=auth_headers(employee)).status_code == 401

    def test_list_users_filtered_by_role(self, client, auth_headers, admin, employee, approver):
        listed = client.get("/admin/users", params={"role": "approver"}, headers=auth_headers(admin)).json()
        assert [u["id"] for u in listed] == [str(approver.id)]

    def test_non_admin_forbidden(self, client, auth_headers, checker):
        assert client.get("/admin/users", headers=auth_headers(checker)).status_code == 403


# ---------------------------------------------------------------------------
# Admin: projects and budgets
# ---------------------------------------------------------------------------


class TestProjectsAndBudgets:
    def test_project_crud(self, client, auth_headers, admin, employee):
        headers = auth_headers(admin)
        created = client.post("/admin/projects", json={"name": "WASH Program"}, headers=headers)
        assert created.status_code == 201
        project_id = created.json()["id"]

        client.post("/admin/projects", json={"name": "Closed Project", "active": False}, headers=headers)
        visible = client.get("/projects", headers=auth_headers(employee)).json()
        assert [p["name"] for p in visible] == ["WASH Program"]

        patched = client.patch(f"/admin/projects/{project_id}", json={"description": "Water and sanitation"}, headers=headers)
        assert patched.json()["description"] == "Water and sanitation"

        assert client.delete(f"/admin/projects/{project_id}", headers=headers).status_code == 200
        assert [p["name"] for p in client.get("/admin/projects", headers=headers).json()] == ["Closed Project"]

    def test_duplicate_project_name(self, client, auth_headers, admin):
        headers = auth_headers(admin)
        client.post("/admin/projects", json={"name": "Health"}, headers=headers)
        assert client.post("/admin/projects", json={"name": "Health"}, headers=headers).status_code == 409

    def test_budget_crud(self, client, auth_headers, admin):
        headers = auth_headers(admin)
        project_id = client.post("/admin/projects", json={"name": "Education"}, headers=headers).json()["id"]

        created = client.post(
            "/admin/budgets",
            json={"project_id": project_id, "amount": "50000", "fiscal_year": 2026, "description": "Annual"},
            headers=headers,
        )
        assert created.status_code == 201
        budget = created.json()
        assert budget["amount"] == 50000.0

        patched = client.patch(f"/admin/budgets/{budget['id']}", json={"amount": "42000.50"}, headers=headers)
        assert patched.json()["amount"] == 42000.5

        listed = client.get("/admin/budgets", params={"fiscal_year": 2026}, headers=headers).json()
        assert [b["id"] for b in listed] == [budget["id"]]

        assert client.delete(f"/admin/budgets/{budget['id']}", headers=headers).status_code == 200
        assert client.get("/admin/budgets", headers=headers).json() == []

    def test_budget_requires_existing_project(self, client, auth_headers, admin):
        response = client.post(
            "/admin/budgets",
            json={"project_id": "00000000-0000-0000-0000-000000000001", "amount": "1", "fiscal_year": 2026},
            headers=auth_headers(admin),
        )
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Admin: statistics
# ---------------------------------------------------------------------------


def test_stats(client, auth_headers, admin, employee, approver, checker, make_request, expense):
    approved = make_request(employee, items=[expense(amount="100")])
    make_request(employee, items=[expense(amount="50")])
    headers = auth_headers(approver)
    client.patch(f"/requests/{approved.id}/status", json={"role": "approver", "status": "approved"}, headers=headers)
    client.patch(
        f"/requests/{approved.id}/status", json={"role": "checker", "status": "approved"}, headers=auth_headers(checker)
    )

    stats = client.get("/admin/stats", headers=auth_headers(admin)).json()

    assert stats["totalUsers"] == 4
    assert stats["totalRequests"] == 2
    assert stats["pendingRequests"] == 1
    assert stats["approvedRequests"] == 1
    assert stats["rejectedRequests"] == 0
    assert stats["totalAmount"] == 150.0
    assert stats["usersByRole"] == {"employee": 1, "approver": 1, "checker": 1, "admin": 1}
    assert len(stats["requestsByMonth"]) == 6
    current = stats["requestsByMonth"][-1]
    assert current["year"] == datetime.now(timezone.utc).year
    assert current["pending"] + current["approved"] == 2
    assert stats["departmentData"] == [{"name": "Programs", "requests": 2, "amount": 150.0}]


def test_stats_admin_only(client, auth_headers, checker):
    assert client.get("/admin/stats", headers=auth_headers(checker)).status_code == 403
