"""
HTTP layer: authentication, permission checks, error bodies and an end-to-end
payroll run over the API.
"""
from dealer_ledger.core.security import create_access_token


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_requests_without_token_rejected(client, accounts):
    response = client.get("/api/v1/accounting/accounts")
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"


def test_missing_permission_rejected(client, accounts, readonly_headers):
    response = client.post(
        "/api/v1/accounting/journal-entries",
        json={"lines": []},
        headers=readonly_headers,
    )
    assert response.status_code == 403
    assert "accounting:post" in response.json()["message"]


def test_token_without_subject_rejected(client):
    token = create_access_token({"permissions": ["*"]})
    response = client.get("/api/v1/reports/summary", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_create_and_lookup_account(client, auth_headers):
    response = client.post(
        "/api/v1/accounting/accounts",
        json={"code": "1010", "name": "Cash on Hand", "type": "ASSET"},
        headers=auth_headers,
    )
    assert response.status_code == 201
    body = response.json()
    assert body["normal_balance"] == "DEBIT"

    response = client.get("/api/v1/accounting/accounts/by-code/1010", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["id"] == body["id"]

    response = client.post(
        "/api/v1/accounting/accounts",
        json={"code": "1010", "name": "Duplicate Cash", "type": "ASSET"},
        headers=auth_headers,
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_DUPLICATE_CODE"


def test_post_entry_and_replay(client, accounts, auth_headers):
    payload = {
        "lines": [
            {"account_id": accounts["1000"], "debit": "500.00"},
            {"account_id": accounts["4000"], "credit": "500.00"},
        ],
        "idempotency_key": "sale:2026-10-19:7",
        "description": "Vehicle sale",
    }
    first = client.post("/api/v1/accounting/journal-entries", json=payload, headers=auth_headers)
    assert first.status_code == 201
    entry = first.json()
    assert entry["status"] == "POSTED"
    assert entry["created_by"] == "clerk-1"
    assert entry["items"][0]["debit"] == "500.00"

    replay = client.post("/api/v1/accounting/journal-entries", json=payload, headers=auth_headers)
    assert replay.json()["id"] == entry["id"]

    balance = client.get(f"/api/v1/accounting/accounts/{accounts['4000']}/balance", headers=auth_headers)
    assert balance.json()["balance"] == "500.00"


def test_unbalanced_entry_returns_422(client, accounts, auth_headers):
    response = client.post(
        "/api/v1/accounting/journal-entries",
        json={"lines": [
            {"account_id": accounts["1000"], "debit": "100.00"},
            {"account_id": accounts["4000"], "credit": "90.00"},
        ]},
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_UNBALANCED_ENTRY"

    listing = client.get("/api/v1/accounting/journal-entries", headers=auth_headers)
    assert listing.json() == []


def test_sub_cent_amounts_rejected(client, accounts, auth_headers):
    response = client.post(
        "/api/v1/accounting/journal-entries",
        json={"lines": [
            {"account_id": accounts["1000"], "debit": "10.005"},
            {"account_id": accounts["4000"], "credit": "10.005"},
        ]},
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


def test_void_entry(client, accounts, auth_headers):
    entry = client.post(
        "/api/v1/accounting/journal-entries",
        json={"lines": [
            {"account_id": accounts["1010"], "debit": "75.00"},
            {"account_id": accounts["4000"], "credit": "75.00"},
        ]},
        headers=auth_headers,
    ).json()

    reversal = client.post(
        f"/api/v1/accounting/journal-entries/{entry['id']}/void",
        json={"reason": "Entered twice"},
        headers=auth_headers,
    )
    assert reversal.status_code == 200
    assert reversal.json()["reverses_entry_id"] == entry["id"]

    again = client.post(
        f"/api/v1/accounting/journal-entries/{entry['id']}/void", json={}, headers=auth_headers
    )
    assert again.status_code == 409
    assert again.json()["error_code"] == "ERR_ALREADY_VOIDED"


def test_payroll_run_over_api(client, accounts, auth_headers):
    batch = client.post(
        "/api/v1/payroll/batches",
        json={
            "period": "2026-10",
            "cash_account_id": accounts["1010"],
            "records": [
                {"employee_id": "EMP-001", "gross_pay": "1000.00",
                 "expense_account_id": accounts["5000"], "liability_account_id": accounts["2100"]},
                {"employee_id": "EMP-002", "gross_pay": "1500.00",
                 "expense_account_id": accounts["5000"], "liability_account_id": accounts["2100"]},
            ],
        },
        headers=auth_headers,
    )
    assert batch.status_code == 201
    batch_id = batch.json()["id"]
    assert batch.json()["status"] == "DRAFT"

    response = client.post(
        f"/api/v1/payroll/batches/{batch_id}/status",
        json={"status": "APPROVED", "notes": "Reviewed by finance"},
        headers=auth_headers,
    )
    assert response.json()["status"] == "APPROVED"

    response = client.post(f"/api/v1/payroll/batches/{batch_id}/accrual", headers=auth_headers)
    assert response.json()["status"] == "POSTED_ACCRUAL"
    accrual_id = response.json()["accrual_journal_entry_id"]

    response = client.post(f"/api/v1/payroll/batches/{batch_id}/accrual", headers=auth_headers)
    assert response.json()["accrual_journal_entry_id"] == accrual_id

    response = client.post(f"/api/v1/payroll/batches/{batch_id}/payment", headers=auth_headers)
    assert response.json()["status"] == "POSTED_PAYMENT"

    for record in response.json()["records"]:
        paid = client.post(f"/api/v1/payroll/records/{record['id']}/mark-paid", headers=auth_headers)
        assert paid.json()["status"] == "PAID"

    final = client.get(f"/api/v1/payroll/batches/{batch_id}", headers=auth_headers).json()
    assert final["status"] == "PAID"
    assert [t["to_status"] for t in final["transitions"]] == [
        "DRAFT", "APPROVED", "POSTED_ACCRUAL", "POSTED_PAYMENT", "PAID"
    ]

    response = client.post(
        f"/api/v1/payroll/batches/{batch_id}/status", json={"status": "DRAFT"}, headers=auth_headers
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_INVALID_TRANSITION"

    summary = client.get("/api/v1/reports/summary", headers=auth_headers).json()
    assert summary["totals"]["totalExpenses"] == "2500.00"
    assert summary["totals"]["totalAssets"] == "-2500.00"
    assert summary["entryStatus"]["POSTED"] == 2


def test_unknown_batch_returns_404(client, auth_headers):
    response = client.get("/api/v1/payroll/batches/999", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND"


def test_reserved_idempotency_key_returns_422(client, accounts, auth_headers):
    response = client.post(
        "/api/v1/accounting/journal-entries",
        json={
            "lines": [
                {"account_id": accounts["1010"], "debit": "1.00"},
                {"account_id": accounts["4000"], "credit": "1.00"},
            ],
            "idempotency_key": "payroll:1:accrual",
        },
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_RESERVED_KEY"
