"""
End-to-end API tests.

Rows seeded through the `seed` fixture are committed before the first
request; after that all checks go through the API so no test transaction
holds the SQLite database while a request writes.
"""

from datetime import timedelta

import pytest

from hireledger.utils.dates import utcnow


def register_and_login(client, email, role, password="password123"):
    response = client.post("/api/auth/register", json={"email": email, "password": password, "role": role})
    assert response.status_code == 201
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin_headers(seed, auth_headers):
    admin = seed.admin()
    seed.commit()
    return auth_headers(admin["user_id"])


@pytest.fixture
def company_headers(client):
    headers = register_and_login(client, "hr@acme.example.com", "company")
    response = client.post("/api/companies/profile", json={"company_name": "Acme"}, headers=headers)
    assert response.status_code == 201
    return headers


class TestAuth:
    def test_register_login_me(self, client):
        headers = register_and_login(client, "new@example.com", "candidate")
        response = client.get("/api/auth/me", headers=headers)
        assert response.status_code == 200
        assert response.json()["role"] == "candidate"

    def test_admin_cannot_self_register(self, client):
        response = client.post(
            "/api/auth/register", json={"email": "boss@example.com", "password": "password123", "role": "admin"}
        )
        assert response.status_code == 403

    def test_duplicate_email(self, client):
        register_and_login(client, "dup@example.com", "company")
        response = client.post(
            "/api/auth/register", json={"email": "dup@example.com", "password": "password123", "role": "company"}
        )
        assert response.status_code == 400

    def test_wrong_password(self, client):
        register_and_login(client, "user@example.com", "company")
        response = client.post("/api/auth/login", json={"email": "user@example.com", "password": "wrong-password"})
        assert response.status_code == 401

    def test_token_required(self, client):
        assert client.get("/api/companies/wallet").status_code in (401, 403)

    def test_profile_required(self, client):
        headers = register_and_login(client, "noprofile@example.com", "company")
        assert client.get("/api/companies/wallet", headers=headers).status_code == 404


class TestCompanyWallet:
    def test_topup_and_job_payment(self, client, company_headers):
        response = client.post(
            "/api/companies/wallet/topup", json={"amount": 1500, "payment_reference": "PAY-123"},
            headers=company_headers
        )
        assert response.status_code == 201
        assert response.json()["balance_after"] == 1500.0

        job = client.post("/api/jobs", json={"title": "Backend Engineer"}, headers=company_headers).json()

        response = client.post(f"/api/jobs/{job['job_id']}/pay", json={"package": "shortlisting"}, headers=company_headers)
        assert response.status_code == 402
        assert "Insufficient" in response.json()["detail"]

        client.post(
            "/api/companies/wallet/topup", json={"amount": 490, "payment_reference": "PAY-124"},
            headers=company_headers
        )
        response = client.post(f"/api/jobs/{job['job_id']}/pay", json={"package": "shortlisting"}, headers=company_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["job"]["payment_status"] == "PAID"
        assert body["job"]["payment_amount"] == 1990.0
        assert body["balance"] == 0.0

        wallet = client.get("/api/companies/wallet", headers=company_headers).json()
        assert wallet["balance"] == 0.0
        assert wallet["total_credits"] == 1990.0
        page = client.get("/api/companies/wallet/transactions?type=WALLET_TOPUP", headers=company_headers).json()
        assert page["total"] == 2

    def test_replayed_topup_is_refused(self, client, company_headers):
        payload = {"amount": 100, "payment_reference": "pi_123456"}
        first = client.post("/api/companies/wallet/topup", json=payload, headers=company_headers)
        second = client.post("/api/companies/wallet/topup", json=payload, headers=company_headers)

        assert first.status_code == 201
        assert first.json()["external_reference"] == "pi_123456"
        assert second.status_code == 409
        assert client.get("/api/companies/wallet", headers=company_headers).json()["balance"] == 100.0

    def test_payment_check(self, client, company_headers):
        response = client.get("/api/jobs/payment-check?package=full-service", headers=company_headers)
        assert response.status_code == 200
        assert response.json() == {
            "can_post": False, "balance": 0.0, "required": 5990.0, "shortfall": 5990.0, "currency": "USD"
        }


class TestSubscriptions:
    def test_failed_renewal_is_kept(self, client, company_headers):
        start = (utcnow() - timedelta(days=40)).isoformat()
        response = client.post(
            "/api/subscriptions",
            json={"plan_type": "SMALL", "name": "Small", "base_price": 300, "job_quota": 3,
                  "start_date": start, "payment_reference": "CARD-9"},
            headers=company_headers
        )
        assert response.status_code == 201
        subscription = response.json()["subscription"]
        assert subscription["price_paid"] == 300.0

        response = client.post(f"/api/subscriptions/{subscription['subscription_id']}/renew", headers=company_headers)
        assert response.status_code == 402

        stored = client.get(f"/api/subscriptions/{subscription['subscription_id']}", headers=company_headers).json()
        assert stored["renewal_failure_reason"].startswith("Insufficient")
        assert stored["status"] == "ACTIVE"

    def test_second_active_subscription_conflicts(self, client, company_headers):
        payload = {"plan_type": "ATS_LITE", "name": "Lite", "base_price": 0}
        assert client.post("/api/subscriptions", json=payload, headers=company_headers).status_code == 201
        assert client.post("/api/subscriptions", json=payload, headers=company_headers).status_code == 409


class TestAdmin:
    def test_non_admin_is_forbidden(self, client, company_headers):
        assert client.get("/api/admin/licensees", headers=company_headers).status_code == 403

    def test_licensees_and_regions(self, client, admin_headers):
        licensee = client.post(
            "/api/admin/licensees", json={"name": "North Partners", "revenue_share_percent": 25},
            headers=admin_headers
        ).json()
        response = client.post(
            "/api/admin/regions", json={"name": "North", "code": "NORTH", "licensee_id": licensee["licensee_id"]},
            headers=admin_headers
        )
        assert response.status_code == 201
        duplicate = client.post("/api/admin/regions", json={"name": "North 2", "code": "NORTH"}, headers=admin_headers)
        assert duplicate.status_code == 400
        assert [r["code"] for r in client.get("/api/admin/regions", headers=admin_headers).json()] == ["NORTH"]

    def test_wallet_adjustment_is_audited(self, client, seed, auth_headers, audit_log):
        admin = seed.admin()
        company = seed.company()
        account = seed.fund(company["company_id"], 1000)
        seed.commit()
        headers = auth_headers(admin["user_id"])

        response = client.post(
            f"/api/admin/wallets/{account['account_id']}/adjust",
            json={"amount": 25.5, "direction": "CREDIT", "description": "Goodwill credit"},
            headers=headers
        )
        assert response.status_code == 201
        assert response.json()["balance_after"] == 35.5

        overdraw = client.post(
            f"/api/admin/wallets/{account['account_id']}/adjust",
            json={"amount": 100, "direction": "DEBIT", "description": "Too much"},
            headers=headers
        )
        assert overdraw.status_code == 402
        assert audit_log.actions() == ["ADMIN_ADJUSTMENT"]

        report = client.get("/api/admin/ledger/verify", headers=headers).json()
        assert report == {"checked": 1, "invalid": 0, "accounts": []}

    def test_unknown_wallet(self, client, admin_headers):
        assert client.get("/api/admin/wallets/999", headers=admin_headers).status_code == 404


class TestWithdrawalFlow:
    def test_award_request_approve_pay(self, client, seed, auth_headers):
        admin = seed.admin()
        consultant = seed.consultant()
        seed.commit()
        admin_headers = auth_headers(admin["user_id"])
        consultant_headers = auth_headers(consultant["user_id"])

        response = client.post(
            "/api/admin/commissions/award",
            json={"consultant_id": consultant["consultant_id"], "amount": 60},
            headers=admin_headers
        )
        assert response.status_code == 201
        assert response.json()["status"] == "CONFIRMED"

        balance = client.get("/api/consultants/balance", headers=consultant_headers).json()
        assert balance["available"] == 60.0
        assert balance["minimum_withdrawal"] == 50.0

        withdrawal = client.post("/api/consultants/withdrawals", json={"amount": 60}, headers=consultant_headers)
        assert withdrawal.status_code == 201
        withdrawal_id = withdrawal.json()["withdrawal_id"]

        pending = client.get("/api/admin/withdrawals/pending", headers=admin_headers).json()
        assert [w["withdrawal_id"] for w in pending] == [withdrawal_id]

        assert client.post(f"/api/admin/withdrawals/{withdrawal_id}/approve", headers=admin_headers).status_code == 200
        paid = client.post(
            f"/api/admin/withdrawals/{withdrawal_id}/process",
            json={"payment_reference": "WIRE-555"}, headers=admin_headers
        )
        assert paid.status_code == 200
        assert paid.json()["status"] == "COMPLETED"

        wallet = client.get("/api/consultants/wallet", headers=consultant_headers).json()
        assert wallet["balance"] == 0.0
        earnings = client.get("/api/consultants/earnings", headers=consultant_headers).json()
        assert earnings["paid"]["amount"] == 60.0

    def test_below_minimum(self, client, seed, auth_headers):
        admin = seed.admin()
        consultant = seed.consultant()
        seed.commit()
        client.post(
            "/api/admin/commissions/award",
            json={"consultant_id": consultant["consultant_id"], "amount": 20},
            headers=auth_headers(admin["user_id"])
        )
        response = client.post(
            "/api/consultants/withdrawals", json={"amount": 20}, headers=auth_headers(consultant["user_id"])
        )
        assert response.status_code == 400


class TestRefundFlow:
    def test_full_refund_reverses_sales_commission(self, client, seed, auth_headers):
        admin = seed.admin()
        agent = seed.sales_agent()
        company = seed.company(sales_agent_id=agent["consultant_id"])
        seed.fund(company["company_id"], 199000)
        seed.commit()
        admin_headers = auth_headers(admin["user_id"])
        company_headers = auth_headers(company["user_id"])

        job = client.post("/api/jobs", json={"title": "Designer"}, headers=company_headers).json()
        payment = client.post(f"/api/jobs/{job['job_id']}/pay", json={"package": "shortlisting"}, headers=company_headers).json()
        assert payment["commission"]["amount"] == 199.0

        refund = client.post(
            "/api/refunds",
            json={"transaction_id": payment["transaction"]["transaction_id"], "amount": 1990, "reason": "Role cancelled"},
            headers=company_headers
        )
        assert refund.status_code == 201

        approved = client.post(
            f"/api/admin/refunds/{refund.json()['refund_id']}/approve", json={"admin_notes": "OK"}, headers=admin_headers
        )
        assert approved.status_code == 200
        body = approved.json()
        assert body["refund"]["status"] == "APPROVED"
        assert body["commission_reversal"]["reversed"] == [payment["commission"]["commission_id"]]

        assert client.get(f"/api/jobs/{job['job_id']}", headers=company_headers).json()["payment_status"] == "REFUNDED"
        stats = client.get("/api/admin/refunds/stats", headers=admin_headers).json()
        assert stats["approved_amount"] == 1990.0
