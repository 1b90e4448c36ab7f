from conftest import add_rows, bearer, user_with_token
from models.enums import UserRole
from models.sql.partner import PartnerModel


def test_health(client):
    response = client.get("/api/v1/system/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_landing_unknown_sku_falls_back_to_case_f(client):
    response = client.get("/api/landing", params={"sku": "NOPE"})

    assert response.status_code == 200
    body = response.json()
    assert body["case"] == "F"
    assert body["form_type"] == "standard"
    assert body["amount"] == 0
    assert body["sku"] is None


def test_landing_claim_with_amount(client, claim_sku):
    response = client.get("/api/landing", params={"sku": claim_sku.code, "amount": "5"})

    body = response.json()
    assert body["case"] == "B"
    assert body["form_type"] == "minimal"
    assert body["impact"]["display_value"] == "45.45 kg"
    assert body["message"]["title"] == "Environmental Accumulation"
    assert body["sku"]["code"] == claim_sku.code


def test_landing_ignores_malformed_numbers(client, claim_sku):
    response = client.get("/api/landing", params={"sku": claim_sku.code, "amount": "abc"})

    assert response.status_code == 200
    assert response.json()["case"] == "A"


def test_public_settings_hide_admin_secret(client, admin_headers):
    client.put("/api/settings/ADMIN_SECRET_CODE", json={"value": "letmein"}, headers=admin_headers)

    settings = client.get("/api/settings").json()["settings"]
    assert settings["PRICE_PER_KG"] == "0.11"
    assert "ADMIN_SECRET_CODE" not in settings
    assert client.get("/api/settings/ADMIN_SECRET_CODE").status_code == 404


async def test_setting_updates_require_admin(client):
    _, token = await user_with_token("user@example.com")

    assert client.put("/api/settings/PRICE_PER_KG", json={"value": "0.2"}).status_code == 401
    forbidden = client.put("/api/settings/PRICE_PER_KG", json={"value": "0.2"}, headers=bearer(token))
    assert forbidden.status_code == 403


def test_admin_login_with_secret_code(client, admin_headers):
    client.put("/api/settings/ADMIN_SECRET_CODE", json={"value": "letmein"}, headers=admin_headers)

    rejected = client.post("/api/auth/admin-login", json={"secret_code": "wrong"})
    assert rejected.status_code == 400

    response = client.post("/api/auth/admin-login", json={"secret_code": "letmein"})
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "ADMIN"


def test_register_and_magic_link_flow(client):
    registered = client.post("/api/auth/register", json={"email": "Ada@Example.com", "first_name": "Ada"})
    assert registered.status_code == 201
    assert registered.json()["user"]["email"] == "ada@example.com"

    link = client.post("/api/auth/magic-link", json={"email": "ada@example.com"}).json()
    token = link["magic_link_url"].rsplit("/", 1)[-1]

    verified = client.get(f"/api/auth/verify/{token}")
    assert verified.status_code == 200
    session_token = verified.json()["token"]

    me = client.get("/api/auth/me", headers=bearer(session_token))
    assert me.json()["user"]["first_name"] == "Ada"

    assert client.get(f"/api/auth/verify/{token}").status_code == 400


def test_magic_link_for_unknown_user_is_404(client):
    assert client.post("/api/auth/magic-link", json={"email": "ghost@example.com"}).status_code == 404


def test_anonymous_transaction_credits_wallet(client):
    created = client.post(
        "/api/transactions",
        json={"payment_mode": "CLAIM", "amount": 1.1, "email": "buyer@example.com"},
    )
    assert created.status_code == 201
    assert created.json()["transaction"]["payment_status"] == "COMPLETED"

    wallet = client.get("/api/wallet/email/buyer@example.com").json()["wallet"]
    assert wallet["balance"] == 1.1
    assert wallet["transaction_count"] == 1


def test_transaction_without_email_is_rejected(client):
    response = client.post("/api/transactions", json={"payment_mode": "CLAIM", "amount": 1})

    assert response.status_code == 400


async def test_merchant_dashboard_routes(client, merchant):
    _, merchant_token = await user_with_token(
        "owner@oceanfoods.example", UserRole.MERCHANT, merchant_id=merchant.id
    )
    _, unlinked_token = await user_with_token("unlinked@example.com", UserRole.MERCHANT)
    _, user_token = await user_with_token("plain@example.com")

    me = client.get("/api/merchants/me", headers=bearer(merchant_token))
    assert me.status_code == 200
    assert me.json()["merchant"]["name"] == "Ocean Foods"

    assert client.get("/api/merchants/me", headers=bearer(unlinked_token)).status_code == 404
    assert client.get("/api/merchants/me", headers=bearer(user_token)).status_code == 403
    assert client.get(f"/api/merchants/{merchant.id}", headers=bearer(unlinked_token)).status_code == 403


def test_admin_cron_and_reports(client, admin_headers):
    assert client.post("/api/admin/cron/daily").status_code == 401

    daily = client.post("/api/admin/cron/daily", headers=admin_headers)
    assert daily.status_code == 200
    assert daily.json()["tasks_succeeded"] == 1

    report = client.get("/api/admin/reports/impact", headers=admin_headers).json()
    assert report["total_transactions"] == 0


def test_admin_corsair_download_is_csv(client, admin_headers):
    response = client.get("/api/admin/corsair/download", headers=admin_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")


def test_sku_admin_lifecycle(client, admin_headers):
    body = {"code": "SHOP-PAY", "name": "Shop pay", "payment_mode": "PAY", "price": 3}

    created = client.post("/api/skus", json=body, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["sku"]["active"] is True
    assert client.post("/api/skus", json=body, headers=admin_headers).status_code == 400
    assert client.get("/api/skus/SHOP-PAY").json()["sku"]["price"] == 3.0

    deleted = client.delete("/api/skus/SHOP-PAY", headers=admin_headers)
    assert deleted.json() == {"message": "SKU deactivated."}
    assert client.get("/api/skus/SHOP-PAY").status_code == 404

    listed = client.get("/api/skus", headers=admin_headers).json()["skus"]
    assert [(sku["code"], sku["active"]) for sku in listed] == [("SHOP-PAY", False)]


async def test_partner_summary_access(client, admin_headers):
    partner, other = await add_rows(
        PartnerModel(name="Blue Coast", email="team@bluecoast.example"),
        PartnerModel(name="Green Reef", email="hello@greenreef.example"),
    )
    _, own_token = await user_with_token("lia@bluecoast.example", UserRole.PARTNER, partner_id=partner.id)
    _, other_token = await user_with_token("max@greenreef.example", UserRole.PARTNER, partner_id=other.id)

    url = f"/api/partners/{partner.id}/summary"
    assert client.get(url).status_code == 401
    assert client.get(url, headers=bearer(other_token)).status_code == 403

    own = client.get(url, headers=bearer(own_token))
    assert own.status_code == 200
    assert own.json()["partner"]["name"] == "Blue Coast"
    assert client.get(url, headers=admin_headers).status_code == 200


def test_partner_admin_create_and_update(client, admin_headers):
    created = client.post(
        "/api/partners",
        json={"name": "Blue Coast", "email": "team@bluecoast.example", "commission_rate": 0.1},
        headers=admin_headers,
    )
    assert created.status_code == 201
    partner_id = created.json()["partner"]["id"]

    updated = client.put(f"/api/partners/{partner_id}", json={"contact_person": "Lia"}, headers=admin_headers)
    assert updated.json()["partner"]["contact_person"] == "Lia"
    assert updated.json()["partner"]["commission_rate"] == 0.1
