from __future__ import annotations


def _create_note(client, auth, user, job_ids, **extra):
    return client.post("/billing", headers=auth(user), json={"jobIds": job_ids, **extra})


def _note_id(client, auth, world, make_job):
    job = make_job(world.vendor_a, "107")
    return _create_note(client, auth, world.vendor_a_user, [job.id]).get_json()["data"]["id"]


def test_vendor_submits_job_and_billing_note(client, world, auth):
    job = client.post(
        "/jobs",
        headers=auth(world.vendor_a_user),
        json={
            "description": "Import clearance",
            "containerNo": "TGHU0000001",
            "items": [{"description": "Clearance fee", "amount": "107"}],
        },
    )
    assert job.status_code == 201
    job_id = job.get_json()["data"]["id"]

    response = _create_note(client, auth, world.vendor_a_user, [job_id])

    assert response.status_code == 201
    note = response.get_json()["data"]
    assert note["subtotal"] == "107.00"
    assert note["vatRateText"] == "7"
    assert note["priceBeforeVat"] == "100.00"
    assert note["status"] == "PENDING"
    assert note["jobs"][0]["status"] == "BILLED"


def test_billing_preview(client, world, auth, make_job):
    job = make_job(world.vendor_a, "214")
    response = client.post("/billing/preview", headers=auth(world.vendor_a_user), json={"jobIds": [job.id]})

    assert response.status_code == 200
    assert response.get_json()["data"]["priceBeforeVat"] == "200.00"


def test_vendor_approving_own_note_is_forbidden(client, world, auth, make_job):
    note_id = _note_id(client, auth, world, make_job)

    response = client.post(f"/billing/{note_id}/approve", headers=auth(world.vendor_a_user))

    assert response.status_code == 403
    assert response.get_json()["code"] == "forbidden"


def test_foreign_note_is_not_found(client, world, auth, make_job):
    note_id = _note_id(client, auth, world, make_job)

    assert client.get(f"/billing/{note_id}", headers=auth(world.vendor_b_user)).status_code == 404
    assert client.post(f"/billing/{note_id}/void", headers=auth(world.vendor_b_user)).status_code == 404
    assert client.get(f"/billing/{note_id}", headers=auth(world.user_a)).status_code == 200


def test_list_is_scoped_per_vendor(client, world, auth, make_job):
    _create_note(client, auth, world.vendor_a_user, [make_job(world.vendor_a, "107").id])
    _create_note(client, auth, world.vendor_b_user, [make_job(world.vendor_b, "107").id])

    own = client.get("/billing", headers=auth(world.vendor_a_user)).get_json()["data"]
    everything = client.get("/billing", headers=auth(world.admin)).get_json()["data"]
    filtered = client.get(f"/billing?vendorId={world.vendor_b.id}", headers=auth(world.admin)).get_json()["data"]

    assert {n["vendorId"] for n in own} == {world.vendor_a.id}
    assert len(everything) == 2
    assert {n["vendorId"] for n in filtered} == {world.vendor_b.id}
    assert client.get(f"/billing?vendorId={world.vendor_b.id}", headers=auth(world.vendor_a_user)).status_code == 404


def test_unknown_action_is_not_found(client, world, auth, make_job):
    note_id = _note_id(client, auth, world, make_job)
    assert client.post(f"/billing/{note_id}/pay", headers=auth(world.admin)).status_code == 404


def test_full_document_flow_with_pending_counts(client, world, auth, make_job):
    vendor, admin = auth(world.vendor_a_user), auth(world.admin)

    def counts():
        rows = client.get("/vendors", headers=admin).get_json()["data"]
        row = next(r for r in rows if r["id"] == world.vendor_a.id)
        return row["pendingBillingCount"], row["pendingReceiptCount"]

    note_id = _note_id(client, auth, world, make_job)
    assert counts() == (1, 0)

    # A receipt against a PENDING note is refused
    refused = client.post("/receipts", headers=vendor, json={"billingNoteIds": [note_id]})
    assert refused.status_code == 409

    assert client.post(f"/billing/{note_id}/approve", headers=admin).status_code == 200
    assert counts() == (0, 0)

    receipt = client.post("/receipts", headers=vendor, json={"billingNoteIds": [note_id]})
    assert receipt.status_code == 201
    receipt_id = receipt.get_json()["data"]["id"]
    assert receipt.get_json()["data"]["netTotal"] == "104.00"
    assert counts() == (0, 1)

    assert client.post(f"/receipts/{receipt_id}/approve", headers=admin).status_code == 200
    assert counts() == (0, 0)

    eligible = client.get(f"/payment-vouchers/eligible-receipts/{world.vendor_a.id}", headers=admin)
    assert [r["id"] for r in eligible.get_json()["data"]] == [receipt_id]

    voucher = client.post(
        "/payment-vouchers",
        headers=admin,
        json={"vendorId": world.vendor_a.id, "receiptIds": [receipt_id]},
    )
    assert voucher.status_code == 201
    data = voucher.get_json()["data"]
    assert data["status"] == "ISSUED"
    assert data["netTotal"] == "104.00"
    assert [r["id"] for r in data["receipts"]] == [receipt_id]

    # Receipts are untouched by the voucher
    receipt_after = client.get(f"/receipts/{receipt_id}", headers=vendor).get_json()["data"]
    assert receipt_after["status"] == "APPROVED"

    cancelled = client.post(f"/payment-vouchers/{data['id']}/cancel", headers=admin)
    assert cancelled.get_json()["data"]["status"] == "CANCELLED"


def test_vouchers_are_admin_only(client, world, auth):
    assert client.get("/payment-vouchers", headers=auth(world.vendor_a_user)).status_code == 403
    assert client.get("/payment-vouchers", headers=auth(world.admin)).status_code == 200


def test_voucher_vendor_id_must_be_an_integer(client, world, auth):
    response = client.post("/payment-vouchers", headers=auth(world.admin), json={"vendorId": "abc", "receiptIds": [1]})

    assert response.status_code == 400
    assert response.get_json()["details"]["field"] == "vendorId"
    missing = client.post("/payment-vouchers", headers=auth(world.admin), json={"receiptIds": [1]})
    assert missing.status_code == 400


def test_user_role_is_read_only(client, world, auth, make_job):
    job = make_job(world.vendor_a, "107")

    assert client.get("/jobs", headers=auth(world.user_a)).status_code == 200
    assert _create_note(client, auth, world.user_a, [job.id]).status_code == 403
    assert client.delete(f"/jobs/{job.id}", headers=auth(world.user_a)).status_code == 403


def test_validation_errors_are_json(client, world, auth):
    response = client.post(
        "/jobs",
        headers=auth(world.vendor_a_user),
        json={"description": "x", "items": [{"description": "fee", "amount": "abc"}]},
    )
    assert response.status_code == 400
    body = response.get_json()
    assert body["code"] == "validation_error"
    assert body["details"]["field"] == "items[0].amount"


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------
def test_settings_without_vendor_returns_defaults(client, world, auth):
    data = client.get("/settings", headers=auth(world.loose_vendor)).get_json()["data"]

    assert data["vendor"] is None
    assert data["vatConfig"] == {"vatRate": "7", "whtRate": "3", "calculateBeforeVat": False}


def test_vendor_registration_attaches_user(client, world, auth):
    headers = auth(world.loose_vendor)
    response = client.post(
        "/settings/vendor",
        headers=headers,
        json={"companyName": "Gamma Freight", "taxId": "3333333333333"},
    )
    assert response.status_code == 201

    me = client.get("/auth/me", headers=headers).get_json()["data"]
    assert me["vendor"]["companyName"] == "Gamma Freight"
    assert "submit_billing" in me["capabilities"]


def test_vendor_registration_rejects_duplicate_tax_id(client, world, auth):
    response = client.post(
        "/settings/vendor",
        headers=auth(world.loose_vendor),
        json={"companyName": "Copycat", "taxId": "1111111111111"},
    )
    assert response.status_code == 409


def test_vat_settings_validation(client, world, auth):
    headers = auth(world.vendor_a_user)
    assert client.put("/settings/vat", headers=headers, json={"vatRate": "150"}).status_code == 400

    response = client.put("/settings/vat", headers=headers, json={"vatRate": "10", "calculateBeforeVat": True})
    assert response.get_json()["data"] == {"vatRate": "10", "whtRate": "3", "calculateBeforeVat": True}


def test_document_number_settings_and_preview(client, world, auth):
    headers = auth(world.vendor_a_user)
    response = client.put(
        "/settings/document-number",
        headers=headers,
        json={"billingEnabled": True, "billingPrefix": "AL", "dateFormat": "YYMM", "runningDigits": 4},
    )
    assert response.status_code == 200

    preview = client.get("/settings/document-number/preview?type=BILLING", headers=headers).get_json()["data"]
    assert preview["number"].startswith("AL")
    assert preview["number"].endswith("0001")
    assert len(preview["number"]) == len("AL") + 4 + 4

    bad = client.put("/settings/document-number", headers=headers, json={"runningDigits": 9})
    assert bad.status_code == 400
