import json

START = "2026-01-10T10:00:00"
END = "2026-01-10T12:30:00"  # 2.5h, billed as 2


def _rental(customer_id, computer_id, **extra):
    body = {
        "customer_id": customer_id,
        "computer_id": computer_id,
        "rental_start": START,
        "rental_end": END,
        "activity_description": "Gaming",
    }
    body.update(extra)
    return body


def test_wallet_rental_records_everything(client, db, customer, admin):
    cid, _ = customer
    aid, headers = admin
    pc = db.add_computer(rate=10_000)
    tea = db.add_service(price=5_000, quantity=10)

    r = client.post(
        "/admin/rental?payment_method=wallet",
        json=_rental(cid, pc, services=[{"service_id": tea, "quantity": 2}]),
        headers=headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Rental recorded successfully"
    assert body["rental_cost"] == 20_000
    assert body["services_cost"] == 10_000
    assert body["total_cost"] == 30_000
    assert body["rental_duration"] == 2.5

    assert db.wallet(cid) == 70_000
    assert db.scalar("SELECT is_available FROM computer WHERE id = ?",
                     (pc,)) == 0
    assert db.scalar("SELECT quantity FROM service WHERE id = ?", (tea,)) == 8

    rental = db.rows("SELECT * FROM rental_history")
    assert len(rental) == 1
    assert rental[0]["id"] == body["rental_history"]
    assert rental[0]["admin_id"] == aid
    assert rental[0]["total_cost"] == 30_000
    assert rental[0]["booking_status"] == "settlement"

    lines = db.rows("SELECT * FROM rental_services")
    assert [(x["rental_history_id"], x["service_id"], x["quantity"])
            for x in lines] == [(rental[0]["id"], tea, 2)]

    tx = db.rows("SELECT * FROM transactions")
    assert len(tx) == 1
    assert tx[0]["transaction_type"] == "Rental Payment"
    assert tx[0]["transaction_method"] == "Wallet"
    assert tx[0]["status"] == "settlement"
    assert tx[0]["amount"] == 30_000

    descs = [x["description"] for x in db.rows("SELECT * FROM log")]
    assert any("Activity: Gaming" in d for d in descs)


def test_wallet_rental_insufficient_balance(client, db, admin):
    _, headers = admin
    cid = db.add_customer(wallet=5_000)
    pc = db.add_computer(rate=10_000)

    r = client.post("/admin/rental?payment_method=wallet",
                    json=_rental(cid, pc), headers=headers)
    assert r.status_code == 400
    assert r.json() == {"message": "Insufficient wallet balance"}
    assert db.wallet(cid) == 5_000
    assert db.scalar("SELECT is_available FROM computer WHERE id = ?",
                     (pc,)) == 1
    assert db.scalar("SELECT COUNT(*) FROM transactions") == 0
    assert db.scalar("SELECT COUNT(*) FROM rental_history") == 0


def test_rental_rejects_unavailable_computer(client, db, customer, admin):
    cid, _ = customer
    _, headers = admin
    pc = db.add_computer(available=False)

    r = client.post("/admin/rental?payment_method=wallet",
                    json=_rental(cid, pc), headers=headers)
    assert r.status_code == 400
    assert r.json() == {"message": "Computer not available"}
    assert db.wallet(cid) == 100_000


def test_rental_rejects_bad_requests(client, db, customer, admin):
    cid, _ = customer
    _, headers = admin
    pc = db.add_computer()

    r = client.post("/admin/rental?payment_method=cash",
                    json=_rental(cid, pc), headers=headers)
    assert r.status_code == 400
    assert r.json() == {"message": "Invalid payment method"}

    r = client.post("/admin/rental", json=_rental(cid, pc), headers=headers)
    assert r.status_code == 400

    r = client.post(
        "/admin/rental?payment_method=wallet",
        json=_rental(cid, pc, rental_end="2026-01-10T10:45:00"),
        headers=headers,
    )
    assert r.status_code == 400

    r = client.post(
        "/admin/rental?payment_method=wallet",
        json=_rental(cid, pc, rental_start="yesterday"),
        headers=headers,
    )
    assert r.status_code == 400

    r = client.post("/admin/rental?payment_method=wallet",
                    json=_rental(9999, pc), headers=headers)
    assert r.status_code == 404
    assert r.json() == {"message": "Customer not found"}

    assert db.scalar("SELECT COUNT(*) FROM transactions") == 0
    assert db.wallet(cid) == 100_000


def test_rental_checks_stock_before_charging(client, db, customer, admin):
    cid, _ = customer
    _, headers = admin
    pc = db.add_computer()
    noodles = db.add_service(price=10_000, quantity=1)

    r = client.post(
        "/admin/rental?payment_method=wallet",
        json=_rental(cid, pc,
                     services=[{"service_id": noodles, "quantity": 3}]),
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json() == {
        "message": f"Insufficient stock for Service ID {noodles}. "
                   "Available: 1, Requested: 3"
    }

    r = client.post(
        "/admin/rental?payment_method=wallet",
        json=_rental(cid, pc, services=[{"service_id": 4242, "quantity": 1}]),
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json() == {"message": "Invalid service ID 4242"}

    assert db.wallet(cid) == 100_000
    assert db.scalar("SELECT quantity FROM service WHERE id = ?",
                     (noodles,)) == 1


def test_gopay_rental_books_once_after_settlement(
    client, db, customer, admin, mockpay
):
    cid, customer_headers = customer
    aid, headers = admin
    pc = db.add_computer(rate=10_000)
    tea = db.add_service(price=5_000, quantity=10)

    r = client.post(
        "/admin/rental?payment_method=gopay",
        json=_rental(cid, pc, services=[{"service_id": tea, "quantity": 1}]),
        headers=headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Payment initiated"
    assert body["total_cost"] == 25_000
    order_id = body["order_id"]
    assert order_id.startswith(f"rental-{cid}-")
    assert body["payment_url"] == f"/mockpay/{order_id}"

    # nothing happens before the payment settles
    assert db.scalar("SELECT COUNT(*) FROM rental_history") == 0
    tx = db.rows("SELECT * FROM transactions")
    assert tx[0]["status"] == "pending"
    assert tx[0]["transaction_method"] == "GoPay"
    meta = json.loads(tx[0]["metadata"])
    assert meta["computer_id"] == pc
    assert meta["admin_id"] == aid
    assert meta["services"] == [{"service_id": tea, "quantity": 1}]

    url = f"/customer/wallet/payment-status/{order_id}"
    r = client.get(url, headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["fulfillment"] == "not_paid"

    mockpay.set_status(order_id, "settlement")
    r = client.get(url, headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["transaction_status"] == "settlement"
    assert r.json()["fulfillment"] == "applied"

    r = client.get(url, headers=customer_headers)
    assert r.json()["fulfillment"] == "already_applied"

    rentals = db.rows("SELECT * FROM rental_history")
    assert len(rentals) == 1
    assert rentals[0]["total_cost"] == 25_000
    assert rentals[0]["admin_id"] == aid
    assert db.scalar("SELECT quantity FROM service WHERE id = ?", (tea,)) == 9
    assert db.scalar("SELECT is_available FROM computer WHERE id = ?",
                     (pc,)) == 0
    assert db.scalar("SELECT status FROM transactions") == "settlement"
    # paid through the gateway, not the wallet
    assert db.wallet(cid) == 100_000


def test_settled_rental_skips_services_out_of_stock(
    client, db, customer, admin, mockpay
):
    cid, customer_headers = customer
    _, headers = admin
    pc = db.add_computer()
    tea = db.add_service(quantity=2)

    r = client.post(
        "/admin/rental?payment_method=gopay",
        json=_rental(cid, pc, services=[{"service_id": tea, "quantity": 2}]),
        headers=headers,
    )
    order_id = r.json()["order_id"]
    # stock sold elsewhere before the customer pays
    db.execute("UPDATE service SET quantity = 0 WHERE id = ?", (tea,))

    mockpay.set_status(order_id, "settlement")
    r = client.get(f"/customer/wallet/payment-status/{order_id}",
                   headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["fulfillment"] == "applied"
    assert db.scalar("SELECT COUNT(*) FROM rental_history") == 1
    assert db.scalar("SELECT COUNT(*) FROM rental_services") == 0
    assert db.scalar("SELECT quantity FROM service WHERE id = ?", (tea,)) == 0
    descs = [x["description"] for x in db.rows("SELECT * FROM log")]
    assert any("out of stock" in d for d in descs)


def test_return_computer(client, db, customer, admin):
    cid, _ = customer
    _, headers = admin
    pc = db.add_computer()

    r = client.post("/admin/rental?payment_method=wallet",
                    json=_rental(cid, pc), headers=headers)
    rental_id = r.json()["rental_history"]

    r = client.post(f"/admin/rental/{rental_id}/return", headers=headers)
    assert r.status_code == 200
    assert r.json()["message"] == "Computer returned successfully"
    assert db.scalar("SELECT is_available FROM computer WHERE id = ?",
                     (pc,)) == 1
    assert db.scalar("SELECT booking_status FROM rental_history") == \
        "completed"

    r = client.post(f"/admin/rental/{rental_id}/return", headers=headers)
    assert r.status_code == 400

    r = client.post("/admin/rental/9999/return", headers=headers)
    assert r.status_code == 404


def test_catalog_listing_and_admin_maintenance(client, db, admin):
    _, headers = admin

    r = client.post("/admin/computers",
                    json={"name": "PC-09", "hourly_rate": 12_000},
                    headers=headers)
    assert r.status_code == 200
    pc = r.json()["id"]
    db.add_computer(available=False, name="PC-10")

    r = client.get("/computers")
    assert [c["name"] for c in r.json()["items"]] == ["PC-09", "PC-10"]
    r = client.get("/computers?available=true")
    assert [c["id"] for c in r.json()["items"]] == [pc]

    r = client.post("/admin/services",
                    json={"name": "Coffee", "price": 8_000, "quantity": 5},
                    headers=headers)
    assert r.status_code == 200
    sid = r.json()["id"]

    r = client.post("/admin/services",
                    json={"service_id": sid, "quantity": 10},
                    headers=headers)
    assert r.status_code == 200
    assert r.json()["quantity"] == 15

    r = client.post("/admin/services",
                    json={"service_id": 9999, "quantity": 1},
                    headers=headers)
    assert r.status_code == 404

    r = client.get("/services")
    assert r.json()["items"] == [
        {"id": sid, "name": "Coffee", "price": 8_000, "quantity": 15}
    ]


def test_late_settlement_on_rented_computer_keeps_it_booked(
    client, db, customer, admin, mockpay
):
    cid, customer_headers = customer
    _, headers = admin
    pc = db.add_computer(rate=10_000)
    other = db.add_customer(name="Budi", wallet=100_000)

    r = client.post("/admin/rental?payment_method=gopay",
                    json=_rental(cid, pc), headers=headers)
    order_id = r.json()["order_id"]
    # someone else rents the pc from their wallet before the gopay settles
    r = client.post("/admin/rental?payment_method=wallet",
                    json=_rental(other, pc), headers=headers)
    wallet_rental = r.json()["rental_history"]

    mockpay.set_status(order_id, "settlement")
    r = client.get(f"/customer/wallet/payment-status/{order_id}",
                   headers=customer_headers)
    assert r.json()["fulfillment"] == "applied"
    rentals = db.rows(
        "SELECT id, customer_id FROM rental_history "
        "WHERE booking_status = 'settlement' ORDER BY id"
    )
    assert [x["customer_id"] for x in rentals] == [other, cid]
    gopay_rental = rentals[1]["id"]

    r = client.post(f"/admin/rental/{wallet_rental}/return", headers=headers)
    assert r.status_code == 200
    assert r.json()["computer_available"] is False
    assert db.scalar("SELECT is_available FROM computer WHERE id = ?",
                     (pc,)) == 0
    r = client.post("/admin/rental?payment_method=wallet",
                    json=_rental(other, pc), headers=headers)
    assert r.status_code == 400
    assert r.json() == {"message": "Computer not available"}

    r = client.post(f"/admin/rental/{gopay_rental}/return", headers=headers)
    assert r.json()["computer_available"] is True
    assert db.scalar("SELECT is_available FROM computer WHERE id = ?",
                     (pc,)) == 1
