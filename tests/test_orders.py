from bson.objectid import ObjectId

PROOF = [("paymentProof", ("receipt.jpg", b"\xff\xd8\xffreceipt", "image/jpeg"))]


def _stock(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]


def _place(client, buyer, seller, product_id, quantity=1):
    return client.post(
        "/api/orders",
        json={"seller": seller["id"], "product": product_id, "quantity": quantity},
        headers=buyer["headers"],
    )


def test_create_order_reserves_stock(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    product_id = make_product(seller, price=100, stock=10)

    response = _place(client, buyer, seller, product_id, quantity=3)
    assert response.status_code == 201
    order = response.json()["order"]
    assert order["total_amount"] == 300
    assert order["status"] == "pending"
    assert order["delivery_status"] == "pending"
    assert order["buyer"]["id"] == buyer["id"]
    assert order["product"]["price"] == 100
    assert _stock(db, product_id) == 7

    too_many = _place(client, buyer, seller, product_id, quantity=8)
    assert too_many.status_code == 400
    assert too_many.json() == {"error": "Requested quantity exceeds stock"}
    assert _stock(db, product_id) == 7
    assert db["order"].count_documents({}) == 1


def test_create_order_validation(client, db, make_user, make_product):
    seller, buyer, other = make_user(), make_user(), make_user()
    product_id = make_product(seller, stock=5)

    missing = client.post("/api/orders", json={"product": product_id, "quantity": 1}, headers=buyer["headers"])
    assert missing.status_code == 400
    assert missing.json() == {"error": "Seller, product, and quantity are required"}

    for quantity in (0, -2, 1.5):
        assert _place(client, buyer, seller, product_id, quantity=quantity).status_code == 400
    assert _place(client, buyer, other, product_id).status_code == 400
    assert _place(client, seller, seller, product_id).status_code == 400
    assert _place(client, buyer, seller, str(ObjectId())).status_code == 404
    assert _stock(db, product_id) == 5


def test_status_drives_delivery_status(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    product_id = make_product(seller)
    order_id = _place(client, buyer, seller, product_id).json()["order"]["id"]
    url = f"/api/orders/{order_id}/status"

    shipped = client.put(url, json={"status": "shipped"}, headers=seller["headers"]).json()["order"]
    assert shipped["delivery_status"] == "shipped"
    assert shipped["delivery_info"]["shipped_at"]

    completed = client.put(url, json={"status": "completed"}, headers=seller["headers"]).json()["order"]
    assert completed["status"] == "completed"
    assert completed["delivery_status"] == "delivered"
    assert completed["delivery_info"]["delivered_at"]

    assert db["user"].find_one({"_id": ObjectId(buyer["id"])})["total_purchases"] == 1
    assert db["user"].find_one({"_id": ObjectId(seller["id"])})["total_sales"] == 1

    invalid = client.put(url, json={"status": "lost"}, headers=seller["headers"])
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Invalid order status"}


def test_cancel_restores_stock_once(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    product_id = make_product(seller, stock=10)
    order_id = _place(client, buyer, seller, product_id, quantity=4).json()["order"]["id"]
    assert _stock(db, product_id) == 6

    response = client.put(f"/api/orders/{order_id}/cancel", headers=buyer["headers"])
    assert response.status_code == 200
    assert response.json()["order"]["status"] == "cancelled"
    assert response.json()["order"]["delivery_status"] == "pending"
    assert _stock(db, product_id) == 10

    again = client.put(f"/api/orders/{order_id}/status", json={"status": "cancelled"}, headers=seller["headers"])
    assert again.status_code == 400
    assert _stock(db, product_id) == 10

    revive = client.put(f"/api/orders/{order_id}/status", json={"status": "paid"}, headers=seller["headers"])
    assert revive.status_code == 400
    assert client.put(f"/api/orders/{order_id}/confirm-payment", headers=seller["headers"]).status_code == 400


def test_shipped_order_cannot_be_cancelled(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    product_id = make_product(seller, stock=3)
    order_id = _place(client, buyer, seller, product_id).json()["order"]["id"]
    client.put(f"/api/orders/{order_id}/status", json={"status": "shipped"}, headers=seller["headers"])

    assert client.put(f"/api/orders/{order_id}/cancel", headers=buyer["headers"]).status_code == 400
    assert _stock(db, product_id) == 2


def test_confirm_payment_is_for_the_seller(client, make_user, make_product):
    seller, buyer = make_user(), make_user()
    order_id = _place(client, buyer, seller, make_product(seller)).json()["order"]["id"]
    url = f"/api/orders/{order_id}/confirm-payment"

    assert client.put(url, headers=buyer["headers"]).status_code == 403
    response = client.put(url, headers=seller["headers"])
    assert response.status_code == 200
    order = response.json()["order"]
    assert order["payment_confirmed_by_seller"] is True
    assert order["status"] == "paid"


def test_accept_order(client, make_user, make_product):
    seller, buyer = make_user(), make_user()
    order_id = _place(client, buyer, seller, make_product(seller)).json()["order"]["id"]
    assert client.put(f"/api/orders/{order_id}/accept", headers=buyer["headers"]).status_code == 403
    response = client.put(f"/api/orders/{order_id}/accept", headers=seller["headers"])
    assert response.json()["order"]["accepted_by_seller"] is True


def test_upload_payment_proof(client, make_user, make_product):
    seller, buyer = make_user(), make_user()
    order_id = _place(client, buyer, seller, make_product(seller)).json()["order"]["id"]
    url = f"/api/orders/{order_id}/upload-proof"

    assert client.put(url, headers=buyer["headers"]).status_code == 400
    assert client.put(url, files=PROOF, headers=seller["headers"]).status_code == 403
    bad_type = [("paymentProof", ("receipt.pdf", b"%PDF", "application/pdf"))]
    assert client.put(url, files=bad_type, headers=buyer["headers"]).status_code == 400

    response = client.put(url, files=PROOF, headers=buyer["headers"])
    assert response.status_code == 200
    order = response.json()["order"]
    assert order["status"] == "payment_sent"
    assert order["payment_proof"].startswith("http://testserver/uploads/payment_proofs/")


def test_delivery_info_updates_status(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    order_id = _place(client, buyer, seller, make_product(seller)).json()["order"]["id"]
    url = f"/api/orders/{order_id}/delivery"

    assert client.put(url, json={"courier": "Zemen Express"}, headers=buyer["headers"]).status_code == 403

    tracked = client.put(url, json={"trackingNumber": "ZX-100", "courier": "Zemen Express"}, headers=seller["headers"])
    assert tracked.status_code == 200
    assert tracked.json()["order"]["delivery_info"]["tracking_number"] == "ZX-100"
    assert tracked.json()["order"]["status"] == "pending"

    shipped = client.put(url, json={"shippedAt": "2026-03-01T08:00:00Z"}, headers=seller["headers"]).json()["order"]
    assert (shipped["status"], shipped["delivery_status"]) == ("shipped", "shipped")
    assert shipped["delivery_info"]["courier"] == "Zemen Express"

    delivered = client.put(url, json={"deliveredAt": "2026-03-03T12:00:00Z"}, headers=seller["headers"]).json()["order"]
    assert (delivered["status"], delivered["delivery_status"]) == ("completed", "delivered")


def test_order_visibility(client, make_user, make_product):
    seller, buyer, stranger = make_user(), make_user(), make_user()
    admin = make_user(role="admin")
    order_id = _place(client, buyer, seller, make_product(seller)).json()["order"]["id"]

    assert client.get(f"/api/orders/{order_id}", headers=stranger["headers"]).status_code == 403
    assert client.get(f"/api/orders/{order_id}", headers=buyer["headers"]).status_code == 200
    assert client.get(f"/api/orders/{order_id}", headers=admin["headers"]).status_code == 200

    assert len(client.get("/api/orders", headers=seller["headers"]).json()["orders"]) == 1
    assert client.get("/api/orders", headers=stranger["headers"]).json()["orders"] == []
    assert len(client.get("/api/orders", headers=admin["headers"]).json()["orders"]) == 1

    assert client.get(f"/api/orders/buyer/{buyer['id']}", headers=buyer["headers"]).status_code == 200
    assert client.get(f"/api/orders/buyer/{buyer['id']}", headers=stranger["headers"]).status_code == 403
    assert client.get(f"/api/orders/seller/{seller['id']}", headers=seller["headers"]).status_code == 200
    assert client.get(f"/api/orders/seller/{stranger['id']}", headers=stranger["headers"]).status_code == 404


def test_admin_delete_restores_open_order_stock(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    admin = make_user(role="admin")
    product_id = make_product(seller, stock=5)
    order_id = _place(client, buyer, seller, product_id, quantity=2).json()["order"]["id"]

    assert client.delete(f"/api/orders/{order_id}", headers=seller["headers"]).status_code == 403
    assert client.delete(f"/api/orders/{order_id}", headers=admin["headers"]).status_code == 200
    assert _stock(db, product_id) == 5
    assert client.get(f"/api/orders/{order_id}", headers=admin["headers"]).status_code == 404


def test_completion_counters_credit_an_order_once(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    order_id = _place(client, buyer, seller, make_product(seller)).json()["order"]["id"]
    url = f"/api/orders/{order_id}/status"

    for status in ("completed", "shipped", "completed"):
        assert client.put(url, json={"status": status}, headers=seller["headers"]).status_code == 200

    assert db["user"].find_one({"_id": ObjectId(buyer["id"])})["total_purchases"] == 1
    assert db["user"].find_one({"_id": ObjectId(seller["id"])})["total_sales"] == 1


def test_buyer_can_only_cancel_through_status(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    product_id = make_product(seller, stock=4)
    order_id = _place(client, buyer, seller, product_id).json()["order"]["id"]
    url = f"/api/orders/{order_id}/status"

    for status in ("paid", "shipped", "completed"):
        response = client.put(url, json={"status": status}, headers=buyer["headers"])
        assert response.status_code == 403
    order = db["order"].find_one({"_id": ObjectId(order_id)})
    assert order["status"] == "pending"
    assert db["user"].find_one({"_id": ObjectId(seller["id"])})["total_sales"] == 0

    cancelled = client.put(url, json={"status": "cancelled"}, headers=buyer["headers"])
    assert cancelled.status_code == 200
    assert _stock(db, product_id) == 4


def test_non_finite_quantity_is_rejected(client, db, make_user, make_product):
    seller, buyer = make_user(), make_user()
    product_id = make_product(seller, stock=5)
    headers = {**buyer["headers"], "Content-Type": "application/json"}

    for raw in ("Infinity", "-Infinity", "NaN"):
        body = f'{{"seller": "{seller["id"]}", "product": "{product_id}", "quantity": {raw}}}'
        assert client.post("/api/orders", content=body, headers=headers).status_code == 400
    assert _stock(db, product_id) == 5
