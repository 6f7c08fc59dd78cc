from conftest import order_payload


# ----------------------- Hero slides -----------------------
def test_default_slides_are_seeded_on_first_read(client, db):
    slides = client.get("/api/hero-slides").json()["data"]
    assert len(slides) == 5
    main_slides = client.get("/api/hero-slides", params={"type": "main"}).json()["data"]
    assert [s["order"] for s in main_slides] == [1, 2, 3]
    assert main_slides[0]["alt"] == "Winter Sale Banner - Electronics Deals"
    assert db["heroslide"].count_documents({}) == 5


def test_new_slide_goes_last_in_its_type(client, admin_headers):
    client.get("/api/hero-slides")
    res = client.post("/api/hero-slides", json={"image": "https://example.com/s.jpg", "type": "side"}, headers=admin_headers)
    assert res.status_code == 201
    assert res.json()["data"]["order"] == 3
    assert res.json()["data"]["link"] == "/allProducts"


def test_bulk_reorder_and_hide(client, admin_headers):
    slides = client.get("/api/hero-slides", params={"type": "main"}).json()["data"]
    reordered = [{"id": s["id"], "order": 3 - i} for i, s in enumerate(slides)]
    assert client.put("/api/hero-slides", json={"slides": reordered}, headers=admin_headers).status_code == 200
    after = client.get("/api/hero-slides", params={"type": "main"}).json()["data"]
    assert [s["id"] for s in after] == [s["id"] for s in reversed(slides)]

    hidden = after[0]["id"]
    res = client.put(f"/api/hero-slides/{hidden}", json={"active": False}, headers=admin_headers)
    assert res.json()["data"]["active"] is False
    assert hidden not in [s["id"] for s in client.get("/api/hero-slides").json()["data"]]

    assert client.delete(f"/api/hero-slides/{hidden}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/hero-slides/{hidden}").status_code == 404


def test_empty_reorder_is_rejected(client, admin_headers):
    assert client.put("/api/hero-slides", json={"slides": []}, headers=admin_headers).status_code == 400


# ----------------------- Review gallery -----------------------
def test_gallery(client, admin_headers):
    assert client.post("/api/review-gallery", json={"caption": "x"}, headers=admin_headers).status_code == 400

    first = client.post("/api/review-gallery", json={"image": "https://example.com/1.png", "caption": "  Loved it "}, headers=admin_headers).json()["data"]
    second = client.post("/api/review-gallery", json={"image": "https://example.com/2.png"}, headers=admin_headers).json()["data"]
    assert first["caption"] == "Loved it"
    assert (first["order"], second["order"]) == (1, 2)

    client.put("/api/review-gallery", json={"id": second["id"], "order": 0}, headers=admin_headers)
    images = client.get("/api/review-gallery").json()["data"]
    assert [i["id"] for i in images] == [second["id"], first["id"]]

    assert client.delete("/api/review-gallery", headers=admin_headers).status_code == 400
    assert client.delete("/api/review-gallery", params={"id": first["id"]}, headers=admin_headers).status_code == 200
    assert len(client.get("/api/review-gallery").json()["data"]) == 1


def test_gallery_writes_need_admin(client, user_headers):
    res = client.post("/api/review-gallery", json={"image": "https://example.com/1.png"}, headers=user_headers)
    assert res.status_code == 403


# ----------------------- Settings -----------------------
def test_settings_defaults(client):
    data = client.get("/api/settings").json()["data"]
    assert data["shipping"] == {
        "standard_fee": 100,
        "free_shipping_threshold": 5000,
        "express_shipping_fee": 200,
        "enable_free_shipping": True,
    }
    assert data["general"]["currency"] == "BDT"
    assert data["top_banner"]["enabled"] is False


def test_settings_partial_update(client, db, admin_headers):
    res = client.put("/api/settings", json={
        "id": "ignored",
        "type": "other",
        "top_banner": {"enabled": True, "message": "Eid sale"},
    }, headers=admin_headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["top_banner"]["enabled"] is True
    assert data["top_banner"]["message"] == "Eid sale"
    assert data["top_banner"]["text_color"] == "#ffffff"
    assert data["type"] == "site_settings"
    assert db["sitesettings"].count_documents({}) == 1


def test_settings_reject_bad_values(client, admin_headers):
    res = client.put("/api/settings", json={"shipping": {"standard_fee": -5}}, headers=admin_headers)
    assert res.status_code == 400


# ----------------------- Reviews -----------------------
def delivered_order(client, user_headers, admin_headers, pid):
    oid = client.post("/api/orders", json=order_payload([{"product_id": pid, "quantity": 1}]), headers=user_headers).json()["data"]["id"]
    for status in ("processing", "shipped", "delivered"):
        client.patch(f"/api/orders/{oid}", json={"status": status}, headers=admin_headers)
    return oid


def test_reviews_need_a_delivered_order(client, user_headers, admin_headers, make_product):
    pid = make_product()
    oid = client.post("/api/orders", json=order_payload([{"product_id": pid, "quantity": 1}]), headers=user_headers).json()["data"]["id"]
    review = {"product_id": pid, "order_id": oid, "rating": 5, "title": "Great"}
    res = client.post("/api/reviews", json=review, headers=user_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "You can only review products from delivered orders"


def test_review_lifecycle(client, user_headers, other_user_headers, admin_headers, make_product):
    pid = make_product()
    other = make_product(name="Other")
    oid = delivered_order(client, user_headers, admin_headers, pid)

    assert client.post("/api/reviews", json={"product_id": pid, "order_id": oid, "rating": 6}, headers=user_headers).status_code == 400
    assert client.post("/api/reviews", json={"product_id": other, "order_id": oid, "rating": 4}, headers=user_headers).status_code == 400
    assert client.post("/api/reviews", json={"product_id": pid, "order_id": oid, "rating": 4}, headers=other_user_headers).status_code == 404

    res = client.post("/api/reviews", json={"product_id": pid, "order_id": oid, "rating": 4, "comment": " Solid "}, headers=user_headers)
    assert res.status_code == 201
    review = res.json()["data"]
    assert review["user_name"] == "Jane"
    assert review["comment"] == "Solid"

    dup = client.post("/api/reviews", json={"product_id": pid, "order_id": oid, "rating": 5}, headers=user_headers)
    assert dup.status_code == 400

    listing = client.get("/api/reviews", params={"product_id": pid}).json()
    assert listing["average_rating"] == 4

    stats = client.get(f"/api/reviews/{pid}").json()["stats"]
    assert stats["total"] == 1
    assert stats["rating_breakdown"]["4"] == 1

    assert client.get(f"/api/reviews/{review['id']}").json()["data"]["rating"] == 4

    assert client.put(f"/api/reviews/{review['id']}", json={"rating": 5}, headers=other_user_headers).status_code == 403
    assert client.put(f"/api/reviews/{review['id']}", json={"rating": 5}, headers=user_headers).json()["data"]["rating"] == 5
    assert client.delete(f"/api/reviews/{review['id']}", headers=admin_headers).status_code == 200


# ----------------------- Admin stats -----------------------
def test_admin_stats(client, user_headers, admin_headers, make_product):
    pid = make_product(price=1000, stock=10)
    make_product(name="Low", stock=3)
    make_product(name="Gone", stock=0)
    delivered_order(client, user_headers, admin_headers, pid)
    cancelled = client.post("/api/orders", json=order_payload([{"product_id": pid, "quantity": 1}]), headers=user_headers).json()["data"]["id"]
    client.patch(f"/api/orders/{cancelled}", json={"status": "cancelled"}, headers=admin_headers)
    client.post("/api/orders", json=order_payload([{"product_id": pid, "quantity": 1}]), headers=user_headers)

    stats = client.get("/api/admin/stats", headers=admin_headers).json()["data"]
    assert stats["total_orders"] == 3
    assert stats["total_revenue"] == 2200
    assert stats["delivered_revenue"] == 1100
    assert stats["pending_orders"] == 1
    assert stats["cancelled_orders"] == 1
    assert stats["total_products"] == 3
    assert stats["low_stock_products"] == 2
    assert stats["out_of_stock"] == 1
    assert stats["total_customers"] == 2

    assert client.get("/api/admin/stats", headers=user_headers).status_code == 403


def test_rating_breakdown_skips_out_of_range_ratings(client, db, make_product):
    pid = make_product()
    db["review"].insert_many([
        {"product_id": pid, "user_id": "u1", "rating": 5},
        {"product_id": pid, "user_id": "u2", "rating": 7},
    ])
    stats = client.get(f"/api/reviews/{pid}").json()["stats"]
    assert stats["total"] == 2
    assert stats["rating_breakdown"] == {"1": 0, "2": 0, "3": 0, "4": 0, "5": 1}
