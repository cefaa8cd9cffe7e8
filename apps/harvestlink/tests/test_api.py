import uuid
from datetime import timedelta
from pathlib import Path

from fastapi.testclient import TestClient

from app.config import settings
from app.database import session_scope
from app.delivery import haversine_km, estimate_minutes
from app.main import app
from app.models import Order
from app.utils import utcnow


client = TestClient(app)

FARM = (12.9716, 77.5946)
NEARBY = (13.0716, 77.5946)  # ~11 km north
FAR_AWAY = (13.9716, 77.5946)  # ~111 km north


def _email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def _signup(role: str, **extra):
    body = {"email": _email(role), "password": "secret123", "full_name": f"Test {role}", "role": role}
    if role == "farmer":
        body["farm_name"] = "Test Farm"
    else:
        body["business_name"] = "Test Bistro"
        body["business_type"] = "restaurant"
    body.update(extra)
    r = client.post("/auth/signup", json=body)
    assert r.status_code == 200, r.text
    token = r.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def _listing(h, **extra):
    body = {
        "title": f"Tomatoes {uuid.uuid4().hex[:6]}",
        "category": "Vegetables",
        "quantity": 10,
        "unit": "kg",
        "price_per_unit": "4.50",
        "location_lat": FARM[0],
        "location_lng": FARM[1],
        "pickup_location": "Hoskote",
    }
    body.update(extra)
    r = client.post("/farmer/listings", headers=h, json=body)
    assert r.status_code == 200, r.text
    return r.json()


def _order(h, listing_id, quantity=3, at=NEARBY):
    return client.post(
        f"/market/listings/{listing_id}/order",
        headers=h,
        json={"quantity": quantity, "delivery_address": "12 MG Road", "lat": at[0], "lng": at[1]},
    )


def _placed_order(quantity=3):
    fh = _signup("farmer")
    bh = _signup("buyer")
    listing = _listing(fh)
    r = _order(bh, listing["id"], quantity=quantity)
    assert r.status_code == 200, r.text
    return fh, bh, listing, r.json()


def _completed_order():
    fh, bh, listing, order = _placed_order()
    assert client.post(f"/farmer/orders/{order['id']}/confirm", headers=fh).status_code == 200
    r = client.post(f"/farmer/orders/{order['id']}/complete", headers=fh)
    assert r.status_code == 200, r.text
    return fh, bh, listing, r.json()


def _error_code(r):
    return r.json()["error"]["code"]


def test_health_metrics_and_request_id():
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["db"] == "ok"
    assert r.headers["X-Request-ID"] == "abc123"

    r = client.get("/metrics")
    assert r.status_code == 200
    assert "harvestlink_http_requests_total" in r.text


def test_seed_is_idempotent():
    r = client.post("/admin/seed")
    assert r.status_code == 200
    first = r.json()["detail"]
    assert first in ("seeded", "exists")
    assert client.post("/admin/seed").json()["detail"] == "exists"
    if first == "seeded":
        r = client.post("/auth/login", json={"email": "buyer@harvestlink.dev", "password": "harvest123"})
        assert r.status_code == 200
        assert r.json()["role"] == "buyer"


def test_signup_login_and_me():
    email = _email("farmer")
    r = client.post("/auth/signup", json={
        "email": email.upper(), "password": "secret123", "full_name": "Asha", "role": "farmer", "farm_name": "Asha Farm",
    })
    assert r.status_code == 200, r.text
    assert r.json()["role"] == "farmer"

    r = client.post("/auth/login", json={"email": email, "password": "secret123"})
    assert r.status_code == 200
    h = {"Authorization": f"Bearer {r.json()['access_token']}"}
    me = client.get("/auth/me", headers=h).json()
    assert me["email"] == email
    assert me["farmer"]["farm_name"] == "Asha Farm"
    assert me["profile"]["full_name"] == "Asha"
    assert me["buyer"] is None

    r = client.post("/auth/login", json={"email": email, "password": "wrong-password"})
    assert r.status_code == 401
    assert _error_code(r) == "invalid_credentials"

    r = client.post("/auth/signup", json={
        "email": email, "password": "secret123", "full_name": "Dup", "role": "farmer", "farm_name": "Dup Farm",
    })
    assert r.status_code == 409
    assert _error_code(r) == "email_taken"


def test_signup_requires_role_details():
    r = client.post("/auth/signup", json={"email": _email("f"), "password": "secret123", "full_name": "X", "role": "farmer"})
    assert r.status_code == 422
    assert _error_code(r) == "farm_name_required"

    r = client.post("/auth/signup", json={"email": _email("b"), "password": "secret123", "full_name": "X", "role": "buyer"})
    assert r.status_code == 422
    assert _error_code(r) == "business_name_required"

    r = client.post("/auth/signup", json={"email": _email("a"), "password": "secret123", "full_name": "X", "role": "admin"})
    assert r.status_code == 422


def test_auth_and_roles_enforced():
    r = client.get("/orders")
    assert r.status_code == 401
    assert _error_code(r) == "missing_token"

    r = client.get("/orders", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert _error_code(r) == "invalid_token"

    bh = _signup("buyer")
    r = client.post("/farmer/listings", headers=bh, json={"title": "x", "category": "y", "quantity": 1, "price_per_unit": "1"})
    assert r.status_code == 403
    assert _error_code(r) == "farmer_role_required"

    fh = _signup("farmer")
    listing = _listing(fh)
    r = _order(fh, listing["id"])
    assert r.status_code == 403
    assert _error_code(r) == "buyer_role_required"


def test_profile_updates():
    fh = _signup("farmer")
    r = client.patch("/me/farmer", headers=fh, json={"bio": "Organic since 1998", "location_lat": FARM[0], "location_lng": FARM[1]})
    assert r.status_code == 200
    assert r.json()["bio"] == "Organic since 1998"

    # Listing falls back to the farm's coordinates
    r = client.post("/farmer/listings", headers=fh, json={"title": "Okra", "category": "Vegetables", "quantity": 4, "price_per_unit": "2"})
    assert r.status_code == 200
    assert r.json()["location_lat"] == FARM[0]

    r = client.patch("/me/profile", headers=fh, json={"full_name": "New Name"})
    assert r.status_code == 200
    assert r.json()["full_name"] == "New Name"

    bh = _signup("buyer")
    r = client.patch("/me/buyer", headers=bh, json={"business_type": "hotel"})
    assert r.status_code == 200
    assert r.json()["business_type"] == "hotel"


def test_browse_search_and_detail():
    fh = _signup("farmer")
    tag = uuid.uuid4().hex[:8]
    mango = _listing(fh, title=f"Alphonso Mango {tag}", category="Fruits")
    _listing(fh, title=f"Carrot {tag}", category="Vegetables")

    r = client.get("/market/listings", params={"q": f"MANGO {tag}"})
    assert r.status_code == 200
    ids = [l["id"] for l in r.json()["listings"]]
    assert ids == [mango["id"]]

    r = client.get("/market/listings", params={"q": tag, "category": "Vegetables"})
    assert [l["title"] for l in r.json()["listings"]] == [f"Carrot {tag}"]

    r = client.get("/market/listings", params={"q": tag, "category": "All"})
    assert r.json()["total"] == 2

    assert "Fruits" in client.get("/market/categories").json()

    r = client.get(f"/market/listings/{mango['id']}")
    assert r.status_code == 200
    body = r.json()
    assert body["listing"]["title"] == f"Alphonso Mango {tag}"
    assert body["farmer"]["farm_name"] == "Test Farm"
    assert body["ratings"] == []

    r = client.get("/market/listings/not-a-uuid")
    assert r.status_code == 404
    assert _error_code(r) == "listing_not_found"


def test_quote_and_place_order():
    fh = _signup("farmer")
    bh = _signup("buyer")
    listing = _listing(fh)
    expected_km = haversine_km(*FARM, *NEARBY)

    payload = {"quantity": 3, "delivery_address": "12 MG Road", "lat": NEARBY[0], "lng": NEARBY[1]}
    r = client.post(f"/market/listings/{listing['id']}/quote", json=payload)
    assert r.status_code == 200, r.text
    qt = r.json()
    assert qt["total_price"] == 13.5
    assert qt["estimated_minutes"] == estimate_minutes(expected_km)
    assert qt["max_km"] == 50

    r = _order(bh, listing["id"])
    assert r.status_code == 200, r.text
    order = r.json()
    assert order["status"] == "pending"
    assert order["total_price"] == 13.5
    assert order["listing_title"] == listing["title"]
    assert order["estimated_minutes"] == estimate_minutes(expected_km)
    assert abs(order["distance_km"] - expected_km) < 0.01

    # The buyer's location follows the address used for the order
    buyer = client.get("/auth/me", headers=bh).json()["buyer"]
    assert buyer["location_address"] == "12 MG Road"
    assert buyer["location_lat"] == NEARBY[0]

    orders = client.get("/orders", headers=bh).json()["orders"]
    assert [o["id"] for o in orders] == [order["id"]]
    farmer_orders = client.get("/farmer/orders", headers=fh).json()["orders"]
    assert [o["id"] for o in farmer_orders] == [order["id"]]


def test_order_rejections():
    fh = _signup("farmer")
    bh = _signup("buyer")
    listing = _listing(fh)

    r = _order(bh, listing["id"], at=FAR_AWAY)
    assert r.status_code == 400
    err = r.json()["error"]
    assert err["code"] == "out_of_range"
    assert err["details"]["max_km"] == 50
    assert err["details"]["distance_km"] > 100
    assert client.get("/orders", headers=bh).json()["orders"] == []
    # Rejected orders leave the buyer's location untouched
    assert client.get("/auth/me", headers=bh).json()["buyer"]["location_lat"] is None

    r = _order(bh, listing["id"], quantity=11)
    assert r.status_code == 422
    assert _error_code(r) == "invalid_quantity"
    assert _order(bh, listing["id"], quantity=10).status_code == 200

    r = client.post(f"/market/listings/{listing['id']}/order", headers=bh, json={"quantity": 1, "delivery_address": "", "lat": 1, "lng": 1})
    assert r.status_code == 422
    assert _error_code(r) == "invalid_address"

    no_loc = client.post("/farmer/listings", headers=fh, json={"title": "Beans", "category": "Vegetables", "quantity": 5, "price_per_unit": "1"}).json()
    r = _order(bh, no_loc["id"])
    assert r.status_code == 400
    assert _error_code(r) == "listing_location_missing"


def test_lifecycle_confirm_complete_and_cancel():
    fh, bh, listing, order = _placed_order()

    r = client.post(f"/farmer/orders/{order['id']}/complete", headers=fh)
    assert r.status_code == 409
    assert _error_code(r) == "invalid_transition"

    r = client.post(f"/farmer/orders/{order['id']}/confirm", headers=fh)
    assert r.status_code == 200
    confirmed = r.json()
    assert confirmed["status"] == "confirmed"
    assert confirmed["estimated_minutes"] == order["estimated_minutes"]

    r = client.post(f"/orders/{order['id']}/cancel", headers=bh)
    assert r.status_code == 409

    r = client.post(f"/farmer/orders/{order['id']}/complete", headers=fh)
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    # Completing twice is harmless
    assert client.post(f"/farmer/orders/{order['id']}/complete", headers=fh).json()["status"] == "completed"

    _, bh2, _, other = _placed_order()
    r = client.post(f"/orders/{other['id']}/cancel", headers=bh2)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    # Another farmer cannot see the order
    stranger = _signup("farmer")
    r = client.post(f"/farmer/orders/{order['id']}/confirm", headers=stranger)
    assert r.status_code == 404


def test_auto_complete_on_read():
    fh, bh, _, order = _placed_order()
    assert client.post(f"/farmer/orders/{order['id']}/confirm", headers=fh).status_code == 200

    # Still in the future: stays confirmed
    assert client.get(f"/orders/{order['id']}", headers=bh).json()["status"] == "confirmed"

    with session_scope() as db:
        db.get(Order, uuid.UUID(order["id"])).pickup_time = utcnow() - timedelta(minutes=1)

    r = client.get(f"/orders/{order['id']}", headers=bh)
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert client.get("/orders", headers=bh, params={"status": "completed"}).json()["orders"][0]["id"] == order["id"]


def test_rating_once_per_completed_order():
    fh, bh, listing, order = _placed_order()
    r = client.post(f"/orders/{order['id']}/rating", headers=bh, json={"rating": 5})
    assert r.status_code == 409
    assert _error_code(r) == "order_not_completed"

    fh, bh, listing, order = _completed_order()
    assert client.get(f"/orders/{order['id']}/rating", headers=bh).json() is None

    r = client.post(f"/orders/{order['id']}/rating", headers=bh, json={"rating": 0})
    assert r.status_code == 422

    r = client.post(f"/orders/{order['id']}/rating", headers=bh, json={"rating": 4, "review": "Crisp and fresh"})
    assert r.status_code == 200, r.text
    assert r.json()["rating"] == 4
    assert r.json()["rated_user_id"] == listing["farmer_id"]

    r = client.post(f"/orders/{order['id']}/rating", headers=bh, json={"rating": 1})
    assert r.status_code == 409
    assert _error_code(r) == "already_rated"

    assert client.get(f"/orders/{order['id']}/rating", headers=fh).json()["rating"] == 4

    r = client.get(f"/farmers/{listing['farmer_id']}/ratings")
    assert r.json()["total"] == 1
    assert r.json()["average_rating"] == 4.0

    profile = client.get(f"/farmers/{listing['farmer_id']}").json()
    assert profile["completed_orders"] == 1
    assert profile["total_reviews"] == 1
    assert [l["id"] for l in profile["listings"]] == [listing["id"]]

    detail = client.get(f"/market/listings/{listing['id']}").json()
    assert detail["average_rating"] == 4.0
    assert detail["ratings"][0]["review"] == "Crisp and fresh"


def test_favorites_round_trip():
    fh = _signup("farmer")
    bh = _signup("buyer")
    listing = _listing(fh)
    lid = listing["id"]

    assert client.post(f"/favorites/listings/{lid}", headers=bh).json()["favorited"] is True
    assert client.delete(f"/favorites/listings/{lid}", headers=bh).json()["favorited"] is False
    assert client.post(f"/favorites/listings/{lid}", headers=bh).json()["favorited"] is True
    # Adding twice keeps a single row
    assert client.post(f"/favorites/listings/{lid}", headers=bh).status_code == 200

    favs = client.get("/favorites", headers=bh).json()
    assert [f["listing"]["id"] for f in favs["listings"]] == [lid]
    assert favs["farmers"] == []

    r = client.post(f"/favorites/farmers/{listing['farmer_id']}/toggle", headers=bh)
    assert r.json()["favorited"] is True
    fav_id = r.json()["favorite_id"]
    assert client.get(f"/favorites/farmers/{listing['farmer_id']}", headers=bh).json()["favorited"] is True
    assert client.post(f"/favorites/farmers/{listing['farmer_id']}/toggle", headers=bh).json()["favorited"] is False
    assert client.delete(f"/favorites/{fav_id}", headers=bh).status_code == 404

    state = client.get(f"/favorites/listings/{lid}", headers=bh).json()
    assert client.delete(f"/favorites/{state['favorite_id']}", headers=bh).status_code == 200
    assert client.get("/favorites", headers=bh).json()["listings"] == []

    assert client.post(f"/favorites/listings/{uuid.uuid4()}", headers=bh).status_code == 404
    assert client.post(f"/favorites/bananas/{lid}", headers=bh).status_code == 404


def test_stock_toggle_round_trip():
    fh = _signup("farmer")
    bh = _signup("buyer")
    listing = _listing(fh)

    r = client.post(f"/farmer/listings/{listing['id']}/toggle_stock", headers=fh)
    assert r.json()["status"] == "out_of_stock"
    r = client.get("/market/listings", params={"q": listing["title"]})
    assert r.json()["total"] == 0
    r = _order(bh, listing["id"])
    assert r.status_code == 400
    assert _error_code(r) == "listing_unavailable"

    r = client.post(f"/farmer/listings/{listing['id']}/toggle_stock", headers=fh)
    assert r.json()["status"] == "available"
    assert client.get("/market/listings", params={"q": listing["title"]}).json()["total"] == 1

    other = _signup("farmer")
    r = client.post(f"/farmer/listings/{listing['id']}/toggle_stock", headers=other)
    assert r.status_code == 403


def test_update_and_delete_listing():
    fh, bh, listing, order = _placed_order()
    client.post(f"/favorites/listings/{listing['id']}", headers=bh)

    r = client.patch(f"/farmer/listings/{listing['id']}", headers=fh, json={"price_per_unit": "5.25", "quantity": 20})
    assert r.status_code == 200
    assert r.json()["price_per_unit"] == 5.25
    # Existing orders keep the price they were placed at
    assert client.get(f"/orders/{order['id']}", headers=bh).json()["total_price"] == 13.5

    r = client.delete(f"/farmer/listings/{listing['id']}", headers=fh)
    assert r.status_code == 400
    assert _error_code(r) == "confirmation_required"

    r = client.delete(f"/farmer/listings/{listing['id']}", headers=fh, params={"confirm": "true"})
    assert r.status_code == 200
    assert client.get(f"/market/listings/{listing['id']}").status_code == 404

    kept = client.get(f"/orders/{order['id']}", headers=bh).json()
    assert kept["listing_id"] is None
    assert kept["total_price"] == 13.5
    assert client.get("/favorites", headers=bh).json()["listings"] == []


def test_listing_photos():
    fh = _signup("farmer")
    listing = _listing(fh)
    url = f"/farmer/listings/{listing['id']}/photos"

    files = [("files", (f"p{i}.jpg", b"\xff\xd8fake-jpeg", "image/jpeg")) for i in range(2)]
    r = client.post(url, headers=fh, files=files)
    assert r.status_code == 200, r.text
    photos = r.json()["photos"]
    assert len(photos) == 2
    assert all(p.startswith("/media/listing-photos/") for p in photos)
    assert client.get(photos[0]).content == b"\xff\xd8fake-jpeg"

    files = [("files", (f"q{i}.png", b"png", "image/png")) for i in range(4)]
    r = client.post(url, headers=fh, files=files)
    assert r.status_code == 422
    assert _error_code(r) == "too_many_photos"

    r = client.post(url, headers=fh, files=[("files", ("notes.txt", b"hello", "text/plain"))])
    assert r.status_code == 422
    assert _error_code(r) == "unsupported_photo"

    r = client.delete(url, headers=fh, params={"url": photos[0]})
    assert r.status_code == 200
    assert r.json()["photos"] == [photos[1]]
    assert client.get(photos[0]).status_code == 404


def test_order_messages():
    fh, bh, _, order = _placed_order()
    r = client.post(f"/orders/{order['id']}/messages", headers=bh, json={"content": "Can you deliver by noon?"})
    assert r.status_code == 200, r.text
    r = client.post(f"/orders/{order['id']}/messages", headers=fh, json={"content": "Yes"})
    assert r.status_code == 200

    msgs = client.get(f"/orders/{order['id']}/messages", headers=fh).json()["messages"]
    assert [m["content"] for m in msgs] == ["Can you deliver by noon?", "Yes"]

    outsider = _signup("buyer")
    assert client.get(f"/orders/{order['id']}/messages", headers=outsider).status_code == 404


def test_dashboards():
    fh, bh, listing, order = _completed_order()
    r = _order(bh, listing["id"], quantity=1)
    assert r.status_code == 200

    stats = client.get("/farmer/stats", headers=fh).json()
    assert stats["total_listings"] == 1
    assert stats["available_listings"] == 1
    assert stats["pending_orders"] == 1
    assert stats["completed_orders"] == 1
    assert stats["total_revenue"] == 13.5

    stats = client.get("/orders/stats", headers=bh).json()
    assert stats["total_orders"] == 2
    assert stats["active_orders"] == 1
    assert stats["completed_orders"] == 1
    assert stats["total_spent"] == 13.5


def test_search_treats_wildcards_literally():
    fh = _signup("farmer")
    tag = uuid.uuid4().hex[:8]
    category = f"Greens {tag}"
    _listing(fh, title=f"Carrot {tag}", category=category)

    assert client.get("/market/listings", params={"q": f"Carrot_{tag}"}).json()["total"] == 0
    assert client.get("/market/listings", params={"q": "%", "category": category}).json()["total"] == 0
    assert client.get("/market/listings", params={"q": "_", "category": category}).json()["total"] == 0
    assert client.get("/market/listings", params={"q": f"carrot {tag}", "category": category}).json()["total"] == 1


def test_order_status_filter_is_validated():
    fh, bh, _, order = _placed_order()
    r = client.get("/orders", headers=bh, params={"status": "shipped"})
    assert r.status_code == 422
    r = client.get("/farmer/orders", headers=fh, params={"status": "shipped"})
    assert r.status_code == 422
    assert [o["id"] for o in client.get("/orders", headers=bh, params={"status": "pending"}).json()["orders"]] == [order["id"]]
    assert client.get("/farmer/orders", headers=fh, params={"status": "cancelled"}).json()["orders"] == []


def test_rejected_photo_batch_leaves_no_files():
    fh = _signup("farmer")
    listing = _listing(fh)
    photo_dir = Path(settings.MEDIA_DIR) / "listing-photos" / listing["id"]

    files = [
        ("files", ("good.jpg", b"\xff\xd8fake-jpeg", "image/jpeg")),
        ("files", ("bad.txt", b"hello", "text/plain")),
    ]
    r = client.post(f"/farmer/listings/{listing['id']}/photos", headers=fh, files=files)
    assert r.status_code == 422
    assert _error_code(r) == "unsupported_photo"

    files = [
        ("files", ("good.jpg", b"\xff\xd8fake-jpeg", "image/jpeg")),
        ("files", ("empty.png", b"", "image/png")),
    ]
    r = client.post(f"/farmer/listings/{listing['id']}/photos", headers=fh, files=files)
    assert r.status_code == 422
    assert _error_code(r) == "empty_photo"

    assert client.get(f"/market/listings/{listing['id']}").json()["listing"]["photos"] == []
    assert not photo_dir.exists() or list(photo_dir.iterdir()) == []
