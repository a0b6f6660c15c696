"""Tests for link CRUD, listing, ownership and QR codes."""

import pytest


def _create(client, user, **body):
    body.setdefault("long_url", "https://acme.io/spring-sale")
    return client.post("/api/links", json=body, headers=user["headers"])


class TestCreate:
    def test_auto_code(self, client, alice):
        resp = _create(client, alice)
        assert resp.status_code == 200
        link = resp.json()
        assert len(link["code"]) == 7
        assert link["short_url"] == f"https://sho.rt/r/{link['code']}"
        assert link["clicks_count"] == 0
        assert link["has_password"] is False
        assert link["is_active"] is True

    def test_custom_code_and_domain(self, client, alice):
        resp = _create(client, alice, code="spring-24", domain="Go.Acme.io", notes="newsletter")
        assert resp.status_code == 200
        link = resp.json()
        assert link["code"] == "spring-24"
        assert link["domain"] == "go.acme.io"
        assert link["short_url"] == "https://go.acme.io/r/spring-24"
        assert link["meta"]["notes"] == "newsletter"

    def test_duplicate_code_conflict(self, client, alice, bob):
        assert _create(client, alice, code="taken1").status_code == 200
        resp = _create(client, bob, code="taken1")
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Code already taken"

    @pytest.mark.parametrize("url", ["http://localhost:8000/x", "javascript:alert(1)", "http://10.0.0.1", "ftp://acme.io", "http://[::1]/", "http://127.1/", "https://[::1/x"])
    def test_unsafe_url(self, client, alice, url):
        resp = _create(client, alice, long_url=url)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Unsafe URL"

    @pytest.mark.parametrize("body", [
        {"code": "ab"},
        {"code": "bad code"},
        {"password": "abc"},
        {"max_clicks": -1},
        {"domain": "bad domain!"},
        {"notes": "n" * 1001},
    ])
    def test_invalid_fields(self, client, alice, body):
        assert _create(client, alice, **body).status_code == 422

    def test_password_is_never_returned(self, client, alice):
        link = _create(client, alice, password="open-sesame").json()
        assert link["has_password"] is True
        assert "password_hash" not in link
        assert "open-sesame" not in str(link)

    def test_requires_auth(self, client):
        assert client.post("/api/links", json={"long_url": "https://acme.io"}).status_code == 401


class TestList:
    def test_pagination_and_order(self, client, alice):
        codes = [f"code{i:02d}" for i in range(12)]
        for code in codes:
            _create(client, alice, code=code)

        resp = client.get("/api/links", params={"page": 1, "size": 5}, headers=alice["headers"])
        body = resp.json()
        assert body["total"] == 12
        assert body["page"] == 1
        assert body["size"] == 5
        assert [it["code"] for it in body["items"]] == list(reversed(codes))[:5]

        last = client.get("/api/links", params={"page": 3, "size": 5}, headers=alice["headers"]).json()
        assert len(last["items"]) == 2

    def test_size_clamped(self, client, alice):
        _create(client, alice)
        assert client.get("/api/links", params={"size": 500}, headers=alice["headers"]).json()["size"] == 50
        assert client.get("/api/links", params={"size": 0}, headers=alice["headers"]).json()["size"] == 1
        assert client.get("/api/links", params={"page": -3}, headers=alice["headers"]).json()["page"] == 1

    def test_search(self, client, alice):
        _create(client, alice, code="summer", long_url="https://acme.io/a")
        _create(client, alice, code="winter", long_url="https://shop.example.org/b", notes="Holiday promo")
        _create(client, alice, code="autumn", long_url="https://acme.io/c", domain="go.brand.io")

        def search(q):
            resp = client.get("/api/links", params={"search": q}, headers=alice["headers"])
            return sorted(it["code"] for it in resp.json()["items"])

        assert search("SUMM") == ["summer"]
        assert search("example.org") == ["winter"]
        assert search("holiday") == ["winter"]
        assert search("brand") == ["autumn"]
        assert search("acme") == ["autumn", "summer"]
        assert search("100%") == []

    def test_scoped_to_owner(self, client, alice, bob):
        _create(client, alice)
        assert client.get("/api/links", headers=bob["headers"]).json()["total"] == 0


class TestReadUpdateDelete:
    def test_get_other_users_link_is_404(self, client, alice, bob):
        link = _create(client, alice).json()
        assert client.get(f"/api/links/{link['id']}", headers=alice["headers"]).status_code == 200
        assert client.get(f"/api/links/{link['id']}", headers=bob["headers"]).status_code == 404

    def test_update_fields(self, client, alice):
        link = _create(client, alice).json()
        resp = client.patch(
            f"/api/links/{link['id']}",
            json={"is_active": False, "max_clicks": 5, "domain": "HTTPS://Go.Acme.io", "notes": "edited"},
            headers=alice["headers"],
        )
        assert resp.status_code == 200
        updated = resp.json()
        assert updated["is_active"] is False
        assert updated["max_clicks"] == 5
        assert updated["domain"] == "go.acme.io"
        assert updated["meta"]["notes"] == "edited"

    def test_password_set_and_removed(self, client, alice):
        link = _create(client, alice).json()
        url = f"/api/links/{link['id']}"
        assert client.patch(url, json={"password": "s3cret"}, headers=alice["headers"]).json()["has_password"] is True
        assert client.patch(url, json={"password": ""}, headers=alice["headers"]).json()["has_password"] is False

    def test_rename_conflict(self, client, alice):
        _create(client, alice, code="first1")
        second = _create(client, alice, code="second").json()
        url = f"/api/links/{second['id']}"
        assert client.patch(url, json={"code": "first1"}, headers=alice["headers"]).status_code == 409
        # Renaming to its own code is fine
        assert client.patch(url, json={"code": "second"}, headers=alice["headers"]).status_code == 200

    def test_update_unsafe_url(self, client, alice):
        link = _create(client, alice).json()
        resp = client.patch(f"/api/links/{link['id']}", json={"long_url": "http://127.0.0.1"}, headers=alice["headers"])
        assert resp.status_code == 400

    def test_update_refreshes_metadata(self, client, alice, monkeypatch):
        async def fake_meta(url):
            return {"title": "New title", "favicon": "https://acme.io/favicon.ico"}

        monkeypatch.setattr("app.api.links.fetch_page_meta", fake_meta)
        link = _create(client, alice).json()
        resp = client.patch(f"/api/links/{link['id']}", json={"long_url": "https://acme.io/new"}, headers=alice["headers"])
        assert resp.json()["long_url"] == "https://acme.io/new"
        assert resp.json()["meta"]["title"] == "New title"

    def test_delete_removes_link_and_clicks(self, client, alice):
        link = _create(client, alice, code="gone01").json()
        client.get("/r/gone01", follow_redirects=False)

        assert client.delete(f"/api/links/{link['id']}", headers=alice["headers"]).json() == {"ok": True}
        assert client.get(f"/api/links/{link['id']}", headers=alice["headers"]).status_code == 404
        assert client.get("/r/gone01", follow_redirects=False).status_code == 404

    def test_delete_other_users_link(self, client, alice, bob):
        link = _create(client, alice).json()
        assert client.delete(f"/api/links/{link['id']}", headers=bob["headers"]).status_code == 404
        assert client.get(f"/api/links/{link['id']}", headers=alice["headers"]).status_code == 200


class TestQr:
    def test_png_default(self, client, alice):
        link = _create(client, alice).json()
        resp = client.get(f"/api/links/{link['id']}/qr", headers=alice["headers"])
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert resp.content.startswith(b"\x89PNG")

    def test_svg(self, client, alice):
        link = _create(client, alice).json()
        resp = client.get(f"/api/links/{link['id']}/qr", params={"format": "svg", "size": 128}, headers=alice["headers"])
        assert resp.headers["content-type"].startswith("image/svg+xml")
        assert b"<svg" in resp.content

    def test_not_owner(self, client, alice, bob):
        link = _create(client, alice).json()
        assert client.get(f"/api/links/{link['id']}/qr", headers=bob["headers"]).status_code == 404
