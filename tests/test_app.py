"""Tests for app-level behavior: health check, JSON errors, security headers."""


class TestApp:

    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "ok"}

    def test_unknown_route_returns_json_404(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Not found"}

    def test_webhook_rejects_get(self, client):
        resp = client.get("/api/payments/webhook")
        assert resp.status_code == 405


class TestSecurityHeaders:

    def test_x_content_type_options(self, client):
        response = client.get("/healthz")
        assert response.headers.get("X-Content-Type-Options") == "nosniff"

    def test_x_frame_options(self, client):
        response = client.get("/healthz")
        assert response.headers.get("X-Frame-Options") == "DENY"

    def test_csp_header(self, client):
        csp = client.get("/healthz").headers.get("Content-Security-Policy")
        assert "default-src 'none'" in csp
        assert "frame-ancestors 'none'" in csp
