"""App wiring: root, health and client surface routing."""
import pytest

from main import resolve_surface


class TestSurfaceRouting:

    @pytest.mark.parametrize("path, surface", [
        ("/admin", "admin"),
        ("/admin/", "admin"),
        ("/doctor", "doctor"),
        ("/doctor/", "doctor"),
        ("/", "home"),
        ("/admin/visits", "home"),
        ("/doctors", "home"),
        ("/ADMIN", "home"),
        ("", "home"),
    ])
    def test_exact_pathname_dispatch(self, path, surface):
        assert resolve_surface(path) == surface

    def test_surface_endpoint(self, client):
        data = client.get("/surface", params={"path": "/doctor/"}).json()

        assert data["surface"] == "doctor"
        assert "/api/doctor" in data["api"]


class TestAppInfo:

    def test_root_lists_areas(self, client):
        endpoints = client.get("/").json()["endpoints"]
        assert endpoints["queue"] == "/api/queue"
        assert endpoints["booking"] == "/api/booking"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
