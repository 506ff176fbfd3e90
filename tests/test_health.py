# tests/test_health.py
from typing import Any


def test_health_reports_broker_state(client: Any) -> None:
    """Verify the health endpoint responds and reports the disabled broker."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "broker": "disabled"}


def test_root_describes_instance(client: Any) -> None:
    r = client.get("/")
    assert r.status_code == 200
    data = r.json()
    assert data["name"] == "Waypost"
    assert data["domain"] == "waypost.test"
