# tests/test_ensure_db.py
import pytest

from waypost.scripts.ensure_db import maintenance_target


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        (
            "postgresql+psycopg://waypost:secret@db:5432/waypost",
            ("postgresql://waypost:secret@db:5432/postgres", "waypost"),
        ),
        (
            "'postgresql://localhost/federation'",
            ("postgresql://localhost/postgres", "federation"),
        ),
        ("postgresql://localhost", ("postgresql://localhost/postgres", "postgres")),
    ],
)
def test_maintenance_target_for_postgres(url: str, expected: tuple[str, str]) -> None:
    assert maintenance_target(url) == expected


def test_sqlite_needs_no_database_creation() -> None:
    assert maintenance_target("sqlite:///./waypost.db") is None
