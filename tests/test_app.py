"""Tests for the application shell: service info and error rendering."""

from crm.api.deps import get_system_mailer
from crm.main import app


class TestApp:

    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "CRM Pipeline Service"

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.json() == {"status": "healthy"}

    async def test_unexpected_error_is_generic_500(self, client, auth_headers):
        def broken_mailer():
            raise RuntimeError("database password is hunter2")

        app.dependency_overrides[get_system_mailer] = broken_mailer

        response = await client.post(
            "/contacts", json={"name": "Lee", "email": "lee@client.test"}, headers=auth_headers
        )

        assert response.status_code == 500
        assert response.json() == {"message": "Internal server error"}
