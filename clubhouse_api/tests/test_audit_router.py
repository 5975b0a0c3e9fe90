"""Tests for clubhouse_api/routers/audit.py

Covers:
- GET /audit: owner-only, tenant-scoped, filterable
- GET /audit/verify: intact chain after a sequence of admissions
"""

from __future__ import annotations

import pytest


class TestQueryAuditLog:
    @pytest.mark.asyncio
    async def test_owner_sees_admission_trail(self, client, onboard, invite) -> None:
        owner = await onboard()
        issued = await invite(owner["headers"], "coach@acmefc.org")
        await client.post("/api/v1/join/by-token", json={"token": issued["token"]})

        resp = await client.get("/api/v1/audit", headers=owner["headers"])

        assert resp.status_code == 200
        events = [e["event_type"] for e in resp.json()]
        assert events == ["invite_accepted", "invite_sent", "tenant_created"]
        assert all(e["tenant_id"] == owner["tenant_id"] for e in resp.json())

    @pytest.mark.asyncio
    async def test_filter_by_event_type(self, client, onboard, invite) -> None:
        owner = await onboard()
        await invite(owner["headers"], "a@acmefc.org")
        await invite(owner["headers"], "b@acmefc.org")

        resp = await client.get("/api/v1/audit", params={"event_type": "invite_sent"}, headers=owner["headers"])

        assert len(resp.json()) == 2
        assert {e["metadata"]["email"] for e in resp.json()} == {"a@acmefc.org", "b@acmefc.org"}

    @pytest.mark.asyncio
    async def test_other_tenants_events_are_hidden(self, client, onboard) -> None:
        acme = await onboard()
        await onboard(org_name="Riverside United", contact_email="ops@riverside.org")

        resp = await client.get("/api/v1/audit", headers=acme["headers"])

        assert [e["target_id"] for e in resp.json()] == [acme["tenant_id"]]

    @pytest.mark.asyncio
    async def test_coach_is_forbidden(self, client, onboard, auth_headers) -> None:
        owner = await onboard()
        resp = await client.get(
            "/api/v1/audit",
            headers=auth_headers(user_id="user-3", tenant_id=owner["tenant_id"], role="coach"),
        )
        assert resp.status_code == 403


class TestVerifyChain:
    @pytest.mark.asyncio
    async def test_chain_is_intact(self, client, onboard, invite) -> None:
        owner = await onboard()
        issued = await invite(owner["headers"], "coach@acmefc.org")
        await client.post("/api/v1/invites/resend", json={"id": issued["id"]}, headers=owner["headers"])
        await client.post("/api/v1/tenant/code/rotate", headers=owner["headers"])

        resp = await client.get("/api/v1/audit/verify", headers=owner["headers"])

        assert resp.status_code == 200
        assert resp.json() == {"is_valid": True, "entries_checked": 4}
