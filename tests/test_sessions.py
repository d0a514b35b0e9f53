"""Tests for the follow-up session gate."""

import uuid

import pytest

from crm.core.contact_states import ContactStatus, MAX_SESSIONS_PER_STAGE, SessionStage
from crm.core.errors import ContactNotFound, SessionLimitExceeded, SessionNotFound, StateConflictError, ValidationError
from crm.core.pipeline import ContactPipeline
from crm.schemas import SessionUpdate
from crm.sessions import service as sessions


async def _log(db, contact, employee, stage="MQL", session_no=1, rating=None, status="CONNECTED"):
    return await sessions.create_session(
        db,
        contact_id=contact.id,
        employee_id=employee.id,
        company_id=contact.company_id,
        stage=stage,
        session_no=session_no,
        session_status=status,
        rating=rating,
    )


class TestCreateSession:

    async def test_session_for_current_stage(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)

        session = await _log(db, contact, employee, rating=7, status="BAD_TIMING")

        assert session.stage == "MQL"
        assert session.rating == 7
        assert session.session_status == "BAD_TIMING"

    async def test_stage_must_match_contact_status(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.LEAD)

        with pytest.raises(StateConflictError) as exc:
            await _log(db, contact, employee, stage="MQL")
        assert exc.value.code == "STAGE_MISMATCH"

    async def test_sql_session_rejected_while_in_mql(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)

        with pytest.raises(StateConflictError):
            await _log(db, contact, employee, stage="SQL")

    @pytest.mark.parametrize("stage", ["LEAD", "OPPORTUNITY", "mql", ""])
    async def test_stage_must_be_mql_or_sql(self, db, make_contact, employee, stage):
        contact = await make_contact(ContactStatus.MQL)

        with pytest.raises(ValidationError) as exc:
            await _log(db, contact, employee, stage=stage)
        assert exc.value.code == "INVALID_STAGE"

    async def test_unknown_session_status(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)

        with pytest.raises(ValidationError) as exc:
            await _log(db, contact, employee, status="VOICEMAIL")
        assert exc.value.code == "INVALID_SESSION_STATUS"

    @pytest.mark.parametrize("rating", [0, 11, -3, True])
    async def test_rating_out_of_range(self, db, make_contact, employee, rating):
        contact = await make_contact(ContactStatus.MQL)

        with pytest.raises(ValidationError) as exc:
            await _log(db, contact, employee, rating=rating)
        assert exc.value.code == "INVALID_RATING"

    @pytest.mark.parametrize("rating", [1, 10, None])
    async def test_rating_bounds_accepted(self, db, make_contact, employee, rating):
        contact = await make_contact(ContactStatus.MQL)

        session = await _log(db, contact, employee, rating=rating)
        assert session.rating == rating

    async def test_contact_from_other_company(self, db, make_contact, employee, other_company):
        contact = await make_contact(ContactStatus.MQL, company_id=other_company.id)

        with pytest.raises(ContactNotFound):
            await sessions.create_session(
                db, contact.id, employee.id, employee.company_id,
                stage="MQL", session_no=1, session_status="CONNECTED",
            )


class TestSessionLimit:

    async def test_sixth_session_fails_and_average_is_computed(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)

        for no, rating in enumerate([3, 5, 7, 8, 9], start=1):
            await _log(db, contact, employee, session_no=no, rating=rating)

        with pytest.raises(SessionLimitExceeded) as exc:
            await _log(db, contact, employee, session_no=6, rating=10)
        assert "Maximum MQL sessions reached" in exc.value.message

        assert await sessions.count_by_stage(db, contact.id, SessionStage.MQL) == MAX_SESSIONS_PER_STAGE
        assert await sessions.average_rating(db, contact.id, "MQL") == 6.4

    async def test_limit_ignores_rating_and_status(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)
        for no in range(1, 6):
            await _log(db, contact, employee, session_no=no, status="NOT_CONNECTED")

        with pytest.raises(SessionLimitExceeded):
            await _log(db, contact, employee, session_no=6, rating=None, status="BAD_TIMING")

    async def test_each_stage_has_its_own_cap(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)
        for no in range(1, 6):
            await _log(db, contact, employee, session_no=no)

        await ContactPipeline(db).promote(contact.id, ContactStatus.SQL)
        session = await _log(db, contact, employee, stage="SQL")

        assert session.stage == "SQL"

    async def test_average_without_ratings_is_zero(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)
        await _log(db, contact, employee, rating=None)

        assert await sessions.average_rating(db, contact.id, "MQL") == 0.0


class TestUpdateAndDelete:

    async def test_update_rating_and_remarks(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)
        session = await _log(db, contact, employee, rating=4)

        updated = await sessions.update_session(
            db, session.id, contact.company_id, SessionUpdate(rating=8, remarks="Call back Friday")
        )

        assert updated.rating == 8
        assert updated.remarks == "Call back Friday"
        assert updated.session_status == "CONNECTED"

    @pytest.mark.parametrize("rating", [0, 11])
    async def test_update_rejects_out_of_range_rating(self, db, make_contact, employee, rating):
        contact = await make_contact(ContactStatus.MQL)
        session = await _log(db, contact, employee, rating=4)

        with pytest.raises(ValidationError):
            await sessions.update_session(db, session.id, contact.company_id, SessionUpdate(rating=rating))

    async def test_update_rejects_unknown_status(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)
        session = await _log(db, contact, employee)

        with pytest.raises(ValidationError):
            await sessions.update_session(
                db, session.id, contact.company_id, SessionUpdate(session_status="LOST")
            )

    async def test_update_unknown_session(self, db, company):
        with pytest.raises(SessionNotFound):
            await sessions.update_session(db, uuid.uuid4(), company.id, SessionUpdate(rating=5))

    async def test_delete_frees_a_slot(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)
        logged = [await _log(db, contact, employee, session_no=no) for no in range(1, 6)]

        await sessions.delete_session(db, logged[0].id, contact.company_id)
        session = await _log(db, contact, employee, session_no=6)

        assert session.session_no == 6

    async def test_list_in_creation_order(self, db, make_contact, employee):
        contact = await make_contact(ContactStatus.MQL)
        for no in (1, 2, 3):
            await _log(db, contact, employee, session_no=no)

        listed = await sessions.list_sessions(db, contact.id, contact.company_id)

        assert [s.session_no for s in listed] == [1, 2, 3]


class TestSessionsAPI:

    def _body(self, contact, **overrides):
        body = {
            "contactId": str(contact.id),
            "stage": "MQL",
            "sessionNo": 1,
            "rating": 7,
            "sessionStatus": "CONNECTED",
            "remarks": "Intro call",
        }
        body.update(overrides)
        return body

    async def test_create_returns_201(self, client, auth_headers, make_contact):
        contact = await make_contact(ContactStatus.MQL)

        response = await client.post("/sessions", json=self._body(contact), headers=auth_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Session created successfully"
        assert uuid.UUID(data["id"])

    async def test_stage_mismatch_is_403(self, client, auth_headers, make_contact):
        contact = await make_contact(ContactStatus.LEAD)

        response = await client.post("/sessions", json=self._body(contact), headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["code"] == "STAGE_MISMATCH"

    async def test_unknown_contact_is_403(self, client, auth_headers):
        body = {
            "contactId": str(uuid.uuid4()),
            "stage": "MQL",
            "sessionNo": 1,
            "sessionStatus": "CONNECTED",
        }

        response = await client.post("/sessions", json=body, headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["code"] == "CONTACT_NOT_FOUND"

    async def test_bad_rating_is_400(self, client, auth_headers, make_contact):
        contact = await make_contact(ContactStatus.MQL)

        response = await client.post("/sessions", json=self._body(contact, rating=11), headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_RATING"

    async def test_missing_fields_is_400(self, client, auth_headers):
        response = await client.post("/sessions", json={"stage": "MQL"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_requires_auth(self, client, make_contact):
        contact = await make_contact(ContactStatus.MQL)

        response = await client.post("/sessions", json=self._body(contact))

        assert response.status_code == 401

    async def test_sixth_session_and_average(self, client, auth_headers, make_contact):
        contact = await make_contact(ContactStatus.MQL)
        for no, rating in enumerate([3, 5, 7, 8, 9], start=1):
            response = await client.post(
                "/sessions", json=self._body(contact, sessionNo=no, rating=rating), headers=auth_headers
            )
            assert response.status_code == 201

        response = await client.post("/sessions", json=self._body(contact, sessionNo=6), headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "SESSION_LIMIT_EXCEEDED"

        listed = await client.get(f"/sessions/contact/{contact.id}", headers=auth_headers)
        assert [s["rating"] for s in listed.json()] == [3, 5, 7, 8, 9]

        average = await client.get(f"/sessions/contact/{contact.id}/MQL/average", headers=auth_headers)
        assert average.json()["average_rating"] == 6.4
        assert average.json()["count"] == 5

    async def test_stage_filter_must_be_mql_or_sql(self, client, auth_headers, make_contact):
        contact = await make_contact(ContactStatus.MQL)

        response = await client.get(f"/sessions/contact/{contact.id}/CUSTOMER", headers=auth_headers)

        assert response.status_code == 400

    async def test_patch_and_delete(self, client, auth_headers, make_contact):
        contact = await make_contact(ContactStatus.MQL)
        created = await client.post("/sessions", json=self._body(contact), headers=auth_headers)
        session_id = created.json()["id"]

        bad = await client.patch(f"/sessions/{session_id}", json={"rating": 0}, headers=auth_headers)
        assert bad.status_code == 400

        patched = await client.patch(
            f"/sessions/{session_id}", json={"rating": 9, "sessionStatus": "BAD_TIMING"}, headers=auth_headers
        )
        assert patched.status_code == 200
        assert patched.json()["rating"] == 9
        assert patched.json()["session_status"] == "BAD_TIMING"

        deleted = await client.delete(f"/sessions/{session_id}", headers=auth_headers)
        assert deleted.status_code == 200

        missing = await client.delete(f"/sessions/{session_id}", headers=auth_headers)
        assert missing.status_code == 404

    async def test_null_rating_clears_it(self, client, auth_headers, make_contact):
        contact = await make_contact(ContactStatus.MQL)
        created = await client.post(
            "/sessions", json=self._body(contact, rating=7, remarks="Keen"), headers=auth_headers
        )
        session_id = created.json()["id"]

        untouched = await client.patch(f"/sessions/{session_id}", json={"remarks": "Still keen"}, headers=auth_headers)
        assert untouched.json()["rating"] == 7

        cleared = await client.patch(f"/sessions/{session_id}", json={"rating": None}, headers=auth_headers)
        assert cleared.status_code == 200
        assert cleared.json()["rating"] is None
        assert cleared.json()["remarks"] == "Still keen"
        assert cleared.json()["session_status"] == "CONNECTED"

        average = await client.get(f"/sessions/contact/{contact.id}/MQL/average", headers=auth_headers)
        assert average.json()["average_rating"] == 0.0
