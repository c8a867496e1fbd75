from app.core.security import hash_password
from app.db.models.form_audit_log import FormAuditLog
from app.db.models.form_template import FormTemplate
from app.db.models.user import Role, User
from tests.conftest import FILLED


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_login_sets_session_cookie(db, client, world):
    world.a.password_hash = hash_password("s3cret")
    db.commit()

    r = client.post("/login", data={"email": world.a.email, "password": "wrong"})
    assert r.status_code == 400

    r = client.post("/login", data={"email": world.a.email.upper(), "password": "s3cret"})
    assert r.status_code == 200
    assert r.json()["user"]["has_approval_authority"] is True
    assert client.get("/me").json()["user"]["id"] == world.a.id


def test_placeholder_hash_never_logs_in(client, world):
    r = client.post("/login", data={"email": world.b.email, "password": "!"})
    assert r.status_code == 400


def test_deactivated_user_loses_session(db, world, login):
    c = login(world.b)
    world.b.is_active = False
    db.commit()
    assert c.get("/me").status_code == 403


def test_create_form_targets_and_audit(db, world, login):
    c = login(world.distributor)
    r = c.post(
        "/forms",
        data={
            "title": "Safety Audit",
            "schema_text": '{"fields": [{"id": "notes", "type": "text"}]}',
            "lab_ids": [str(world.lab.id)],
            "designations": ["Technical Officer"],
        },
    )
    assert r.status_code == 200, r.text
    form = r.json()["form"]
    assert form["lab_ids"] == [world.lab.id]

    r = c.get(f"/forms/{form['id']}/recipients")
    names = [u["full_name"] for u in r.json()["recipients"]]
    assert names == ["Bob Officer", "Carol Officer"]

    assert db.query(FormAuditLog).filter(FormAuditLog.entity == "form_template", FormAuditLog.action == "create").count() == 1


def test_plain_user_cannot_distribute_to_other_labs(world, login):
    r = login(world.b).post("/forms", data={"title": "Cross", "lab_ids": [str(world.other_lab.id)]})
    assert r.status_code == 403


def test_public_form_needs_inter_lab_sender(world, login):
    r = login(world.b).post("/forms", data={"title": "Open", "is_public": "true"})
    assert r.status_code == 403


def test_form_list_shows_eligible_forms_only(world, login):
    titles = [f["title"] for f in login(world.b).get("/forms").json()["forms"]]
    assert titles == [world.template.title]
    assert login(world.outsider).get("/forms").json()["forms"] == []


def test_delete_refused_once_answered(db, world, login):
    login(world.a).post("/forms/workflow/save-draft", json={"templateId": world.template.id, "data": FILLED})

    r = login(world.distributor).delete(f"/forms/{world.template.id}")
    assert r.status_code == 409
    assert db.get(FormTemplate, world.template.id) is not None


def test_assigned_lists_the_live_node_only(world, login):
    c = login(world.a)
    root = c.post("/forms/workflow/save-draft", json={"templateId": world.template.id, "data": FILLED}).json()["assignment"]
    assert [a["id"] for a in c.get("/forms/assigned").json()["assignments"]] == [root["id"]]

    c.post("/forms/workflow/delegate", json={"templateId": world.template.id, "assignedToId": world.b.id})
    assert c.get("/forms/assigned").json()["assignments"] == []
    assert len(login(world.b).get("/forms/assigned").json()["assignments"]) == 1


def test_delegates_exclude_self(world, login):
    r = login(world.a).get(f"/forms/{world.template.id}/delegates")
    ids = {u["id"] for u in r.json()["users"]}
    assert ids == {world.b.id, world.c.id}


def test_notifications_badge_and_mark_read(world, login):
    login(world.a).post("/forms/workflow/delegate", json={"templateId": world.template.id, "assignedToId": world.b.id})

    c = login(world.b)
    page = c.get("/notifications").json()
    assert page["unread"] == 1
    note = page["notifications"][0]
    assert note["type"] == "FORM_DELEGATED"

    c.post("/notifications/mark_read", data={"notification_id": str(note["id"])})
    assert c.get("/notifications/badge").json()["unread"] == 0


def test_labs_are_masterdata(db, world, make_user, login):
    assert login(world.b).post("/labs", data={"name": "Physics Lab"}).status_code == 403

    admin = make_user("Root Admin", role=Role.SUPERADMIN)
    c = login(admin)
    assert c.post("/labs", data={"name": "Physics Lab"}).status_code == 200
    assert c.post("/labs", data={"name": "Physics Lab"}).status_code == 400
    assert c.delete(f"/labs/{world.lab.id}").status_code == 409


def test_only_superadmin_grants_superadmin(db, make_user, login):
    deputy = make_user("Deputy", role=Role.DELEGATED_ADMIN)
    r = login(deputy).post(
        "/users",
        data={"full_name": "New", "email": "new@example.org", "password": "pw", "role": Role.SUPERADMIN.value},
    )
    assert r.status_code == 403
    assert db.query(User).filter(User.email == "new@example.org").first() is None


def test_submission_detail_visible_to_chain_only(db, world, login):
    r = login(world.a).post("/forms/workflow/save-draft", json={"templateId": world.template.id, "data": FILLED})
    sub_id = r.json()["submission"]["id"]

    assert login(world.distributor).get(f"/submissions/{sub_id}").status_code == 200
    assert login(world.outsider).get(f"/submissions/{sub_id}").status_code == 403


def test_template_history_keeps_changed_fields_only(world, login):
    c = login(world.distributor)
    f = world.template
    r = c.post(
        f"/forms/{f.id}/edit",
        data={"title": "Annual Equipment Return", "schema_text": f.schema_json},
    )
    assert r.status_code == 200, r.text

    rows = c.get(f"/forms/{f.id}/history").json()["history"]
    assert [row["action"] for row in rows] == ["update"]
    assert rows[0]["before"] == {"title": "Quarterly Equipment Return"}
    assert rows[0]["after"] == {"title": "Annual Equipment Return"}

    assert login(world.b).get(f"/forms/{f.id}/history").status_code == 403
