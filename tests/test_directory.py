from app.core.directory import is_eligible, recipients, resolve_eligible_recipients
from app.db.models.form_distribution import FormTemplateDesignation
from app.db.models.user import Role


def test_lab_targets_expand_to_active_members(db, make_lab, make_user, make_template):
    lab = make_lab()
    creator = make_user("Creator", lab=lab)
    a = make_user(lab=lab)
    b = make_user(lab=lab)
    make_user(lab=lab, is_active=False)
    make_user(lab=make_lab("Elsewhere"))

    t = make_template(creator, labs=[lab])

    assert resolve_eligible_recipients(db, t) == {a.id, b.id}


def test_creator_is_never_a_recipient(db, make_lab, make_user, make_template):
    lab = make_lab()
    creator = make_user("Creator", lab=lab)
    t = make_template(creator, labs=[lab], users=[creator])

    assert creator.id not in resolve_eligible_recipients(db, t)
    assert not is_eligible(db, t, creator.id)


def test_designation_filter_narrows_lab_targets(db, make_lab, make_user, make_template):
    lab = make_lab()
    creator = make_user("Creator")
    director = make_user(lab=lab, designation="Director")
    make_user(lab=lab, designation="Technical Officer")

    t = make_template(creator, labs=[lab])
    t.target_designations = [FormTemplateDesignation(designation="Director")]
    db.commit()

    assert resolve_eligible_recipients(db, t) == {director.id}
    assert is_eligible(db, t, director.id)


def test_designation_only_targets_span_labs(db, make_lab, make_user, make_template):
    creator = make_user("Creator")
    d1 = make_user(lab=make_lab("L1"), designation="Director")
    d2 = make_user(lab=make_lab("L2"), designation="Director")
    make_user(designation="Technical Officer")

    t = make_template(creator)
    t.target_designations = [FormTemplateDesignation(designation="Director")]
    db.commit()

    assert resolve_eligible_recipients(db, t) == {d1.id, d2.id}


def test_admins_only_reached_when_named(db, make_lab, make_user, make_template):
    lab = make_lab()
    creator = make_user("Creator")
    admin = make_user(lab=lab, role=Role.DELEGATED_ADMIN)
    member = make_user(lab=lab)

    by_lab = make_template(creator, labs=[lab])
    public = make_template(creator, is_public=True, title="Public")
    named = make_template(creator, users=[admin], title="Named")

    assert resolve_eligible_recipients(db, by_lab) == {member.id}
    assert admin.id not in resolve_eligible_recipients(db, public)
    assert not is_eligible(db, public, admin.id)
    assert is_eligible(db, named, admin.id)


def test_explicit_users_are_deduplicated_with_lab_targets(db, make_lab, make_user, make_template):
    lab = make_lab()
    creator = make_user("Creator")
    a = make_user("Anna", lab=lab)
    outsider = make_user("Zed", lab=make_lab("Other"))

    t = make_template(creator, labs=[lab], users=[a, outsider])

    assert resolve_eligible_recipients(db, t) == {a.id, outsider.id}
    assert [u.full_name for u in recipients(db, t)] == ["Anna", "Zed"]


def test_template_without_targets_has_no_recipients(db, make_user, make_template):
    creator = make_user("Creator")
    other = make_user()
    t = make_template(creator)

    assert resolve_eligible_recipients(db, t) == set()
    assert not is_eligible(db, t, other.id)
