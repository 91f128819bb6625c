import logging
import uuid
from datetime import datetime, timezone

from tenant_admin.db.enums import ActorType, AuditAction
from tenant_admin.db.models import AuditLog
from tenant_admin.services import audit_service, org_service, user_service
from tenant_admin.services.audit_service import (
    REDACTED,
    Actor,
    DatabaseAuditSink,
    build_record,
    json_safe,
    redact_sensitive_fields,
)


def test_sink_failure_is_logged_and_operation_succeeds(
    db, make_org, platform_actor, failing_sink, caplog
):
    org = make_org()

    with caplog.at_level(logging.ERROR, logger="tenant_admin.services.audit_service"):
        deleted = org_service.delete_organization(db, org.id, platform_actor, sink=failing_sink)

    assert deleted.is_pending_deletion
    db.expire_all()
    assert deleted.deleted_at is not None

    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert errors[0].exc_info is not None
    assert errors[0].action == "org.deleted"
    assert errors[0].resource_id == str(org.id)


def test_emit_reports_sink_outcome(failing_sink, audit_sink, platform_actor):
    record = build_record(platform_actor, AuditAction.USER_BANNED, "user", uuid.uuid4())

    assert audit_service.emit(audit_sink, record) is True
    assert audit_service.emit(failing_sink, record) is False
    assert audit_sink.records == [record]


def test_database_sink_persists_records(db, session_factory, platform_actor):
    org_id = uuid.uuid4()
    record = build_record(
        platform_actor,
        AuditAction.ORG_UPDATED,
        "organization",
        org_id,
        organization_id=org_id,
        before={"name": "Old"},
        after={"name": "New"},
        metadata={"source": "import"},
    )

    DatabaseAuditSink(session_factory).write(record)

    row = db.query(AuditLog).one()
    assert row.action == "org.updated"
    assert row.actor_type == "user"
    assert row.resource_id == str(org_id)
    assert row.before == {"name": "Old"}
    assert row.after == {"name": "New"}
    assert row.metadata_ == {"source": "import"}


def test_default_sink_writes_to_audit_log(db, make_user, platform_actor):
    target = make_user()

    user_service.ban_user(db, target.id, platform_actor, reason="abuse")

    entries = audit_service.list_audit_entries(db, "user", target.id)
    assert len(entries) == 1
    assert entries[0]["action"] == "user.banned"
    assert entries[0]["actor_id"] == str(platform_actor.user_id)
    assert entries[0]["after"]["ban_reason"] == "abuse"


def test_impersonated_actions_record_both_identities(db, make_user, superadmin, audit_sink):
    operator = make_user()
    target = make_user()
    actor = Actor.for_user(superadmin.id, impersonator_id=operator.id)

    user_service.ban_user(db, target.id, actor, sink=audit_sink)

    record = audit_sink.records[-1]
    assert record.actor_type == ActorType.IMPERSONATION
    assert record.actor_id == superadmin.id
    assert record.impersonator_id == operator.id
    assert record.to_dict()["actor_type"] == "impersonation"


def test_system_actor():
    actor = Actor.system()
    assert actor.user_id is None
    assert actor.actor_type == ActorType.SYSTEM


def test_json_safe_converts_values():
    moment = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    ident = uuid.uuid4()

    assert json_safe({"at": moment, "id": ident, "tags": (ident,), "kind": ActorType.USER}) == {
        "at": "2026-01-02T03:04:05+00:00",
        "id": str(ident),
        "tags": [str(ident)],
        "kind": "user",
    }


def test_redaction_is_recursive_and_case_insensitive():
    data = {
        "name": "Acme",
        "Password": "hunter2",
        "settings": {"clientSecret": "s3", "nested": [{"API_KEY": "k", "ok": 1}]},
        "refresh_token": "t",
    }

    assert redact_sensitive_fields(data) == {
        "name": "Acme",
        "Password": REDACTED,
        "settings": {"clientSecret": REDACTED, "nested": [{"API_KEY": REDACTED, "ok": 1}]},
        "refresh_token": REDACTED,
    }
    assert redact_sensitive_fields(None) is None


def test_list_audit_entries_redacts_and_limits(db, session_factory, platform_actor):
    sink = DatabaseAuditSink(session_factory)
    resource_id = uuid.uuid4()
    for i in range(3):
        sink.write(
            build_record(
                platform_actor,
                AuditAction.ORG_UPDATED,
                "organization",
                resource_id,
                after={"webhook_secret": f"s{i}", "name": f"n{i}"},
            )
        )

    entries = audit_service.list_audit_entries(db, "organization", resource_id, limit=2)

    assert len(entries) == 2
    assert all(e["after"]["webhook_secret"] == REDACTED for e in entries)
    assert audit_service.list_audit_entries(db, "organization", uuid.uuid4()) == []


def test_list_audit_logs_filters_and_names_actors(db, session_factory, platform_actor):
    sink = DatabaseAuditSink(session_factory)
    org_id = uuid.uuid4()
    gone = Actor.for_user(uuid.uuid4())
    for actor, action, resource, resource_id, extra in (
        (platform_actor, AuditAction.ORG_DELETED, "organization", org_id, {}),
        (gone, AuditAction.USER_BANNED, "user", uuid.uuid4(), {"after": {"api_key": "k"}}),
        (Actor.system(), AuditAction.ORG_RESTORED, "organization", org_id, {}),
    ):
        if resource == "organization":
            extra["organization_id"] = org_id
        sink.write(build_record(actor, action, resource, resource_id, **extra))

    entries, total = audit_service.list_audit_logs(db)
    assert total == 3
    names = {e["action"]: e["actor_name"] for e in entries}
    assert names == {
        "org.deleted": "Test User",
        "user.banned": "[Deleted User]",
        "org.restored": None,
    }
    banned = next(e for e in entries if e["action"] == "user.banned")
    assert banned["after"] == {"api_key": REDACTED}

    by_org, total = audit_service.list_audit_logs(db, organization_id=org_id)
    assert total == 2
    assert {e["action"] for e in by_org} == {"org.deleted", "org.restored"}

    by_actor, _ = audit_service.list_audit_logs(db, actor_id=platform_actor.user_id)
    assert [e["action"] for e in by_actor] == ["org.deleted"]

    by_action, _ = audit_service.list_audit_logs(db, action="org.restored", resource="organization")
    assert [e["resource_id"] for e in by_action] == [str(org_id)]

    page, total = audit_service.list_audit_logs(db, page=2, per_page=2)
    assert total == 3
    assert len(page) == 1
