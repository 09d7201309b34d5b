import json
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from repository import InMemoryRepository
from schemas import (
    BackupSnapshot,
    ForumReplyIn,
    ForumTopicIn,
    RegisterIn,
    SystemSettingsUpdate,
    TransactionIn,
    UserUpdate,
)
from services import (
    AdminService,
    ForumService,
    InvalidCredentials,
    PermissionDenied,
    RegistrationError,
    TransactionService,
    UserService,
)


def _register(repo, username, email=None):
    return UserService(repo).register(
        RegisterIn(
            username=username,
            password="secret123",
            email=email or f"{username}@example.com",
            full_name=username.title(),
        )
    )


def test_first_user_becomes_admin(repo) -> None:
    first = _register(repo, "alice")
    second = _register(repo, "bob")

    assert first.is_admin is True
    assert second.is_admin is False


def test_duplicate_registration_rejected(repo) -> None:
    _register(repo, "alice")

    with pytest.raises(RegistrationError):
        _register(repo, "alice", "other@example.com")
    with pytest.raises(RegistrationError):
        _register(repo, "carol", "alice@example.com")


def test_authentication_and_maintenance_mode(repo) -> None:
    admin = _register(repo, "alice")
    _register(repo, "bob")
    users = UserService(repo)

    with pytest.raises(InvalidCredentials):
        users.authenticate("bob", "wrong-password")

    bob = users.authenticate("bob", "secret123")
    assert bob.last_login is not None

    AdminService(repo, admin.id).update_settings(
        SystemSettingsUpdate(maintenance_mode=True)
    )
    with pytest.raises(PermissionDenied):
        users.authenticate("bob", "secret123")
    assert users.authenticate("alice", "secret123").id == admin.id


def test_registration_can_be_disabled(repo) -> None:
    admin = _register(repo, "alice")
    AdminService(repo, admin.id).update_settings(
        SystemSettingsUpdate(allow_registration=False)
    )

    with pytest.raises(PermissionDenied):
        _register(repo, "bob")


def test_admin_cannot_delete_self(repo) -> None:
    admin = _register(repo, "alice")
    bob = _register(repo, "bob")
    service = AdminService(repo, admin.id)

    with pytest.raises(ValueError):
        service.delete_user(admin.id)

    service.update_user(bob.id, UserUpdate(full_name="Robert"))
    assert repo.get_user(bob.id).full_name == "Robert"
    service.delete_user(bob.id)
    assert repo.get_user(bob.id) is None


def test_backup_round_trip_restores_rows(repo, tmp_path, food) -> None:
    admin = _register(repo, "alice")
    TransactionService(repo, admin.id).create(
        TransactionIn(
            amount=Decimal("42.10"),
            date=date(2025, 2, 3),
            description="Books",
            category_id=food.id,
        )
    )
    forum = ForumService(repo, admin.id)
    topic = forum.create_topic(ForumTopicIn(title="Saving tips", content="Share"))
    forum.reply(topic.id, ForumReplyIn(content="Cook at home"))

    service = AdminService(repo, admin.id)
    path = service.write_backup(tmp_path)
    payload = json.loads(path.read_text())
    assert payload["transactions"][0]["amount"] == 42.1
    assert service.get_settings().last_backup is not None

    fresh = InMemoryRepository()
    AdminService(fresh, 0).restore(BackupSnapshot.model_validate(payload))

    assert [u.username for u in fresh.list_users()] == ["alice"]
    [txn] = fresh.list_transactions()
    assert txn.amount == Decimal("42.1")
    assert txn.date == date(2025, 2, 3)
    assert len(fresh.list_replies_by_topic(topic.id)) == 1
    # ids continue after the restored rows
    assert fresh.create_category(name="New", type=food.type, color="#000000").id == (
        food.id + 1
    )


def test_restore_replaces_existing_rows(repo, food) -> None:
    admin = _register(repo, "alice")
    snapshot = AdminService(repo, admin.id).backup()
    _register(repo, "bob")

    AdminService(repo, admin.id).restore(snapshot)

    assert [u.username for u in repo.list_users()] == ["alice"]
    assert [c.name for c in repo.list_categories()] == ["Food"]


def test_reports(repo, food) -> None:
    admin = _register(repo, "alice")
    UserService(repo).authenticate("alice", "secret123")
    _register(repo, "bob")
    service = TransactionService(repo, admin.id)
    for amount, day, is_income in [
        ("100", date(2025, 1, 5), True),
        ("30", date(2025, 1, 9), False),
        ("20", date(2025, 2, 1), False),
    ]:
        service.create(
            TransactionIn(
                amount=Decimal(amount),
                date=day,
                description="x",
                category_id=food.id,
                is_income=is_income,
            )
        )

    admin_service = AdminService(repo, admin.id)
    report = admin_service.user_report(now=datetime.utcnow() + timedelta(minutes=1))
    assert report.total_users == 2
    assert report.active_users == 1

    totals = admin_service.transaction_report()
    assert totals["2025-1"].income == Decimal("100")
    assert totals["2025-1"].expenses == Decimal("30")
    assert totals["2025-1"].count == 2
    assert totals["2025-2"].count == 1


def test_topic_detail_counts_views_and_likes(repo) -> None:
    alice = _register(repo, "alice")
    bob = _register(repo, "bob")
    topic = ForumService(repo, alice.id).create_topic(
        ForumTopicIn(title="Budget apps", content="Which do you use?")
    )
    ForumService(repo, bob.id).reply(topic.id, ForumReplyIn(content="A spreadsheet"))
    ForumService(repo, bob.id).like(topic.id)

    detail = ForumService(repo, bob.id).topic_detail(topic.id)

    assert detail.views == 1
    assert detail.likes == 1
    assert detail.user.username == "alice"
    assert [r.user.username for r in detail.replies] == ["bob"]
    [listed] = ForumService(repo, bob.id).list_topics()
    assert listed.reply_count == 1
