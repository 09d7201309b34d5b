"""Storage contract for every entity and its two backends.

``SQLRepository`` is what the application runs on; ``InMemoryRepository``
keeps the same behaviour in plain dicts for tests. Both leave identity
generation to the backend (database autoincrement or a per-instance
counter) and return whole collections; the only server-side filters are
owner id and topic id.
"""

from __future__ import annotations

import itertools
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Protocol, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from models import (
    Alert,
    AlertType,
    Budget,
    BudgetPeriod,
    Category,
    CategoryType,
    Deal,
    ForumReply,
    ForumTopic,
    SystemSettings,
    Transaction,
    User,
)
from schemas import BackupSnapshot

T = TypeVar("T")


class Repository(Protocol):
    # users
    def get_user(self, user_id: int) -> Optional[User]: ...
    def get_user_by_username(self, username: str) -> Optional[User]: ...
    def get_user_by_email(self, email: str) -> Optional[User]: ...
    def create_user(
        self,
        *,
        username: str,
        password_hash: str,
        email: str,
        full_name: str,
        is_admin: bool = False,
    ) -> User: ...
    def update_user(self, user_id: int, changes: dict[str, Any]) -> Optional[User]: ...
    def delete_user(self, user_id: int) -> bool: ...
    def list_users(self) -> list[User]: ...

    # categories
    def list_categories(self) -> list[Category]: ...
    def get_category(self, category_id: int) -> Optional[Category]: ...
    def create_category(
        self, *, name: str, type: CategoryType, color: str
    ) -> Category: ...
    def delete_category(self, category_id: int) -> bool: ...

    # transactions
    def list_transactions_by_owner(self, owner_id: int) -> list[Transaction]: ...
    def list_transactions(self) -> list[Transaction]: ...
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]: ...
    def create_transaction(
        self,
        *,
        owner_id: int,
        amount: Decimal,
        date: date,
        description: str,
        category_id: int,
        is_income: bool,
    ) -> Transaction: ...
    def update_transaction(
        self, transaction_id: int, changes: dict[str, Any]
    ) -> Optional[Transaction]: ...
    def delete_transaction(self, transaction_id: int) -> bool: ...

    # budgets
    def list_budgets_by_owner(self, owner_id: int) -> list[Budget]: ...
    def list_budgets(self) -> list[Budget]: ...
    def get_budget(self, budget_id: int) -> Optional[Budget]: ...
    def create_budget(
        self,
        *,
        owner_id: int,
        category_id: int,
        amount: Decimal,
        period: BudgetPeriod,
    ) -> Budget: ...
    def update_budget(
        self, budget_id: int, changes: dict[str, Any]
    ) -> Optional[Budget]: ...
    def delete_budget(self, budget_id: int) -> bool: ...

    # alerts
    def list_alerts_by_owner(self, owner_id: int) -> list[Alert]: ...
    def list_alerts(self) -> list[Alert]: ...
    def get_alert(self, alert_id: int) -> Optional[Alert]: ...
    def create_alert(
        self, owner_id: int, title: str, message: str, severity: AlertType
    ) -> Alert: ...
    def mark_alert_read(self, alert_id: int) -> bool: ...

    # forum
    def list_topics(self) -> list[ForumTopic]: ...
    def get_topic(self, topic_id: int) -> Optional[ForumTopic]: ...
    def create_topic(
        self, *, owner_id: int, title: str, content: str
    ) -> ForumTopic: ...
    def increment_topic(self, topic_id: int, field: str) -> Optional[ForumTopic]: ...
    def list_replies_by_topic(self, topic_id: int) -> list[ForumReply]: ...
    def list_replies(self) -> list[ForumReply]: ...
    def create_reply(
        self, *, topic_id: int, owner_id: int, content: str
    ) -> ForumReply: ...

    # deals
    def list_deals(self) -> list[Deal]: ...
    def create_deal(
        self,
        *,
        added_by: int,
        title: str,
        description: str,
        company: str,
        valid_until: Optional[date],
    ) -> Deal: ...

    # system
    def get_system_settings(self) -> SystemSettings: ...
    def update_system_settings(self, changes: dict[str, Any]) -> SystemSettings: ...
    def restore(self, snapshot: BackupSnapshot) -> None: ...


COUNTER_FIELDS = ("likes", "views")


def _newest_first(rows: Iterable[T]) -> list[T]:
    return sorted(rows, key=lambda r: (r.created_at, r.id), reverse=True)


def _snapshot_rows(snapshot: BackupSnapshot) -> list[tuple[type, list[dict]]]:
    return [
        (User, [r.model_dump(exclude_none=True) for r in snapshot.users]),
        (Category, [r.model_dump(exclude_none=True) for r in snapshot.categories]),
        (
            Transaction,
            [r.model_dump(exclude_none=True) for r in snapshot.transactions],
        ),
        (Budget, [r.model_dump(exclude_none=True) for r in snapshot.budgets]),
        (Alert, [r.model_dump(exclude_none=True) for r in snapshot.alerts]),
        (
            ForumTopic,
            [r.model_dump(exclude_none=True) for r in snapshot.forum_topics],
        ),
        (
            ForumReply,
            [r.model_dump(exclude_none=True) for r in snapshot.forum_replies],
        ),
        (Deal, [r.model_dump(exclude_none=True) for r in snapshot.deals]),
    ]


class SQLRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _add(self, obj: T) -> T:
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def _update(self, model: type[T], obj_id: int, changes: dict[str, Any]) -> Optional[T]:
        obj = self.session.get(model, obj_id)
        if obj is None:
            return None
        for key, value in changes.items():
            setattr(obj, key, value)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def _delete(self, model: type, obj_id: int) -> bool:
        obj = self.session.get(model, obj_id)
        if obj is None:
            return False
        self.session.delete(obj)
        self.session.commit()
        return True

    # users

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.username == username))

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def create_user(
        self,
        *,
        username: str,
        password_hash: str,
        email: str,
        full_name: str,
        is_admin: bool = False,
    ) -> User:
        return self._add(
            User(
                username=username,
                password_hash=password_hash,
                email=email,
                full_name=full_name,
                is_admin=is_admin,
            )
        )

    def update_user(self, user_id: int, changes: dict[str, Any]) -> Optional[User]:
        return self._update(User, user_id, changes)

    def delete_user(self, user_id: int) -> bool:
        return self._delete(User, user_id)

    def list_users(self) -> list[User]:
        return list(self.session.scalars(select(User).order_by(User.id)).all())

    # categories

    def list_categories(self) -> list[Category]:
        return list(self.session.scalars(select(Category).order_by(Category.id)).all())

    def get_category(self, category_id: int) -> Optional[Category]:
        return self.session.get(Category, category_id)

    def create_category(self, *, name: str, type: CategoryType, color: str) -> Category:
        return self._add(Category(name=name, type=type, color=color))

    def delete_category(self, category_id: int) -> bool:
        return self._delete(Category, category_id)

    # transactions

    def list_transactions_by_owner(self, owner_id: int) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == owner_id)
            .order_by(Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def list_transactions(self) -> list[Transaction]:
        return list(
            self.session.scalars(select(Transaction).order_by(Transaction.id)).all()
        )

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return self.session.get(Transaction, transaction_id)

    def create_transaction(
        self,
        *,
        owner_id: int,
        amount: Decimal,
        date: date,
        description: str,
        category_id: int,
        is_income: bool,
    ) -> Transaction:
        return self._add(
            Transaction(
                user_id=owner_id,
                amount=amount,
                date=date,
                description=description,
                category_id=category_id,
                is_income=is_income,
            )
        )

    def update_transaction(
        self, transaction_id: int, changes: dict[str, Any]
    ) -> Optional[Transaction]:
        return self._update(Transaction, transaction_id, changes)

    def delete_transaction(self, transaction_id: int) -> bool:
        return self._delete(Transaction, transaction_id)

    # budgets

    def list_budgets_by_owner(self, owner_id: int) -> list[Budget]:
        stmt = select(Budget).where(Budget.user_id == owner_id).order_by(Budget.id)
        return list(self.session.scalars(stmt).all())

    def list_budgets(self) -> list[Budget]:
        return list(self.session.scalars(select(Budget).order_by(Budget.id)).all())

    def get_budget(self, budget_id: int) -> Optional[Budget]:
        return self.session.get(Budget, budget_id)

    def create_budget(
        self,
        *,
        owner_id: int,
        category_id: int,
        amount: Decimal,
        period: BudgetPeriod,
    ) -> Budget:
        return self._add(
            Budget(
                user_id=owner_id, category_id=category_id, amount=amount, period=period
            )
        )

    def update_budget(self, budget_id: int, changes: dict[str, Any]) -> Optional[Budget]:
        return self._update(Budget, budget_id, changes)

    def delete_budget(self, budget_id: int) -> bool:
        return self._delete(Budget, budget_id)

    # alerts

    def list_alerts_by_owner(self, owner_id: int) -> list[Alert]:
        stmt = (
            select(Alert)
            .where(Alert.user_id == owner_id)
            .order_by(Alert.created_at.desc(), Alert.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def list_alerts(self) -> list[Alert]:
        return list(self.session.scalars(select(Alert).order_by(Alert.id)).all())

    def get_alert(self, alert_id: int) -> Optional[Alert]:
        return self.session.get(Alert, alert_id)

    def create_alert(
        self, owner_id: int, title: str, message: str, severity: AlertType
    ) -> Alert:
        return self._add(
            Alert(user_id=owner_id, title=title, message=message, type=severity)
        )

    def mark_alert_read(self, alert_id: int) -> bool:
        return self._update(Alert, alert_id, {"read": True}) is not None

    # forum

    def list_topics(self) -> list[ForumTopic]:
        stmt = select(ForumTopic).order_by(
            ForumTopic.created_at.desc(), ForumTopic.id.desc()
        )
        return list(self.session.scalars(stmt).all())

    def get_topic(self, topic_id: int) -> Optional[ForumTopic]:
        return self.session.get(ForumTopic, topic_id)

    def create_topic(self, *, owner_id: int, title: str, content: str) -> ForumTopic:
        return self._add(ForumTopic(user_id=owner_id, title=title, content=content))

    def increment_topic(self, topic_id: int, field: str) -> Optional[ForumTopic]:
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter: {field}")
        topic = self.session.get(ForumTopic, topic_id)
        if topic is None:
            return None
        setattr(topic, field, getattr(ForumTopic, field) + 1)
        self.session.commit()
        self.session.refresh(topic)
        return topic

    def list_replies_by_topic(self, topic_id: int) -> list[ForumReply]:
        stmt = (
            select(ForumReply)
            .where(ForumReply.topic_id == topic_id)
            .order_by(ForumReply.created_at, ForumReply.id)
        )
        return list(self.session.scalars(stmt).all())

    def list_replies(self) -> list[ForumReply]:
        return list(
            self.session.scalars(select(ForumReply).order_by(ForumReply.id)).all()
        )

    def create_reply(self, *, topic_id: int, owner_id: int, content: str) -> ForumReply:
        return self._add(ForumReply(topic_id=topic_id, user_id=owner_id, content=content))

    # deals

    def list_deals(self) -> list[Deal]:
        stmt = select(Deal).order_by(Deal.created_at.desc(), Deal.id.desc())
        return list(self.session.scalars(stmt).all())

    def create_deal(
        self,
        *,
        added_by: int,
        title: str,
        description: str,
        company: str,
        valid_until: Optional[date],
    ) -> Deal:
        return self._add(
            Deal(
                added_by=added_by,
                title=title,
                description=description,
                company=company,
                valid_until=valid_until,
            )
        )

    # system

    def get_system_settings(self) -> SystemSettings:
        row = self.session.scalar(select(SystemSettings).order_by(SystemSettings.id))
        if row is None:
            row = self._add(SystemSettings())
        return row

    def update_system_settings(self, changes: dict[str, Any]) -> SystemSettings:
        row = self.get_system_settings()
        return self._update(SystemSettings, row.id, changes)

    def restore(self, snapshot: BackupSnapshot) -> None:
        tables = _snapshot_rows(snapshot)
        try:
            for model, _rows in tables:
                self.session.execute(delete(model))
            self.session.expunge_all()
            for model, rows in tables:
                self.session.add_all([model(**row) for row in rows])
            self.session.flush()
            settings = self.get_system_settings()
            settings.last_backup = datetime.utcnow()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


class InMemoryRepository:
    """Dict-backed repository; each instance owns its rows and id counters."""

    def __init__(self) -> None:
        self._tables: dict[type, dict[int, Any]] = {}
        self._ids: dict[type, itertools.count] = {}
        self._settings: Optional[SystemSettings] = None

    def _rows(self, model: type[T]) -> dict[int, T]:
        return self._tables.setdefault(model, {})

    def _add(self, obj: T) -> T:
        model = type(obj)
        counter = self._ids.setdefault(model, itertools.count(1))
        obj.id = next(counter)
        now = datetime.utcnow()
        obj.created_at = now
        obj.updated_at = now
        self._rows(model)[obj.id] = obj
        return obj

    def _update(self, model: type[T], obj_id: int, changes: dict[str, Any]) -> Optional[T]:
        obj = self._rows(model).get(obj_id)
        if obj is None:
            return None
        for key, value in changes.items():
            setattr(obj, key, value)
        obj.updated_at = datetime.utcnow()
        return obj

    def _delete(self, model: type, obj_id: int) -> bool:
        return self._rows(model).pop(obj_id, None) is not None

    def _all(self, model: type[T]) -> list[T]:
        rows = self._rows(model)
        return [rows[key] for key in sorted(rows)]

    # users

    def get_user(self, user_id: int) -> Optional[User]:
        return self._rows(User).get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self._all(User) if u.username == username), None)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self._all(User) if u.email == email), None)

    def create_user(
        self,
        *,
        username: str,
        password_hash: str,
        email: str,
        full_name: str,
        is_admin: bool = False,
    ) -> User:
        return self._add(
            User(
                username=username,
                password_hash=password_hash,
                email=email,
                full_name=full_name,
                is_admin=is_admin,
                last_login=None,
            )
        )

    def update_user(self, user_id: int, changes: dict[str, Any]) -> Optional[User]:
        return self._update(User, user_id, changes)

    def delete_user(self, user_id: int) -> bool:
        return self._delete(User, user_id)

    def list_users(self) -> list[User]:
        return self._all(User)

    # categories

    def list_categories(self) -> list[Category]:
        return self._all(Category)

    def get_category(self, category_id: int) -> Optional[Category]:
        return self._rows(Category).get(category_id)

    def create_category(self, *, name: str, type: CategoryType, color: str) -> Category:
        return self._add(Category(name=name, type=type, color=color))

    def delete_category(self, category_id: int) -> bool:
        return self._delete(Category, category_id)

    # transactions

    def list_transactions_by_owner(self, owner_id: int) -> list[Transaction]:
        return [t for t in self._all(Transaction) if t.user_id == owner_id]

    def list_transactions(self) -> list[Transaction]:
        return self._all(Transaction)

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return self._rows(Transaction).get(transaction_id)

    def create_transaction(
        self,
        *,
        owner_id: int,
        amount: Decimal,
        date: date,
        description: str,
        category_id: int,
        is_income: bool,
    ) -> Transaction:
        return self._add(
            Transaction(
                user_id=owner_id,
                amount=amount,
                date=date,
                description=description,
                category_id=category_id,
                is_income=is_income,
            )
        )

    def update_transaction(
        self, transaction_id: int, changes: dict[str, Any]
    ) -> Optional[Transaction]:
        return self._update(Transaction, transaction_id, changes)

    def delete_transaction(self, transaction_id: int) -> bool:
        return self._delete(Transaction, transaction_id)

    # budgets

    def list_budgets_by_owner(self, owner_id: int) -> list[Budget]:
        return [b for b in self._all(Budget) if b.user_id == owner_id]

    def list_budgets(self) -> list[Budget]:
        return self._all(Budget)

    def get_budget(self, budget_id: int) -> Optional[Budget]:
        return self._rows(Budget).get(budget_id)

    def create_budget(
        self,
        *,
        owner_id: int,
        category_id: int,
        amount: Decimal,
        period: BudgetPeriod,
    ) -> Budget:
        return self._add(
            Budget(
                user_id=owner_id, category_id=category_id, amount=amount, period=period
            )
        )

    def update_budget(self, budget_id: int, changes: dict[str, Any]) -> Optional[Budget]:
        return self._update(Budget, budget_id, changes)

    def delete_budget(self, budget_id: int) -> bool:
        return self._delete(Budget, budget_id)

    # alerts

    def list_alerts_by_owner(self, owner_id: int) -> list[Alert]:
        return _newest_first(a for a in self._all(Alert) if a.user_id == owner_id)

    def list_alerts(self) -> list[Alert]:
        return self._all(Alert)

    def get_alert(self, alert_id: int) -> Optional[Alert]:
        return self._rows(Alert).get(alert_id)

    def create_alert(
        self, owner_id: int, title: str, message: str, severity: AlertType
    ) -> Alert:
        return self._add(
            Alert(
                user_id=owner_id, title=title, message=message, type=severity, read=False
            )
        )

    def mark_alert_read(self, alert_id: int) -> bool:
        return self._update(Alert, alert_id, {"read": True}) is not None

    # forum

    def list_topics(self) -> list[ForumTopic]:
        return _newest_first(self._all(ForumTopic))

    def get_topic(self, topic_id: int) -> Optional[ForumTopic]:
        return self._rows(ForumTopic).get(topic_id)

    def create_topic(self, *, owner_id: int, title: str, content: str) -> ForumTopic:
        return self._add(
            ForumTopic(user_id=owner_id, title=title, content=content, likes=0, views=0)
        )

    def increment_topic(self, topic_id: int, field: str) -> Optional[ForumTopic]:
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter: {field}")
        topic = self.get_topic(topic_id)
        if topic is None:
            return None
        setattr(topic, field, getattr(topic, field) + 1)
        return topic

    def list_replies_by_topic(self, topic_id: int) -> list[ForumReply]:
        return sorted(
            (r for r in self._all(ForumReply) if r.topic_id == topic_id),
            key=lambda r: (r.created_at, r.id),
        )

    def list_replies(self) -> list[ForumReply]:
        return self._all(ForumReply)

    def create_reply(self, *, topic_id: int, owner_id: int, content: str) -> ForumReply:
        return self._add(ForumReply(topic_id=topic_id, user_id=owner_id, content=content))

    # deals

    def list_deals(self) -> list[Deal]:
        return _newest_first(self._all(Deal))

    def create_deal(
        self,
        *,
        added_by: int,
        title: str,
        description: str,
        company: str,
        valid_until: Optional[date],
    ) -> Deal:
        return self._add(
            Deal(
                added_by=added_by,
                title=title,
                description=description,
                company=company,
                valid_until=valid_until,
            )
        )

    # system

    def get_system_settings(self) -> SystemSettings:
        if self._settings is None:
            self._settings = SystemSettings(
                id=1,
                allow_registration=True,
                maintenance_mode=False,
                app_name="Smart Spend",
                contact_email="support@smartspend.com",
                backup_frequency="daily",
                last_backup=None,
            )
        return self._settings

    def update_system_settings(self, changes: dict[str, Any]) -> SystemSettings:
        settings = self.get_system_settings()
        for key, value in changes.items():
            setattr(settings, key, value)
        return settings

    def restore(self, snapshot: BackupSnapshot) -> None:
        now = datetime.utcnow()
        for model, rows in _snapshot_rows(snapshot):
            table: dict[int, Any] = {}
            for row in rows:
                row.setdefault("created_at", now)
                row.setdefault("updated_at", now)
                obj = model(**row)
                table[obj.id] = obj
            self._tables[model] = table
            self._ids[model] = itertools.count(max(table, default=0) + 1)
        self.get_system_settings().last_backup = now
