from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterable, Optional

import bcrypt

from aggregation import (
    BudgetWithSpent,
    FinancialSummary,
    budgets_with_spent,
    evaluate_budget_alert,
    financial_summary,
    find_budget,
)
from csv_utils import export_transactions, parse_csv
from models import (
    Alert,
    Budget,
    Category,
    CategoryType,
    Deal,
    ForumReply,
    ForumTopic,
    SystemSettings,
    Transaction,
    User,
)
from periods import local_today
from repository import Repository
from schemas import (
    AlertOut,
    BackupSnapshot,
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    CategoryIn,
    CategoryOut,
    DealIn,
    DealOut,
    DealWithUserOut,
    ForumReplyIn,
    ForumReplyOut,
    ForumTopicIn,
    ForumTopicOut,
    MonthlyTotalsOut,
    RegisterIn,
    ReplyWithUserOut,
    SystemSettingsUpdate,
    TopicDetailOut,
    TopicWithUserOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    TransactionWithCategoryOut,
    UserBrief,
    UserRecord,
    UserReportOut,
    UserUpdate,
)

logger = logging.getLogger(__name__)

ACTIVE_USER_WINDOW = timedelta(days=30)

DEFAULT_CATEGORIES = [
    ("Housing", CategoryType.fixed, "#FF5722"),
    ("Food", CategoryType.variable, "#4CAF50"),
    ("Transportation", CategoryType.variable, "#2196F3"),
    ("Entertainment", CategoryType.discretionary, "#9C27B0"),
    ("Education", CategoryType.fixed, "#FF9800"),
    ("Healthcare", CategoryType.variable, "#E91E63"),
    ("Shopping", CategoryType.discretionary, "#00BCD4"),
    ("Income", CategoryType.income, "#8BC34A"),
]


class NotFoundError(ValueError):
    pass


class PermissionDenied(ValueError):
    pass


class InvalidCredentials(PermissionDenied):
    pass


class RegistrationError(ValueError):
    pass


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _user_briefs(repo: Repository, user_ids: Iterable[int]) -> dict[int, UserBrief]:
    briefs: dict[int, UserBrief] = {}
    for user_id in user_ids:
        if user_id in briefs:
            continue
        user = repo.get_user(user_id)
        if user:
            briefs[user_id] = UserBrief.model_validate(user)
    return briefs


class CategoryService:
    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    def list_all(self) -> list[Category]:
        categories = self.repo.list_categories()
        if categories:
            return categories
        for name, category_type, color in DEFAULT_CATEGORIES:
            self.repo.create_category(name=name, type=category_type, color=color)
        logger.info(f"categories_seeded: count={len(DEFAULT_CATEGORIES)}")
        return self.repo.list_categories()

    def by_id(self) -> dict[int, Category]:
        return {c.id: c for c in self.repo.list_categories()}

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        for existing in self.repo.list_categories():
            if existing.name.lower() == name.lower() and existing.type == data.type:
                raise ValueError("Category with this name already exists")
        return self.repo.create_category(name=name, type=data.type, color=data.color)

    def delete(self, category_id: int) -> None:
        if not self.repo.delete_category(category_id):
            raise NotFoundError("Category not found")


class AlertService:
    def __init__(self, repo: Repository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id

    def list(self) -> list[Alert]:
        return self.repo.list_alerts_by_owner(self.user_id)

    def mark_read(self, alert_id: int) -> Alert:
        alert = self.repo.get_alert(alert_id)
        if not alert or alert.user_id != self.user_id:
            raise NotFoundError("Alert not found")
        self.repo.mark_alert_read(alert_id)
        return self.repo.get_alert(alert_id)

    def check_budget(
        self, category_id: int, today: Optional[date] = None
    ) -> Optional[Alert]:
        """Emit an alert when this month's spend in the category crosses 90% or
        100% of the user's budget for it. Every qualifying call creates a new
        alert; earlier unread alerts are not consulted."""
        budget = find_budget(self.repo.list_budgets_by_owner(self.user_id), category_id)
        if budget is None:
            return None
        draft = evaluate_budget_alert(
            budget,
            self.repo.list_transactions_by_owner(self.user_id),
            self.repo.get_category(category_id),
            today or local_today(),
        )
        if draft is None:
            return None
        alert = self.repo.create_alert(
            self.user_id, draft.title, draft.message, draft.type
        )
        logger.info(
            f"budget_alert: user_id={self.user_id} category_id={category_id} "
            f"severity={draft.type.value} percentage={draft.percentage:.2f}"
        )
        return alert


class TransactionService:
    def __init__(self, repo: Repository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id

    def list(self) -> list[TransactionWithCategoryOut]:
        categories = CategoryService(self.repo).by_id()
        result: list[TransactionWithCategoryOut] = []
        for txn in self.repo.list_transactions_by_owner(self.user_id):
            category = categories.get(txn.category_id)
            result.append(
                TransactionWithCategoryOut(
                    **TransactionOut.model_validate(txn).model_dump(),
                    category=CategoryOut.model_validate(category) if category else None,
                )
            )
        return result

    def get(self, transaction_id: int) -> Transaction:
        txn = self.repo.get_transaction(transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def _require_category(self, category_id: int) -> None:
        if self.repo.get_category(category_id) is None:
            raise NotFoundError("Category not found")

    def create(self, data: TransactionIn, today: Optional[date] = None) -> Transaction:
        self._require_category(data.category_id)
        txn = self.repo.create_transaction(
            owner_id=self.user_id,
            amount=data.amount,
            date=data.date,
            description=data.description.strip(),
            category_id=data.category_id,
            is_income=data.is_income,
        )
        # Alerts are advisory; a failure here must not undo the write.
        try:
            AlertService(self.repo, self.user_id).check_budget(txn.category_id, today)
        except Exception:
            logger.exception(
                f"budget_alert_failed: user_id={self.user_id} transaction_id={txn.id}"
            )
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "category_id" in changes:
            self._require_category(changes["category_id"])
        if "description" in changes:
            changes["description"] = changes["description"].strip()
        return self.repo.update_transaction(transaction_id, changes)

    def delete(self, transaction_id: int) -> None:
        self.get(transaction_id)
        if not self.repo.delete_transaction(transaction_id):
            raise NotFoundError("Transaction not found")

    def import_csv(self, content: str) -> tuple[int, list[str]]:
        rows, errors = parse_csv(content)
        known = CategoryService(self.repo).by_id()
        created = 0
        for idx, row in rows:
            if row.category_id not in known:
                errors.append(f"Row {idx}: Category {row.category_id} not found")
                continue
            self.repo.create_transaction(
                owner_id=self.user_id,
                amount=row.amount,
                date=row.date,
                description=row.description,
                category_id=row.category_id,
                is_income=row.is_income,
            )
            created += 1
        logger.info(
            f"csv_import: user_id={self.user_id} created={created} errors={len(errors)}"
        )
        return created, errors

    def export_csv(self) -> str:
        return export_transactions(
            self.repo.list_transactions_by_owner(self.user_id),
            CategoryService(self.repo).by_id(),
        )


class BudgetService:
    def __init__(self, repo: Repository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id

    def list_with_spent(self, today: Optional[date] = None) -> list[BudgetWithSpent]:
        return budgets_with_spent(
            self.repo.list_budgets_by_owner(self.user_id),
            self.repo.list_transactions_by_owner(self.user_id),
            self.repo.list_categories(),
            today or local_today(),
        )

    def get(self, budget_id: int) -> Budget:
        budget = self.repo.get_budget(budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        if self.repo.get_category(data.category_id) is None:
            raise NotFoundError("Category not found")
        return self.repo.create_budget(
            owner_id=self.user_id,
            category_id=data.category_id,
            amount=data.amount,
            period=data.period,
        )

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        self.get(budget_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "category_id" in changes and self.repo.get_category(
            changes["category_id"]
        ) is None:
            raise NotFoundError("Category not found")
        return self.repo.update_budget(budget_id, changes)

    def delete(self, budget_id: int) -> None:
        self.get(budget_id)
        if not self.repo.delete_budget(budget_id):
            raise NotFoundError("Budget not found")


class SummaryService:
    def __init__(self, repo: Repository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id

    def summary(self, today: Optional[date] = None) -> FinancialSummary:
        return financial_summary(
            self.repo.list_transactions_by_owner(self.user_id),
            self.repo.list_budgets_by_owner(self.user_id),
            today or local_today(),
        )


class ForumService:
    def __init__(self, repo: Repository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id

    def list_topics(self) -> list[TopicWithUserOut]:
        topics = self.repo.list_topics()
        users = _user_briefs(self.repo, (t.user_id for t in topics))
        reply_counts: dict[int, int] = defaultdict(int)
        for reply in self.repo.list_replies():
            reply_counts[reply.topic_id] += 1
        return [
            TopicWithUserOut(
                **ForumTopicOut.model_validate(topic).model_dump(),
                user=users.get(topic.user_id),
                reply_count=reply_counts[topic.id],
            )
            for topic in topics
        ]

    def get_topic(self, topic_id: int) -> ForumTopic:
        topic = self.repo.get_topic(topic_id)
        if not topic:
            raise NotFoundError("Topic not found")
        return topic

    def topic_detail(self, topic_id: int) -> TopicDetailOut:
        self.get_topic(topic_id)
        topic = self.repo.increment_topic(topic_id, "views")
        replies = self.repo.list_replies_by_topic(topic_id)
        users = _user_briefs(
            self.repo, [topic.user_id, *(r.user_id for r in replies)]
        )
        return TopicDetailOut(
            **ForumTopicOut.model_validate(topic).model_dump(),
            user=users.get(topic.user_id),
            replies=[
                ReplyWithUserOut(
                    **ForumReplyOut.model_validate(reply).model_dump(),
                    user=users.get(reply.user_id),
                )
                for reply in replies
            ],
        )

    def create_topic(self, data: ForumTopicIn) -> ForumTopic:
        return self.repo.create_topic(
            owner_id=self.user_id, title=data.title.strip(), content=data.content
        )

    def reply(self, topic_id: int, data: ForumReplyIn) -> ForumReply:
        self.get_topic(topic_id)
        return self.repo.create_reply(
            topic_id=topic_id, owner_id=self.user_id, content=data.content
        )

    def like(self, topic_id: int) -> ForumTopic:
        self.get_topic(topic_id)
        return self.repo.increment_topic(topic_id, "likes")


class DealService:
    def __init__(self, repo: Repository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id

    def list(self) -> list[DealWithUserOut]:
        deals = self.repo.list_deals()
        users = _user_briefs(self.repo, (d.added_by for d in deals))
        return [
            DealWithUserOut(
                **DealOut.model_validate(deal).model_dump(),
                user=users.get(deal.added_by),
            )
            for deal in deals
        ]

    def create(self, data: DealIn) -> Deal:
        return self.repo.create_deal(
            added_by=self.user_id,
            title=data.title.strip(),
            description=data.description,
            company=data.company.strip(),
            valid_until=data.valid_until,
        )


class UserService:
    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    def register(self, data: RegisterIn) -> User:
        settings = self.repo.get_system_settings()
        if not settings.allow_registration:
            raise PermissionDenied("Registration is disabled")
        if self.repo.get_user_by_username(data.username):
            raise RegistrationError("Username already exists")
        if self.repo.get_user_by_email(data.email):
            raise RegistrationError("Email already registered")
        # The first account bootstraps administration.
        is_admin = not self.repo.list_users()
        user = self.repo.create_user(
            username=data.username,
            password_hash=hash_password(data.password),
            email=data.email,
            full_name=data.full_name,
            is_admin=is_admin,
        )
        logger.info(f"user_registered: user_id={user.id} is_admin={is_admin}")
        return user

    def authenticate(self, username: str, password: str) -> User:
        user = self.repo.get_user_by_username(username)
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid username or password")
        if self.repo.get_system_settings().maintenance_mode and not user.is_admin:
            raise PermissionDenied("Service is in maintenance mode")
        return self.repo.update_user(user.id, {"last_login": datetime.utcnow()})


class AdminService:
    def __init__(self, repo: Repository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id

    def list_users(self) -> list[User]:
        return self.repo.list_users()

    def get_user(self, user_id: int) -> User:
        user = self.repo.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def update_user(self, user_id: int, data: UserUpdate) -> User:
        self.get_user(user_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "email" in changes:
            other = self.repo.get_user_by_email(changes["email"])
            if other and other.id != user_id:
                raise ValueError("Email already registered")
        return self.repo.update_user(user_id, changes)

    def delete_user(self, user_id: int) -> None:
        if user_id == self.user_id:
            raise ValueError("Cannot delete your own account")
        self.get_user(user_id)
        self.repo.delete_user(user_id)
        logger.info(f"user_deleted: user_id={user_id} by={self.user_id}")

    def get_settings(self) -> SystemSettings:
        return self.repo.get_system_settings()

    def update_settings(self, data: SystemSettingsUpdate) -> SystemSettings:
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        return self.repo.update_system_settings(changes)

    def backup(self) -> BackupSnapshot:
        return BackupSnapshot(
            timestamp=datetime.utcnow(),
            users=[UserRecord.model_validate(u) for u in self.repo.list_users()],
            categories=[
                CategoryOut.model_validate(c) for c in self.repo.list_categories()
            ],
            transactions=[
                TransactionOut.model_validate(t) for t in self.repo.list_transactions()
            ],
            budgets=[BudgetOut.model_validate(b) for b in self.repo.list_budgets()],
            alerts=[AlertOut.model_validate(a) for a in self.repo.list_alerts()],
            forum_topics=[
                ForumTopicOut.model_validate(t) for t in self.repo.list_topics()
            ],
            forum_replies=[
                ForumReplyOut.model_validate(r) for r in self.repo.list_replies()
            ],
            deals=[DealOut.model_validate(d) for d in self.repo.list_deals()],
        )

    def write_backup(self, directory: Path) -> Path:
        snapshot = self.backup()
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"backup-{snapshot.timestamp:%Y%m%d-%H%M%S}.json"
        path.write_text(snapshot.model_dump_json(by_alias=True, indent=2))
        self.repo.update_system_settings({"last_backup": snapshot.timestamp})
        logger.info(f"backup_written: path={path}")
        return path

    def restore(self, snapshot: BackupSnapshot) -> None:
        self.repo.restore(snapshot)
        logger.info(
            f"backup_restored: timestamp={snapshot.timestamp.isoformat()} "
            f"users={len(snapshot.users)} transactions={len(snapshot.transactions)}"
        )

    def user_report(self, now: Optional[datetime] = None) -> UserReportOut:
        now = now or datetime.utcnow()
        users = self.repo.list_users()
        active = [
            u for u in users if u.last_login and u.last_login > now - ACTIVE_USER_WINDOW
        ]
        new_this_month = [
            u
            for u in users
            if u.created_at
            and u.created_at.year == now.year
            and u.created_at.month == now.month
        ]
        return UserReportOut(
            total_users=len(users),
            active_users=len(active),
            new_users_this_month=len(new_this_month),
        )

    def transaction_report(self) -> dict[str, MonthlyTotalsOut]:
        buckets: dict[str, dict] = {}
        for txn in self.repo.list_transactions():
            key = f"{txn.date.year}-{txn.date.month}"
            bucket = buckets.setdefault(
                key, {"income": 0, "expenses": 0, "count": 0}
            )
            if txn.is_income:
                bucket["income"] += txn.amount
            else:
                bucket["expenses"] += txn.amount
            bucket["count"] += 1
        return {key: MonthlyTotalsOut(**values) for key, values in buckets.items()}
