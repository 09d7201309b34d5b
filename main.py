import base64
import binascii
import logging
import time
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.exc import IntegrityError
from starlette.middleware.sessions import SessionMiddleware

from auth import (
    csrf_protected_admin,
    csrf_protected_user,
    current_user,
    end_session,
    get_repository,
    require_admin,
    start_session,
)
from config import get_settings
from csrf import generate_csrf_token
from models import User
from repository import Repository
from scheduler import SchedulerManager
from schemas import (
    AlertOut,
    BackupSnapshot,
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    BudgetWithSpentOut,
    CategoryIn,
    CategoryOut,
    CSVUploadIn,
    CSVUploadOut,
    DealIn,
    DealOut,
    DealWithUserOut,
    FinancialSummaryOut,
    ForumReplyIn,
    ForumReplyOut,
    ForumTopicIn,
    ForumTopicOut,
    LoginIn,
    MonthlyTotalsOut,
    RegisterIn,
    SessionOut,
    SystemSettingsOut,
    SystemSettingsUpdate,
    TopicDetailOut,
    TopicWithUserOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    TransactionWithCategoryOut,
    UserOut,
    UserReportOut,
    UserUpdate,
)
from services import (
    AdminService,
    AlertService,
    BudgetService,
    CategoryService,
    DealService,
    ForumService,
    InvalidCredentials,
    NotFoundError,
    PermissionDenied,
    SummaryService,
    TransactionService,
    UserService,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Smart Spend")
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    session_cookie="smartspend_session",
    max_age=settings.session_max_age_secs,
    same_site="lax",
)

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.middleware("http")
async def log_api_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"in {duration_ms:.0f}ms"
        )
    return response


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidCredentials):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, PermissionDenied):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# -- session ------------------------------------------------------------------


@app.post("/api/register", response_model=SessionOut, status_code=201)
def register(
    data: RegisterIn, request: Request, repo: Repository = Depends(get_repository)
):
    try:
        user = UserService(repo).register(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return start_session(request, user)


@app.post("/api/login", response_model=SessionOut)
def login(data: LoginIn, request: Request, repo: Repository = Depends(get_repository)):
    try:
        user = UserService(repo).authenticate(data.username, data.password)
    except ValueError as exc:
        raise http_error(exc) from exc
    logger.info(f"login: user_id={user.id}")
    return start_session(request, user)


@app.post("/api/logout", status_code=204)
def logout(request: Request):
    end_session(request)
    return Response(status_code=204)


@app.get("/api/user", response_model=SessionOut)
def session_user(user: User = Depends(current_user)):
    return SessionOut(
        user=UserOut.model_validate(user), csrf_token=generate_csrf_token(user.id)
    )


# -- categories ---------------------------------------------------------------


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    _user: User = Depends(current_user), repo: Repository = Depends(get_repository)
):
    return CategoryService(repo).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    _admin: User = Depends(csrf_protected_admin),
    repo: Repository = Depends(get_repository),
):
    try:
        return CategoryService(repo).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    _admin: User = Depends(csrf_protected_admin),
    repo: Repository = Depends(get_repository),
):
    try:
        CategoryService(repo).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# -- transactions -------------------------------------------------------------


@app.get("/api/transactions", response_model=list[TransactionWithCategoryOut])
def list_transactions(
    user: User = Depends(current_user), repo: Repository = Depends(get_repository)
):
    return TransactionService(repo, user.id).list()


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        return TransactionService(repo, user.id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post(
    "/api/transactions/upload-csv", response_model=CSVUploadOut, status_code=201
)
def upload_transactions_csv(
    data: CSVUploadIn,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        content = base64.b64decode(data.csv_data, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid CSV payload") from exc
    try:
        created, errors = TransactionService(repo, user.id).import_csv(content)
    except ValueError as exc:
        raise http_error(exc) from exc
    return CSVUploadOut(
        message="CSV uploaded and transactions created successfully",
        created=created,
        errors=errors,
    )


@app.get("/api/transactions/export.csv")
def export_transactions_csv(
    user: User = Depends(current_user), repo: Repository = Depends(get_repository)
):
    content = TransactionService(repo, user.id).export_csv()
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        return TransactionService(repo, user.id).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        TransactionService(repo, user.id).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# -- budgets ------------------------------------------------------------------


@app.get("/api/budgets", response_model=list[BudgetWithSpentOut])
def list_budgets(
    user: User = Depends(current_user), repo: Repository = Depends(get_repository)
):
    return [
        BudgetWithSpentOut.model_validate(b)
        for b in BudgetService(repo, user.id).list_with_spent()
    ]


@app.post("/api/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    data: BudgetIn,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        return BudgetService(repo, user.id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        return BudgetService(repo, user.id).update(budget_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        BudgetService(repo, user.id).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# -- alerts & summary ---------------------------------------------------------


@app.get("/api/alerts", response_model=list[AlertOut])
def list_alerts(
    user: User = Depends(current_user), repo: Repository = Depends(get_repository)
):
    return AlertService(repo, user.id).list()


@app.post("/api/alerts/{alert_id}/read", response_model=AlertOut)
def mark_alert_read(
    alert_id: int,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        return AlertService(repo, user.id).mark_read(alert_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/summary", response_model=FinancialSummaryOut)
def financial_summary(
    user: User = Depends(current_user), repo: Repository = Depends(get_repository)
):
    return FinancialSummaryOut.model_validate(SummaryService(repo, user.id).summary())


# -- forum --------------------------------------------------------------------


@app.get("/api/forum", response_model=list[TopicWithUserOut])
def list_topics(
    user: User = Depends(current_user), repo: Repository = Depends(get_repository)
):
    return ForumService(repo, user.id).list_topics()


@app.post("/api/forum", response_model=ForumTopicOut, status_code=201)
def create_topic(
    data: ForumTopicIn,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    return ForumService(repo, user.id).create_topic(data)


@app.get("/api/forum/{topic_id}", response_model=TopicDetailOut)
def topic_detail(
    topic_id: int,
    user: User = Depends(current_user),
    repo: Repository = Depends(get_repository),
):
    try:
        return ForumService(repo, user.id).topic_detail(topic_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/forum/{topic_id}/replies", response_model=ForumReplyOut, status_code=201)
def create_reply(
    topic_id: int,
    data: ForumReplyIn,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        return ForumService(repo, user.id).reply(topic_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/forum/{topic_id}/like", response_model=ForumTopicOut)
def like_topic(
    topic_id: int,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    try:
        return ForumService(repo, user.id).like(topic_id)
    except ValueError as exc:
        raise http_error(exc) from exc


# -- deals --------------------------------------------------------------------


@app.get("/api/deals", response_model=list[DealWithUserOut])
def list_deals(
    user: User = Depends(current_user), repo: Repository = Depends(get_repository)
):
    return DealService(repo, user.id).list()


@app.post("/api/deals", response_model=DealOut, status_code=201)
def create_deal(
    data: DealIn,
    user: User = Depends(csrf_protected_user),
    repo: Repository = Depends(get_repository),
):
    return DealService(repo, user.id).create(data)


# -- admin --------------------------------------------------------------------


@app.get("/api/admin/users", response_model=list[UserOut])
def admin_list_users(
    admin: User = Depends(require_admin), repo: Repository = Depends(get_repository)
):
    return AdminService(repo, admin.id).list_users()


@app.get("/api/admin/user/{user_id}", response_model=UserOut)
def admin_get_user(
    user_id: int,
    admin: User = Depends(require_admin),
    repo: Repository = Depends(get_repository),
):
    try:
        return AdminService(repo, admin.id).get_user(user_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/admin/user/{user_id}", response_model=UserOut)
def admin_update_user(
    user_id: int,
    data: UserUpdate,
    admin: User = Depends(csrf_protected_admin),
    repo: Repository = Depends(get_repository),
):
    try:
        return AdminService(repo, admin.id).update_user(user_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/admin/user/{user_id}", status_code=204)
def admin_delete_user(
    user_id: int,
    admin: User = Depends(csrf_protected_admin),
    repo: Repository = Depends(get_repository),
):
    try:
        AdminService(repo, admin.id).delete_user(user_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/admin/database/backup", response_model=BackupSnapshot)
def admin_backup(
    admin: User = Depends(require_admin), repo: Repository = Depends(get_repository)
):
    return AdminService(repo, admin.id).backup()


@app.post("/api/admin/database/restore")
def admin_restore(
    snapshot: BackupSnapshot,
    admin: User = Depends(csrf_protected_admin),
    repo: Repository = Depends(get_repository),
):
    try:
        AdminService(repo, admin.id).restore(snapshot)
    except IntegrityError as exc:
        logger.warning(f"backup_restore_rejected: error={exc.orig}")
        raise HTTPException(
            status_code=400, detail="Backup contains conflicting rows"
        ) from exc
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"message": "Backup restored"}


@app.get("/api/admin/reports/users", response_model=UserReportOut)
def admin_user_report(
    admin: User = Depends(require_admin), repo: Repository = Depends(get_repository)
):
    return AdminService(repo, admin.id).user_report()


@app.get(
    "/api/admin/reports/transactions", response_model=dict[str, MonthlyTotalsOut]
)
def admin_transaction_report(
    admin: User = Depends(require_admin), repo: Repository = Depends(get_repository)
):
    return AdminService(repo, admin.id).transaction_report()


@app.get("/api/admin/settings", response_model=SystemSettingsOut)
def admin_get_settings(
    admin: User = Depends(require_admin), repo: Repository = Depends(get_repository)
):
    return AdminService(repo, admin.id).get_settings()


@app.put("/api/admin/settings", response_model=SystemSettingsOut)
def admin_update_settings(
    data: SystemSettingsUpdate,
    admin: User = Depends(csrf_protected_admin),
    repo: Repository = Depends(get_repository),
):
    service = AdminService(repo, admin.id)
    previous: Optional[str] = service.get_settings().backup_frequency
    updated = service.update_settings(data)
    if updated.backup_frequency != previous and scheduler_manager.scheduler.running:
        scheduler_manager.schedule_backups(updated.backup_frequency)
    return updated


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
