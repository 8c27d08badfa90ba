import logging
from datetime import date
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from assistant import AssistantService
from auth import generate_access_token, read_access_token
from billing import local_today
from database import SessionLocal
from errors import LedgerError
from models import Account, TransactionType
from notifications import LedgerNotifier
from periods import Period, resolve_period
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdateIn,
    CategoryIn,
    CategoryOut,
    ChatIn,
    ChatOut,
    CreditCardIn,
    CreditCardOut,
    CreditCardUpdateIn,
    HoldingIn,
    HoldingOut,
    InvoiceIn,
    InvoiceOut,
    InvoicePayIn,
    InvoiceUpdateIn,
    MovimentIn,
    MovimentOut,
    ObjectiveIn,
    ObjectiveOut,
    PlanningIn,
    PlanningOut,
    PlanningUpdateIn,
    TokenIn,
    TokenOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdateIn,
    UserIn,
    UserOut,
    UserUpdateIn,
)
from services import (
    AccountService,
    CategoryService,
    CreditCardService,
    HoldingService,
    InvoiceService,
    MovimentService,
    ObjectiveService,
    PlanningService,
    TransactionFilters,
    TransactionService,
    UserService,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Finanz API")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


notifier = LedgerNotifier()


def get_notifier() -> LedgerNotifier:
    return notifier


scheduler_manager = SchedulerManager(notifier)


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f"ledger_error: path={request.url.path} detail={exc.message}")
    body: dict[str, object] = {"error": exc.kind, "detail": exc.message}
    if exc.details is not None:
        body["errors"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    body = {
        "error": "validation_error",
        "detail": "Invalid request",
        "errors": exc.errors(),
    }
    return JSONResponse(status_code=400, content=jsonable_encoder(body))


def current_user_id(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user_id = read_access_token(token.strip())
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user_id


def current_account(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> Account:
    return AccountService(db, user_id).get_for_user()


def period_from_request(request: Request) -> Period:
    params = request.query_params
    try:
        return resolve_period(
            params.get("period"),
            params.get("start"),
            params.get("end"),
            month=params.get("month"),
            today=local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    type_param = request.query_params.get("type")
    txn_type = None
    if type_param:
        try:
            txn_type = TransactionType(type_param)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail="Invalid transaction type"
            ) from exc
    return TransactionFilters(
        type=txn_type,
        category_id=request.query_params.get("category_id") or None,
        credit_card_id=request.query_params.get("credit_card_id") or None,
        query=request.query_params.get("q") or None,
    )


def date_param(request: Request, name: str) -> Optional[date]:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name} date") from exc


def paging_from_request(request: Request, default_limit: int = 50) -> tuple[int, int]:
    try:
        limit = int(request.query_params.get("limit", default_limit))
        offset = int(request.query_params.get("offset", 0))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid paging") from exc
    return max(1, min(limit, 500)), max(0, offset)


@app.get("/")
def root():
    return {"status": "ok", "version": APP_VERSION}


# users and auth


@app.post("/users", response_model=UserOut, status_code=201)
def create_user(data: UserIn, db: Session = Depends(get_db)):
    return UserService(db).create(data)


@app.post("/auth/token", response_model=TokenOut)
def issue_token(data: TokenIn, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data.email, data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return TokenOut(access_token=generate_access_token(user.id))


@app.get("/users/me", response_model=UserOut)
def read_me(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    return UserService(db).get(user_id)


@app.patch("/users/me", response_model=UserOut)
def update_me(
    data: UserUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return UserService(db).update(user_id, data)


@app.delete("/users/me", status_code=204)
def delete_me(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)):
    UserService(db).delete(user_id)
    return Response(status_code=204)


# accounts


@app.post("/accounts", response_model=AccountOut, status_code=201)
def create_account(
    data: AccountIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return AccountService(db, user_id).create(data)


@app.get("/accounts/me", response_model=AccountOut)
def read_account(account: Account = Depends(current_account)):
    return account


@app.patch("/accounts/me", response_model=AccountOut)
def update_account(
    data: AccountUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return AccountService(db, user_id).update(data)


# categories


@app.post("/categories", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).create(data)


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).list_all(account.id)


# credit cards


@app.post("/credit-cards", response_model=CreditCardOut, status_code=201)
def create_credit_card(
    data: CreditCardIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CreditCardService(db, user_id).create(data)


@app.get("/credit-cards", response_model=list[CreditCardOut])
def list_credit_cards(
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CreditCardService(db, user_id).list_all(account.id)


@app.get("/credit-cards/{credit_card_id}", response_model=CreditCardOut)
def read_credit_card(
    credit_card_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CreditCardService(db, user_id).get(credit_card_id)


@app.patch("/credit-cards/{credit_card_id}", response_model=CreditCardOut)
def update_credit_card(
    credit_card_id: str,
    data: CreditCardUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return CreditCardService(db, user_id).update(credit_card_id, data)


@app.delete("/credit-cards/{credit_card_id}", status_code=204)
def delete_credit_card(
    credit_card_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    CreditCardService(db, user_id).delete(credit_card_id)
    return Response(status_code=204)


# transactions


def _transaction_payload(txn) -> dict[str, object]:
    return TransactionOut.model_validate(txn).model_dump(mode="json")


@app.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    background: BackgroundTasks,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    events: LedgerNotifier = Depends(get_notifier),
):
    txn = TransactionService(db, user_id).create(data)
    background.add_task(
        events.ledger_event, "transaction.created", _transaction_payload(txn)
    )
    return txn


@app.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    request: Request,
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    filters = filters_from_request(request)
    limit, offset = paging_from_request(request)
    return TransactionService(db, user_id).list(
        account.id, period, filters, limit=limit, offset=offset
    )


@app.get("/transactions/statistics")
def transaction_statistics(
    request: Request,
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    return TransactionService(db, user_id).statistics(account.id, period)


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def read_transaction(
    transaction_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).get(transaction_id)


@app.patch("/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: str,
    data: TransactionUpdateIn,
    background: BackgroundTasks,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    events: LedgerNotifier = Depends(get_notifier),
):
    txn = TransactionService(db, user_id).update(transaction_id, data)
    background.add_task(
        events.ledger_event, "transaction.updated", _transaction_payload(txn)
    )
    return txn


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str,
    background: BackgroundTasks,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    events: LedgerNotifier = Depends(get_notifier),
):
    txn = TransactionService(db, user_id).delete(transaction_id)
    background.add_task(
        events.ledger_event, "transaction.deleted", _transaction_payload(txn)
    )
    return Response(status_code=204)


# invoices


@app.post("/invoices", response_model=InvoiceOut, status_code=201)
def create_invoice(
    data: InvoiceIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return InvoiceService(db, user_id).create(data)


@app.post(
    "/invoices/generate/{credit_card_id}", response_model=InvoiceOut, status_code=201
)
def generate_invoice(
    credit_card_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return InvoiceService(db, user_id).generate_current(credit_card_id)


@app.get("/invoices", response_model=list[InvoiceOut])
def list_invoices(
    request: Request,
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    limit, offset = paging_from_request(request, default_limit=10)
    year_param: Optional[str] = request.query_params.get("year")
    try:
        year = int(year_param) if year_param else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid year") from exc
    return InvoiceService(db, user_id).list_all(
        account.id,
        credit_card_id=request.query_params.get("credit_card_id") or None,
        year=year,
        limit=limit,
        offset=offset,
    )


@app.get("/invoices/statistics/{credit_card_id}")
def invoice_statistics(
    credit_card_id: str,
    request: Request,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    start = date_param(request, "start")
    end = date_param(request, "end")
    return InvoiceService(db, user_id).statistics(credit_card_id, start, end)


@app.get("/invoices/{invoice_id}")
def read_invoice(
    invoice_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    detail = InvoiceService(db, user_id).detail(invoice_id)
    detail["invoice"] = InvoiceOut.model_validate(detail["invoice"])
    return detail


@app.patch("/invoices/{invoice_id}", response_model=InvoiceOut)
def update_invoice(
    invoice_id: str,
    data: InvoiceUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return InvoiceService(db, user_id).update(invoice_id, data)


@app.delete("/invoices/{invoice_id}", status_code=204)
def delete_invoice(
    invoice_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    InvoiceService(db, user_id).delete(invoice_id)
    return Response(status_code=204)


@app.post("/invoices/{invoice_id}/pay")
def pay_invoice(
    invoice_id: str,
    background: BackgroundTasks,
    data: Optional[InvoicePayIn] = None,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    events: LedgerNotifier = Depends(get_notifier),
):
    result = InvoiceService(db, user_id).pay(invoice_id, data or InvoicePayIn())
    background.add_task(events.ledger_event, "invoice.paid", result)
    return result


# planning


@app.post("/planning", response_model=PlanningOut, status_code=201)
def create_planning(
    data: PlanningIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return PlanningService(db, user_id).create(data)


@app.get("/planning", response_model=list[PlanningOut])
def list_planning(
    request: Request,
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    year_param = request.query_params.get("year")
    try:
        year = int(year_param) if year_param else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid year") from exc
    return PlanningService(db, user_id).list_all(account.id, year=year)


@app.get("/planning/month/{year}/{month}")
def planning_by_month(
    year: int,
    month: int,
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    result = PlanningService(db, user_id).get_by_month(account.id, year, month)
    result["planning"] = PlanningOut.model_validate(result["planning"])
    return result


@app.get("/planning/{planning_id}", response_model=PlanningOut)
def read_planning(
    planning_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return PlanningService(db, user_id).get(planning_id)


@app.get("/planning/{planning_id}/progress")
def planning_progress(
    planning_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return PlanningService(db, user_id).progress(planning_id)


@app.patch("/planning/{planning_id}", response_model=PlanningOut)
def update_planning(
    planning_id: str,
    data: PlanningUpdateIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return PlanningService(db, user_id).update(planning_id, data)


@app.delete("/planning/{planning_id}", status_code=204)
def delete_planning(
    planning_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    PlanningService(db, user_id).delete(planning_id)
    return Response(status_code=204)


# holdings and moviments


@app.post("/holdings", response_model=HoldingOut, status_code=201)
def create_holding(
    data: HoldingIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return HoldingService(db, user_id).create(data)


@app.get("/holdings", response_model=list[HoldingOut])
def list_holdings(
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return HoldingService(db, user_id).list_all(account.id)


@app.post("/moviment", response_model=MovimentOut, status_code=201)
def create_moviment(
    data: MovimentIn,
    background: BackgroundTasks,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
    events: LedgerNotifier = Depends(get_notifier),
):
    moviment = MovimentService(db, user_id).create(data)
    background.add_task(
        events.ledger_event,
        "moviment.created",
        MovimentOut.model_validate(moviment).model_dump(mode="json"),
    )
    return moviment


@app.get("/moviment", response_model=list[MovimentOut])
def list_moviments(
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return MovimentService(db, user_id).list_all(account.id)


@app.delete("/moviment/{moviment_id}", status_code=204)
def delete_moviment(
    moviment_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    MovimentService(db, user_id).delete(moviment_id)
    return Response(status_code=204)


# objectives


@app.post("/objectives", response_model=ObjectiveOut, status_code=201)
def create_objective(
    data: ObjectiveIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return ObjectiveService(db, user_id).create(data)


@app.get("/objectives", response_model=list[ObjectiveOut])
def list_objectives(
    account: Account = Depends(current_account),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return ObjectiveService(db, user_id).list_all(account.id)


@app.get("/objectives/{objective_id}/progress")
def objective_progress(
    objective_id: str,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return ObjectiveService(db, user_id).progress(objective_id)


# assistant


def get_assistant(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
) -> AssistantService:
    return AssistantService(db, user_id)


@app.post("/assistant/chat", response_model=ChatOut)
def assistant_chat(data: ChatIn, assistant: AssistantService = Depends(get_assistant)):
    return assistant.chat(data.message)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
