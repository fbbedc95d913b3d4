# app/main.py
import io
import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import AsyncGenerator, List, Optional

from fastapi import FastAPI, Form, Depends, File, HTTPException, Query, UploadFile
from sqlmodel import SQLModel, Session, select, create_engine
from sqlalchemy.exc import IntegrityError

from app.config import DB_URL, LOG_LEVEL
from app.herd import (
    BreedingStatusRecord,
    WorklistFilter,
    expected_delivery,
    filter_summaries,
    priority_group,
    sort_cow_summaries,
    summarize_ai_records,
)
from app.models import (
    AIRecord,
    Cow,
    MilkCollection,
    MilkRateSetting,
    PDResult,
    Species,
)
from app.rates import (
    InvalidRateQuery,
    PriceQuote,
    PriceUnresolved,
    detect_species,
    list_matrix,
    parse_species,
    resolve_price,
)
from app.ratesheet import RateSheetError, import_rate_workbook

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# DB & app
# ---------------------------------------------------------------------

# create engine; when sqlite, pass check_same_thread=False for FastAPI multi-threaded use
if DB_URL.startswith("sqlite"):
    engine = create_engine(DB_URL, echo=False, connect_args={"check_same_thread": False})
else:
    engine = create_engine(DB_URL, echo=False)


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)


def init_db() -> None:
    """Create tables if missing."""
    create_db_and_tables()
    logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))


def get_session():
    with Session(engine) as session:
        yield session


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    init_db()
    yield


app = FastAPI(title="Dairy ERP", lifespan=lifespan)


# ---------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------


def form_bool(value: Optional[str]) -> bool:
    """
    Convert common form values to bool:
    - checkbox sends "on" when checked
    - may receive "yes"/"true"/"1"
    """
    if value is None:
        return False
    v = str(value).lower()
    return v in ("on", "yes", "true", "1")


def quote_payload(quote: PriceQuote) -> dict:
    return {
        "rate": quote.rate,
        "source": quote.source.value,
        "effective_from": quote.effective_from,
        "lookup_failed": quote.lookup_failed,
    }


def get_or_404(session: Session, model, row_id: int, what: str):
    row = session.get(model, row_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return row


@app.get("/health")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------


@app.get("/rates/resolve")
def rates_resolve(
    species: str,
    fat: Decimal,
    snf: Decimal,
    date: Optional[str] = None,
    session: Session = Depends(get_session),
):
    try:
        quote = resolve_price(session, species, fat, snf, date)
    except InvalidRateQuery as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PriceUnresolved as e:
        raise HTTPException(status_code=404, detail=str(e))
    return quote_payload(quote)


@app.get("/rates/matrix")
def rates_matrix(
    species: str,
    effective_from: Optional[date] = None,
    session: Session = Depends(get_session),
):
    try:
        return list_matrix(session, species, effective_from)
    except InvalidRateQuery as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.post("/rates/matrix/upload")
def rates_matrix_upload(
    file: UploadFile = File(...),
    effective_from: date = Form(...),
    session: Session = Depends(get_session),
):
    if not (file.filename or "").lower().endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="File must be an Excel (.xlsx) file")

    logger.info("Processing rate workbook %s effective %s", file.filename, effective_from)
    try:
        results = import_rate_workbook(session, io.BytesIO(file.file.read()), effective_from)
    except RateSheetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=400, detail="Rate matrix contains conflicting cells")
    return {"success": True, "results": results}


@app.get("/rates/flat")
def rates_flat_list(session: Session = Depends(get_session)):
    stmt = select(MilkRateSetting).order_by(MilkRateSetting.created_at.desc(), MilkRateSetting.id.desc())
    return session.exec(stmt).all()


@app.post("/rates/flat")
def rates_flat_create(
    rate_per_liter: Decimal = Form(...),
    effective_from: Optional[date] = Form(None),
    is_active: Optional[str] = Form("on"),
    session: Session = Depends(get_session),
):
    if rate_per_liter <= 0:
        raise HTTPException(status_code=422, detail="rate_per_liter must be positive")
    setting = MilkRateSetting(
        rate_per_liter=rate_per_liter,
        effective_from=effective_from or date.today(),
        is_active=form_bool(is_active),
    )
    session.add(setting)
    session.commit()
    session.refresh(setting)
    return setting


# ---------------------------------------------------------------------
# Milk collection
# ---------------------------------------------------------------------


@app.post("/milk-collections")
def milk_collection_create(
    collection_date: date = Form(...),
    quantity_liters: Decimal = Form(...),
    fat: Decimal = Form(...),
    snf: Decimal = Form(...),
    species: Optional[str] = Form(None),
    session: Session = Depends(get_session),
):
    if quantity_liters <= 0:
        raise HTTPException(status_code=422, detail="quantity_liters must be positive")
    try:
        milk_species = parse_species(species) if species else detect_species(fat, snf)
        quote = resolve_price(session, milk_species, fat, snf, collection_date)
    except InvalidRateQuery as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PriceUnresolved as e:
        raise HTTPException(status_code=422, detail=str(e))

    total = (quantity_liters * quote.rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    collection = MilkCollection(
        collection_date=collection_date,
        species=milk_species,
        quantity_liters=quantity_liters,
        fat=fat,
        snf=snf,
        rate_per_liter=quote.rate,
        rate_source=quote.source,
        total_amount=total,
    )
    session.add(collection)
    session.commit()
    session.refresh(collection)
    return collection


@app.get("/milk-collections")
def milk_collection_list(
    day: Optional[date] = None,
    session: Session = Depends(get_session),
):
    stmt = select(MilkCollection)
    if day:
        stmt = stmt.where(MilkCollection.collection_date == day)
    return session.exec(stmt.order_by(MilkCollection.collection_date.desc(), MilkCollection.id)).all()


# ---------------------------------------------------------------------
# Cows / AI tracking
# ---------------------------------------------------------------------


@app.get("/cows")
def cows_list(session: Session = Depends(get_session)):
    return session.exec(select(Cow).order_by(Cow.cow_number)).all()


@app.post("/cows")
def cows_create(
    cow_number: int = Form(...),
    name: Optional[str] = Form(None),
    species: Species = Form(Species.cow),
    session: Session = Depends(get_session),
):
    cow = Cow(cow_number=cow_number, name=name or None, species=species)
    session.add(cow)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=400, detail="Cow number already exists")
    session.refresh(cow)
    return cow


@app.post("/cows/{cow_id}/ai")
def ai_record_create(
    cow_id: int,
    ai_date: date = Form(...),
    service_number: Optional[int] = Form(None),
    notes: Optional[str] = Form(None),
    session: Session = Depends(get_session),
):
    cow = get_or_404(session, Cow, cow_id, "Cow")

    if service_number is None:
        previous = session.exec(select(AIRecord).where(AIRecord.cow_id == cow_id)).all()
        service_number = len(previous) + 1

    record = AIRecord(
        cow_id=cow_id,
        ai_date=ai_date,
        service_number=service_number,
        expected_delivery_date=expected_delivery(ai_date, cow.species),
        notes=notes,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


@app.post("/ai/{record_id}/pd")
def ai_record_pd(
    record_id: int,
    pd_result: PDResult = Form(...),
    pd_date: date = Form(...),
    session: Session = Depends(get_session),
):
    record = get_or_404(session, AIRecord, record_id, "AI record")

    record.pd_done = True
    record.pd_result = pd_result
    record.pd_date = pd_date
    if pd_result == PDResult.negative:
        record.ai_status = "failed"
        record.expected_delivery_date = None
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


@app.post("/ai/{record_id}/delivery")
def ai_record_delivery(
    record_id: int,
    delivery_date: date = Form(...),
    session: Session = Depends(get_session),
):
    record = get_or_404(session, AIRecord, record_id, "AI record")

    record.actual_delivery_date = delivery_date
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


# ---------------------------------------------------------------------
# Herd worklist
# ---------------------------------------------------------------------


@app.get("/herd/worklist")
def herd_worklist(
    filter: WorklistFilter = Query(WorklistFilter.all),
    include_delivered: bool = True,
    session: Session = Depends(get_session),
):
    today = date.today()
    rows = session.exec(
        select(AIRecord, Cow).where(AIRecord.cow_id == Cow.id).order_by(AIRecord.id)
    ).all()

    summaries = filter_summaries(summarize_ai_records(rows), filter, include_delivered, today)
    items: List[dict] = []
    for summary in sort_cow_summaries(summaries, today):
        record = BreedingStatusRecord.from_summary(summary)
        items.append(
            {
                "cow_id": summary.cow_id,
                "cow_number": summary.cow_number,
                "status": summary.status,
                "priority_group": priority_group(record, today),
                "latest_ai_date": summary.latest_ai_date,
                "service_number": summary.service_number,
                "expected_delivery_date": summary.expected_delivery_date,
                "pd_due_date": record.pd_due_date,
                "pd_done": summary.pd_done,
                "delivered_date": summary.delivered_date,
                "ai_record_id": summary.ai_record_id,
            }
        )
    return items
