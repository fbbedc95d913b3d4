from datetime import date
from decimal import Decimal

import openpyxl
from sqlmodel import select

import seeds
from app.herd import sort_cow_summaries, summarize_ai_records
from app.models import AIRecord, Cow, MilkRateSetting, RateMatrixEntry
from app.rates import resolve_price
from scripts import upload_rate_matrix


def test_seeds_are_idempotent(engine, session, monkeypatch):
    monkeypatch.setattr(seeds, "engine", engine)
    monkeypatch.setattr(seeds, "init_db", lambda: None)

    seeds.run()
    seeds.run()

    assert len(session.exec(select(MilkRateSetting)).all()) == 1
    assert len(session.exec(select(RateMatrixEntry)).all()) == 12
    assert len(session.exec(select(Cow)).all()) == 5

    rows = session.exec(select(AIRecord, Cow).where(AIRecord.cow_id == Cow.id)).all()
    ordered = sort_cow_summaries(summarize_ai_records(rows))
    assert [s.cow_number for s in ordered] == [101, 102, 104, 103, 105]

    quote = resolve_price(session, "cow", "4.5", "8.5", date.today())
    assert quote.rate == Decimal("44")


def test_upload_script(engine, session, monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(upload_rate_matrix, "engine", engine)
    monkeypatch.setattr(upload_rate_matrix, "init_db", lambda: None)

    wb = openpyxl.Workbook()
    for title, snf, fat, rate in (("Cow", 8.5, 4.0, 45), ("Buffalo", 9.5, 6.5, 60)):
        ws = wb.create_sheet(title)
        ws.append([title])
        ws.append([None, snf])
        ws.append([fat, rate])
    path = tmp_path / "rates.xlsx"
    wb.save(path)

    upload_rate_matrix.upload(str(path), date(2024, 1, 1))

    assert "cow: 1 fat x 1 SNF, 1 cells upserted" in capsys.readouterr().out
    assert len(session.exec(select(RateMatrixEntry)).all()) == 2
