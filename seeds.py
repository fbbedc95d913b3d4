# seeds.py
"""
Seed script for the Dairy ERP.
Creates a flat milk rate, a small cow/buffalo rate matrix and a few cows with
AI records so the herd worklist has something to show.
"""

from datetime import date, timedelta
from decimal import Decimal

from sqlmodel import Session, select

from app.herd import expected_delivery
from app.main import engine, init_db
from app.models import AIRecord, Cow, MilkRateSetting, PDResult, RateMatrixEntry, Species
from app.ratesheet import upsert_rate_entries

FLAT_RATE = Decimal("40.00")
MATRIX_START = date(2024, 1, 1)


def matrix_rows():
    # cow: fat 3.5-4.5 x snf 8.0-8.5, buffalo: fat 6.0-7.0 x snf 9.0-9.5
    grids = {
        Species.cow: (["3.5", "4.0", "4.5"], ["8.0", "8.5"], Decimal("38.00")),
        Species.buffalo: (["6.0", "6.5", "7.0"], ["9.0", "9.5"], Decimal("55.00")),
    }
    for species, (fats, snfs, base) in grids.items():
        for i, fat in enumerate(fats):
            for j, snf in enumerate(snfs):
                yield RateMatrixEntry(
                    species=species,
                    fat=Decimal(fat),
                    snf=Decimal(snf),
                    rate=base + Decimal("2.50") * i + Decimal("1.00") * j,
                    effective_from=MATRIX_START,
                )


def run():
    print("Running seeds.py: creating demo rates and herd...")

    init_db()
    today = date.today()

    with Session(engine) as session:
        if session.exec(select(MilkRateSetting)).first():
            print("Flat rate already present.")
        else:
            session.add(MilkRateSetting(rate_per_liter=FLAT_RATE, effective_from=MATRIX_START))
            session.commit()
            print(f"Flat rate created → {FLAT_RATE}/L")

        count = upsert_rate_entries(session, list(matrix_rows()))
        print(f"Rate matrix upserted → {count} cells")

        if session.exec(select(Cow)).first():
            print("Herd already present.")
            return

        # (cow number, days since AI, PD result, days since delivery)
        herd = [
            (101, 250, PDResult.positive, None),
            (102, 120, PDResult.positive, None),
            (103, 50, None, None),
            (104, 80, PDResult.negative, None),
            (105, 295, PDResult.positive, 10),
        ]
        for number, ai_days, pd_result, delivered_days in herd:
            cow = Cow(cow_number=number, name=f"Cow {number}")
            session.add(cow)
            session.commit()
            session.refresh(cow)

            ai_date = today - timedelta(days=ai_days)
            record = AIRecord(
                cow_id=cow.id,
                ai_date=ai_date,
                service_number=1,
                expected_delivery_date=expected_delivery(ai_date, cow.species),
            )
            if pd_result:
                record.pd_done = True
                record.pd_result = pd_result
                record.pd_date = ai_date + timedelta(days=60)
                if pd_result == PDResult.negative:
                    record.ai_status = "failed"
                    record.expected_delivery_date = None
            if delivered_days is not None:
                record.actual_delivery_date = today - timedelta(days=delivered_days)
            session.add(record)
        session.commit()

        print(f"Herd created → {len(herd)} cows")


if __name__ == "__main__":
    run()
