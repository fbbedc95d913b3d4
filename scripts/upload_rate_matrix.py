# scripts/upload_rate_matrix.py
"""
Import a rate matrix workbook (Cow and Buffalo tabs) from the command line.

    python -m scripts.upload_rate_matrix rates.xlsx --effective-from 2024-04-01
"""
import argparse
from datetime import date

from sqlmodel import Session

from app.main import engine, init_db
from app.ratesheet import RateSheetError, import_rate_workbook


def upload(path: str, effective_from: date) -> None:
    init_db()
    with open(path, "rb") as fh, Session(engine) as session:
        results = import_rate_workbook(session, fh, effective_from)
    for r in results:
        print(
            f"{r['species']}: {r['fat_count']} fat x {r['snf_count']} SNF, "
            f"{r['rows_upserted']} cells upserted"
        )


if __name__ == "__main__":
    p = argparse.ArgumentParser()
    p.add_argument("path", help="Rate matrix .xlsx file")
    p.add_argument("--effective-from", "-e", type=date.fromisoformat, default=date.today(), help="ISO date the rates apply from")
    args = p.parse_args()
    try:
        upload(args.path, args.effective_from)
    except RateSheetError as e:
        raise SystemExit(f"[!] {e}")
