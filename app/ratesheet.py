# app/ratesheet.py
"""
Rate matrix workbook import.

Layout of every species tab ("Cow", "Buffalo"):
  - row 2, from column B: SNF axis
  - column A, from row 3: Fat axis
  - B3 onwards: rate per liter for (fat, snf)

Axis scanning stops at the first empty or non-numeric cell; non-numeric grid
cells are skipped.
"""
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, BinaryIO, Dict, List, Sequence

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from sqlmodel import Session, select

from app.models import RateMatrixEntry, Species

logger = logging.getLogger(__name__)

REQUIRED_TABS = {"Buffalo": Species.buffalo, "Cow": Species.cow}

SNF_ROW = 1  # 0-based: row 2
FAT_COL = 0  # column A
FIRST_FAT_ROW = 2
FIRST_SNF_COL = 1


class RateSheetError(ValueError):
    pass


@dataclass
class RateGrid:
    species: Species
    fat_values: List[Decimal] = field(default_factory=list)
    snf_values: List[Decimal] = field(default_factory=list)
    entries: List[RateMatrixEntry] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _decimal(value: Any) -> Decimal:
    # str() keeps 8.5 as 8.5 instead of the binary float expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _cell(rows: Sequence[Sequence[Any]], r: int, c: int) -> Any:
    if r >= len(rows):
        return None
    row = rows[r]
    if row is None or c >= len(row):
        return None
    return row[c]


def parse_rate_grid(rows: Sequence[Sequence[Any]], species: Species, effective_from: date) -> RateGrid:
    """Turn one tab's cell values (row tuples) into matrix entries."""
    grid = RateGrid(species=species)

    col = FIRST_SNF_COL
    while _is_number(_cell(rows, SNF_ROW, col)):
        grid.snf_values.append(_decimal(_cell(rows, SNF_ROW, col)))
        col += 1
    if not grid.snf_values:
        raise RateSheetError(f"No numeric SNF headers found in {species.value} tab")

    row = FIRST_FAT_ROW
    while _is_number(_cell(rows, row, FAT_COL)):
        grid.fat_values.append(_decimal(_cell(rows, row, FAT_COL)))
        row += 1
    if not grid.fat_values:
        raise RateSheetError(f"No numeric Fat headers found in {species.value} tab")

    for fat_idx, fat in enumerate(grid.fat_values):
        for snf_idx, snf in enumerate(grid.snf_values):
            value = _cell(rows, FIRST_FAT_ROW + fat_idx, FIRST_SNF_COL + snf_idx)
            if not _is_number(value):
                continue
            grid.entries.append(
                RateMatrixEntry(
                    species=species,
                    fat=fat,
                    snf=snf,
                    rate=_decimal(value),
                    effective_from=effective_from,
                )
            )

    if not grid.entries:
        raise RateSheetError(f"No valid rate data found in {species.value} tab")
    return grid


def read_rate_workbook(source: BinaryIO, effective_from: date) -> List[RateGrid]:
    try:
        wb = openpyxl.load_workbook(source, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
        raise RateSheetError(f"Not a readable .xlsx workbook: {e}") from e

    try:
        grids = []
        for tab, species in REQUIRED_TABS.items():
            if tab not in wb.sheetnames:
                raise RateSheetError(f"Missing required tab: {tab}")
            rows = list(wb[tab].iter_rows(values_only=True))
            grid = parse_rate_grid(rows, species, effective_from)
            logger.info(
                "%s: found %d fat values, %d SNF values",
                tab, len(grid.fat_values), len(grid.snf_values),
            )
            grids.append(grid)
        return grids
    finally:
        wb.close()


def upsert_rate_entries(session: Session, entries: List[RateMatrixEntry], commit: bool = True) -> int:
    """Insert or overwrite cells keyed by (species, fat, snf, effective_from)."""
    count = 0
    for entry in entries:
        existing = session.exec(
            select(RateMatrixEntry)
            .where(RateMatrixEntry.species == entry.species)
            .where(RateMatrixEntry.fat == entry.fat)
            .where(RateMatrixEntry.snf == entry.snf)
            .where(RateMatrixEntry.effective_from == entry.effective_from)
        ).first()
        if existing:
            existing.rate = entry.rate
            session.add(existing)
        else:
            session.add(entry)
        count += 1
    if commit:
        session.commit()
    return count


def import_rate_workbook(session: Session, source: BinaryIO, effective_from: date) -> List[Dict[str, Any]]:
    """
    Parse every species tab, then upsert all of them in one transaction.
    Nothing is written if any tab is bad or any upsert fails.
    """
    grids = read_rate_workbook(source, effective_from)
    results = []
    for grid in grids:
        upserted = upsert_rate_entries(session, grid.entries, commit=False)
        logger.info("%s: upserted %d rate entries", grid.species.value, upserted)
        results.append(
            {
                "species": grid.species.value,
                "snf_count": len(grid.snf_values),
                "fat_count": len(grid.fat_values),
                "rows_upserted": upserted,
            }
        )
    session.commit()
    return results
