# app/rates.py
"""
Milk price resolution.

A price per liter comes from the fat x SNF rate matrix when an exact cell
exists for the reading, otherwise from the current flat rate setting.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.config import COW_MAX_FAT, COW_MAX_SNF
from app.models import MilkRateSetting, RateMatrixEntry, RateSource, Species

logger = logging.getLogger(__name__)


class InvalidRateQuery(ValueError):
    """Species, fat, snf or date of a rate query is unusable."""


class PriceUnresolved(Exception):
    """Neither the rate matrix nor an active flat rate could price the milk."""


@dataclass(frozen=True)
class RateResult:
    rate: Decimal
    effective_from: date


@dataclass(frozen=True)
class RateLookup:
    result: Optional[RateResult] = None
    failed: bool = False

    @property
    def found(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class PriceQuote:
    rate: Decimal
    source: RateSource
    effective_from: Optional[date]
    lookup_failed: bool = False


# ---------------------------------------------------------------------
# Input checks
# ---------------------------------------------------------------------


def parse_species(value: Union[str, Species]) -> Species:
    if isinstance(value, Species):
        return value
    try:
        return Species(str(value).strip().lower())
    except ValueError:
        raise InvalidRateQuery(f"Unsupported species: {value!r}")


def _positive(value, name: str) -> Decimal:
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidRateQuery(f"{name} must be a number, got {value!r}")
    if not number.is_finite() or number <= 0:
        raise InvalidRateQuery(f"{name} must be positive, got {value!r}")
    return number


def _as_of(value: Union[None, str, date]) -> date:
    if value is None:
        return date.today()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidRateQuery(f"date must be an ISO date, got {value!r}")


# ---------------------------------------------------------------------
# Rate matrix
# ---------------------------------------------------------------------


def resolve_rate(
    session: Session,
    species: Union[str, Species],
    fat,
    snf,
    on: Union[None, str, date] = None,
) -> RateLookup:
    """
    Exact (species, fat, snf) cell lookup among entries effective on `on`
    (defaults to today), newest effective_from wins.

    Raises InvalidRateQuery for bad input. A database error is logged and
    reported as a failed lookup so the caller can fall back.
    """
    species = parse_species(species)
    fat = _positive(fat, "fat")
    snf = _positive(snf, "snf")
    on = _as_of(on)

    stmt = (
        select(RateMatrixEntry)
        .where(RateMatrixEntry.species == species)
        .where(RateMatrixEntry.fat == fat)
        .where(RateMatrixEntry.snf == snf)
        .where(RateMatrixEntry.effective_from <= on)
        .order_by(RateMatrixEntry.effective_from.desc())
    )
    try:
        entry = session.exec(stmt).first()
    except SQLAlchemyError:
        logger.warning(
            "Rate matrix lookup failed for %s fat=%s snf=%s on %s",
            species.value, fat, snf, on,
            exc_info=True,
        )
        session.rollback()
        return RateLookup(failed=True)

    if entry is None:
        logger.debug("No rate matrix cell for %s fat=%s snf=%s on %s", species.value, fat, snf, on)
        return RateLookup()
    return RateLookup(result=RateResult(rate=entry.rate, effective_from=entry.effective_from))


def list_matrix(
    session: Session,
    species: Union[str, Species],
    effective_from: Optional[date] = None,
) -> List[RateMatrixEntry]:
    species = parse_species(species)
    stmt = select(RateMatrixEntry).where(RateMatrixEntry.species == species)
    if effective_from:
        stmt = stmt.where(RateMatrixEntry.effective_from == effective_from)
    stmt = stmt.order_by(
        RateMatrixEntry.effective_from.desc(),
        RateMatrixEntry.fat,
        RateMatrixEntry.snf,
    )
    return list(session.exec(stmt).all())


# ---------------------------------------------------------------------
# Flat rate fallback
# ---------------------------------------------------------------------


def current_flat_setting(settings: Iterable[MilkRateSetting]) -> Optional[MilkRateSetting]:
    """Most recently created active setting, or None."""
    active = [s for s in settings if s.is_active]
    if not active:
        return None
    active.sort(key=lambda s: (s.created_at, s.id or 0), reverse=True)
    return active[0]


def flat_rate_fallback(settings: Iterable[MilkRateSetting]) -> Decimal:
    # 0 when nothing is active; resolve_price refuses to price with it
    setting = current_flat_setting(settings)
    return setting.rate_per_liter if setting else Decimal("0")


def active_flat_settings(session: Session) -> List[MilkRateSetting]:
    stmt = (
        select(MilkRateSetting)
        .where(MilkRateSetting.is_active == True)  # noqa: E712
        .order_by(MilkRateSetting.created_at.desc(), MilkRateSetting.id.desc())
    )
    return list(session.exec(stmt).all())


def resolve_price(
    session: Session,
    species: Union[str, Species],
    fat,
    snf,
    on: Union[None, str, date] = None,
) -> PriceQuote:
    lookup = resolve_rate(session, species, fat, snf, on)
    if lookup.found:
        return PriceQuote(
            rate=lookup.result.rate,
            source=RateSource.matrix,
            effective_from=lookup.result.effective_from,
        )

    setting = current_flat_setting(active_flat_settings(session))
    if setting is None:
        raise PriceUnresolved(
            f"No rate matrix cell and no active flat rate for {species} fat={fat} snf={snf}"
        )
    if lookup.failed:
        logger.info("Priced %s fat=%s snf=%s with flat rate after lookup failure", species, fat, snf)
    return PriceQuote(
        rate=setting.rate_per_liter,
        source=RateSource.flat,
        effective_from=setting.effective_from,
        lookup_failed=lookup.failed,
    )


# ---------------------------------------------------------------------
# Species detection
# ---------------------------------------------------------------------


def detect_species(fat, snf, max_fat: Decimal = COW_MAX_FAT, max_snf: Decimal = COW_MAX_SNF) -> Species:
    fat = _positive(fat, "fat")
    snf = _positive(snf, "snf")
    if fat > max_fat or snf > max_snf:
        return Species.buffalo
    return Species.cow
