import logging
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.models import MilkRateSetting, RateMatrixEntry, RateSource, Species
from app.rates import (
    InvalidRateQuery,
    PriceUnresolved,
    active_flat_settings,
    current_flat_setting,
    detect_species,
    flat_rate_fallback,
    resolve_price,
    resolve_rate,
)


def add_cell(session, rate, effective_from, species=Species.cow, fat="4.0", snf="8.5"):
    session.add(
        RateMatrixEntry(
            species=species,
            fat=Decimal(fat),
            snf=Decimal(snf),
            rate=Decimal(rate),
            effective_from=effective_from,
        )
    )
    session.commit()


def flat(rate, created_at, is_active=True):
    return MilkRateSetting(
        rate_per_liter=Decimal(rate),
        effective_from=date(2024, 1, 1),
        is_active=is_active,
        created_at=created_at,
    )


class MatrixDownSession:
    """Delegates to a real session but fails every rate matrix query."""

    def __init__(self, session):
        self.session = session
        self.rollbacks = 0

    def exec(self, stmt):
        if "rate_matrix" in str(stmt):
            raise OperationalError(str(stmt), {}, Exception("database is locked"))
        return self.session.exec(stmt)

    def rollback(self):
        self.rollbacks += 1
        self.session.rollback()


def test_exact_cell_is_found(session):
    add_cell(session, "45.00", date(2024, 1, 1))

    lookup = resolve_rate(session, "cow", 4.0, 8.5, "2024-06-01")

    assert lookup.found
    assert not lookup.failed
    assert lookup.result.rate == Decimal("45")
    assert lookup.result.effective_from == date(2024, 1, 1)


def test_off_grid_reading_is_not_interpolated(session):
    add_cell(session, "45.00", date(2024, 1, 1))

    lookup = resolve_rate(session, "cow", 4.1, 8.5, "2024-06-01")

    assert not lookup.found
    assert not lookup.failed


def test_newest_effective_entry_wins(session):
    add_cell(session, "45.00", date(2024, 1, 1))
    add_cell(session, "47.50", date(2024, 5, 1))

    assert resolve_rate(session, "cow", "4.0", "8.5", date(2024, 6, 1)).result.rate == Decimal("47.5")
    assert resolve_rate(session, "cow", "4.0", "8.5", date(2024, 3, 1)).result.rate == Decimal("45")
    assert not resolve_rate(session, "cow", "4.0", "8.5", date(2023, 12, 31)).found


def test_species_are_priced_separately(session):
    add_cell(session, "45.00", date(2024, 1, 1), species=Species.cow)

    assert not resolve_rate(session, "buffalo", "4.0", "8.5", date(2024, 6, 1)).found
    assert resolve_rate(session, "COW", "4.0", "8.5", date(2024, 6, 1)).found


def test_repeated_lookup_is_identical(session):
    add_cell(session, "45.00", date(2024, 1, 1))

    first = resolve_rate(session, "cow", "4.0", "8.5", "2024-06-01")
    second = resolve_rate(session, "cow", "4.0", "8.5", "2024-06-01")

    assert first == second


@pytest.mark.parametrize(
    "species, fat, snf, on",
    [
        ("goat", "4.0", "8.5", None),
        ("cow", "0", "8.5", None),
        ("cow", "4.0", "-1", None),
        ("cow", "abc", "8.5", None),
        ("cow", "NaN", "8.5", None),
        ("cow", "4.0", "8.5", "01/06/2024"),
    ],
)
def test_invalid_queries_fail_loudly(session, species, fat, snf, on):
    with pytest.raises(InvalidRateQuery):
        resolve_rate(session, species, fat, snf, on)


def test_lookup_failure_is_reported_not_raised(session):
    broken = MatrixDownSession(session)

    lookup = resolve_rate(broken, "cow", "4.0", "8.5", "2024-06-01")

    assert lookup.failed
    assert not lookup.found
    assert broken.rollbacks == 1


def test_lookup_failure_is_logged_as_warning(session, caplog):
    with caplog.at_level(logging.WARNING, logger="app.rates"):
        resolve_rate(MatrixDownSession(session), "cow", "4.0", "8.5", "2024-06-01")

    warnings = [r for r in caplog.records if r.name == "app.rates" and r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "lookup failed" in warnings[0].getMessage()
    assert warnings[0].exc_info is not None


def test_date_defaults_to_today(session):
    today = date.today()
    add_cell(session, "45.00", today)
    add_cell(session, "50.00", today + timedelta(days=1))

    lookup = resolve_rate(session, "cow", "4.0", "8.5")

    assert lookup.result.rate == Decimal("45")
    assert lookup.result.effective_from == today


def test_flat_fallback_takes_newest_active_setting():
    settings = [
        flat("38.00", datetime(2024, 1, 1)),
        flat("42.00", datetime(2024, 3, 1), is_active=False),
        flat("40.00", datetime(2024, 2, 1)),
    ]

    assert flat_rate_fallback(settings) == Decimal("40")
    assert current_flat_setting(settings).created_at == datetime(2024, 2, 1)


def test_flat_settings_created_together_prefer_higher_id(session):
    older, newer = flat("38.00", datetime(2024, 2, 1)), flat("40.00", datetime(2024, 2, 1))
    older.id, newer.id = 1, 2
    assert current_flat_setting([newer, older]) is newer
    assert current_flat_setting([older, newer]) is newer

    session.add(flat("38.00", datetime(2024, 2, 1)))
    session.commit()
    session.add(flat("40.00", datetime(2024, 2, 1)))
    session.commit()

    assert [s.rate_per_liter for s in active_flat_settings(session)] == [Decimal("40"), Decimal("38")]
    assert resolve_price(session, "cow", "4.1", "8.5", "2024-06-01").rate == Decimal("40")


def test_flat_fallback_without_active_setting_is_zero():
    assert flat_rate_fallback([]) == Decimal("0")
    assert flat_rate_fallback([flat("42.00", datetime(2024, 3, 1), is_active=False)]) == Decimal("0")


def test_price_comes_from_matrix_when_cell_exists(session):
    add_cell(session, "45.00", date(2024, 1, 1))
    session.add(flat("40.00", datetime(2024, 2, 1)))
    session.commit()

    quote = resolve_price(session, "cow", "4.0", "8.5", "2024-06-01")

    assert quote.source == RateSource.matrix
    assert quote.rate == Decimal("45")


def test_price_falls_back_to_flat_rate(session):
    add_cell(session, "45.00", date(2024, 1, 1))
    session.add(flat("38.00", datetime(2024, 1, 1)))
    session.add(flat("40.00", datetime(2024, 2, 1)))
    session.add(flat("99.00", datetime(2024, 3, 1), is_active=False))
    session.commit()

    quote = resolve_price(session, "cow", "4.1", "8.5", "2024-06-01")

    assert quote.source == RateSource.flat
    assert quote.rate == Decimal("40")
    assert not quote.lookup_failed


def test_price_falls_back_after_lookup_failure(session):
    session.add(flat("40.00", datetime(2024, 2, 1)))
    session.commit()

    quote = resolve_price(MatrixDownSession(session), "cow", "4.0", "8.5", "2024-06-01")

    assert quote.source == RateSource.flat
    assert quote.lookup_failed


def test_price_unresolved_without_active_flat_rate(session):
    session.add(flat("99.00", datetime(2024, 3, 1), is_active=False))
    session.commit()

    with pytest.raises(PriceUnresolved):
        resolve_price(session, "cow", "4.1", "8.5", "2024-06-01")


def test_invalid_query_never_falls_back(session):
    session.add(flat("40.00", datetime(2024, 2, 1)))
    session.commit()

    with pytest.raises(InvalidRateQuery):
        resolve_price(session, "cow", "-4.0", "8.5")


def test_detect_species():
    assert detect_species("4.0", "8.5") == Species.cow
    assert detect_species("5.0", "9.0") == Species.cow
    assert detect_species("6.5", "8.5") == Species.buffalo
    assert detect_species("4.0", "9.5") == Species.buffalo
