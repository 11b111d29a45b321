import logging
import random

import pytest

from bookkeeping.errors import LookupUnavailable
from bookkeeping.ingest import load_bank_csv
from bookkeeping.matcher import (
    TIER3_MAX_LENGTH_DIFF,
    check_duplicates,
    find_duplicates,
    match_one,
)
from bookkeeping.models import (
    Direction,
    ImportCandidate,
    LedgerRow,
    MatchTier,
    SourceKind,
    TransactionRecord,
)
from bookkeeping.normalizers import BANK_CSV, normalize_candidate


def _stripe(pid: str, amount: int = 399900, currency: str = "nok") -> TransactionRecord:
    return TransactionRecord(SourceKind.STRIPE, pid, None, amount, currency)


def _bank(archive: str | None, amount: int = 158250, currency: str = "nok", ref=None):
    return TransactionRecord(SourceKind.BANK, archive, ref, amount, currency)


def _row(
    ledger_id: int,
    kind: str,
    *,
    source_reference: str | None = None,
    archive_reference: str | None = None,
    amount: int = 399900,
    currency: str = "nok",
) -> LedgerRow:
    return LedgerRow(
        ledger_id=ledger_id,
        source_kind=kind,
        source_reference=source_reference,
        archive_reference=archive_reference,
        amount=amount,
        currency=currency,
    )


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_processor_payment_already_recorded_matches_on_payment_id():
    existing = [_row(1, "stripe", source_reference="pi_AAA", amount=60000, currency="usd")]
    result = find_duplicates([_stripe("pi_aaa", amount=60000, currency="usd")], existing)

    assert result.matched_ids == frozenset({"pi_aaa"})
    assert len(result.details) == 1
    d = result.details[0]
    assert d.tier is MatchTier.PAYMENT_ID
    assert d.candidate_id == "pi_aaa"
    assert d.matched_ledger_id == "pi_AAA"


def test_bank_row_with_misread_archive_reference_matches_heuristically(caplog):
    existing = [_row(7, "bank", archive_reference="420189451", amount=158250)]
    caplog.set_level(logging.WARNING, logger="bookkeeping")

    result = find_duplicates([_bank("670001")], existing)

    assert result.matched_ids == frozenset({"670001"})
    assert result.details[0].tier is MatchTier.AMOUNT_CURRENCY
    assert result.details[0].matched_ledger_id == "420189451"
    assert any("duplicates:heuristic" in r.getMessage() for r in caplog.records)


def test_new_payment_is_not_a_duplicate():
    existing = [_row(1, "stripe", source_reference="pi_AAA")]
    result = find_duplicates([_stripe("pi_BBB", amount=5000)], existing)
    assert result.matched_ids == frozenset()
    assert result.details == []


# ---------------------------------------------------------------------------
# Tier rules
# ---------------------------------------------------------------------------


def test_higher_tier_wins_even_when_a_lower_tier_row_comes_first():
    existing = [
        _row(1, "stripe", source_reference="pi_other", amount=158250),
        _row(2, "bank", archive_reference="670001", amount=158250),
    ]
    tier, row = match_one(_bank("670001"), existing)
    assert tier is MatchTier.ARCHIVE_REFERENCE
    assert row.ledger_id == 2


def test_bank_csv_row_matches_stored_archive_reference():
    (raw,) = load_bank_csv(
        "Bokført dato;Forklarende tekst;Ut;Inn;Arkivref.;Referanse\n"
        "15.01.2025;KIWI 505 STORO;-1.582,50;;670001;420189451\n"
    )
    cand = normalize_candidate(raw, profile=BANK_CSV)
    existing = [_row(7, "bank", archive_reference="670001", amount=158250)]

    result = find_duplicates([cand], existing)
    assert result.details[0].tier is MatchTier.ARCHIVE_REFERENCE
    assert result.details[0].matched_ledger_id == "670001"


def test_archive_reference_tier_only_compares_bank_rows():
    # Same text, different kinds: only the heuristic tier can apply, and the
    # amounts differ here.
    existing = [_row(1, "stripe", source_reference="670001", amount=1)]
    assert match_one(_bank("670001"), existing) is None


def test_payment_id_tier_ignores_bank_rows():
    existing = [_row(1, "bank", archive_reference="pi_AAA", amount=1)]
    assert match_one(_stripe("pi_AAA"), existing) is None


def test_identifiers_compare_case_and_whitespace_insensitively():
    existing = [
        _row(1, "stripe", source_reference="  PI_AAA "),
        _row(2, "bank", archive_reference=" 670001\t", amount=158250),
    ]
    result = find_duplicates([_stripe("pi_aaa"), _bank("670001 ")], existing)
    assert result.matched_ids == frozenset({"pi_aaa", "670001"})
    assert [d.tier for d in result.details] == [MatchTier.PAYMENT_ID, MatchTier.ARCHIVE_REFERENCE]


def test_heuristic_length_tolerance_boundary():
    stored = "pi_abcdefghij0123456789"
    existing = [_row(1, "stripe", source_reference=stored, amount=100, currency="usd")]

    one_short = "pi_abcdefghij012345678"
    at_limit = stored[: len(stored) - TIER3_MAX_LENGTH_DIFF]
    past_limit = stored[: len(stored) - TIER3_MAX_LENGTH_DIFF - 1]

    assert match_one(_stripe(one_short, 100, "usd"), existing)[0] is MatchTier.AMOUNT_CURRENCY
    assert match_one(_stripe(at_limit, 100, "usd"), existing)[0] is MatchTier.AMOUNT_CURRENCY
    assert match_one(_stripe(past_limit, 100, "usd"), existing) is None


def test_heuristic_requires_equal_amount_and_currency():
    existing = [_row(1, "stripe", source_reference="pi_AAA", amount=100, currency="USD")]
    assert match_one(_stripe("pi_AAB", 100, "usd"), existing)[0] is MatchTier.AMOUNT_CURRENCY
    assert match_one(_stripe("pi_AAB", 101, "usd"), existing) is None
    assert match_one(_stripe("pi_AAB", 100, "eur"), existing) is None


def test_heuristic_applies_across_source_kinds():
    existing = [_row(1, "stripe", source_reference="pi_123456", amount=158250)]
    tier, _row_hit = match_one(_bank("670001"), existing)
    assert tier is MatchTier.AMOUNT_CURRENCY


def test_rows_without_identifier_are_skipped():
    existing = [_row(1, "stripe", source_reference=None)]
    assert match_one(_stripe("pi_AAA"), existing) is None


def test_bank_row_identifier_falls_back_to_source_reference():
    existing = [_row(3, "bank", source_reference="670001-1", amount=158250)]
    result = find_duplicates([_bank("670001-2")], existing)
    assert result.details[0].tier is MatchTier.AMOUNT_CURRENCY
    assert result.details[0].matched_ledger_id == "670001-1"


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def test_empty_inputs():
    assert find_duplicates([], [_row(1, "stripe", source_reference="pi_1")]).matched_ids == set()
    assert find_duplicates([_stripe("pi_1")], []).matched_ids == set()


def test_repeated_calls_and_candidate_order_do_not_change_the_result():
    existing = [
        _row(1, "stripe", source_reference="pi_AAA"),
        _row(2, "bank", archive_reference="420189451", amount=158250),
        _row(3, "bank", archive_reference="670009", amount=9900),
    ]
    candidates = [
        _stripe("pi_AAA"),
        _stripe("pi_ZZZ", amount=1),
        _bank("670001"),
        _bank("670009", amount=9900),
        _bank(None, amount=4200, ref="REF-1"),
    ]
    first = find_duplicates(candidates, existing)
    second = find_duplicates(candidates, existing)
    assert first == second

    shuffled = list(candidates)
    random.Random(7).shuffle(shuffled)
    assert find_duplicates(shuffled, existing).matched_ids == first.matched_ids
    assert first.matched_ids == frozenset({"pi_aaa", "670001", "670009"})


def test_accepts_import_candidates():
    existing = [_row(1, "stripe", source_reference="pi_AAA")]
    cand = ImportCandidate(record=_stripe("pi_AAA"), direction=Direction.INCOME)
    result = find_duplicates([cand], existing)
    assert result.is_duplicate(cand.record)


# ---------------------------------------------------------------------------
# Lookup failure policy
# ---------------------------------------------------------------------------


def _failing_lookup():
    raise RuntimeError("connection refused")


def test_strict_lookup_failure_raises():
    with pytest.raises(LookupUnavailable, match="connection refused"):
        check_duplicates([_stripe("pi_AAA")], _failing_lookup)


def test_strict_lookup_reraises_lookup_unavailable_unchanged():
    err = LookupUnavailable("db down")

    def _lookup():
        raise err

    with pytest.raises(LookupUnavailable) as info:
        check_duplicates([_stripe("pi_AAA")], _lookup, strict=True)
    assert info.value is err


def test_lenient_lookup_failure_reports_unknown(caplog):
    caplog.set_level(logging.WARNING, logger="bookkeeping")
    result = check_duplicates([_stripe("pi_AAA")], _failing_lookup, strict=False)
    assert result.lookup_failed is True
    assert result.matched_ids == frozenset()
    assert any("duplicates:lookup_failed" in r.getMessage() for r in caplog.records)


def test_check_duplicates_uses_lookup_rows():
    rows = [_row(1, "stripe", source_reference="pi_AAA")]
    result = check_duplicates([_stripe("pi_AAA")], lambda: rows)
    assert result.matched_ids == frozenset({"pi_aaa"})
    assert result.lookup_failed is False
