from __future__ import annotations

import logging
from decimal import Decimal

from promptslip.extract import slip_parser
from promptslip.extract.emvco import PROMPTPAY_AID
from promptslip.extract.slip_parser import (
    STRATEGIES,
    SlipData,
    SlipFields,
    Strategy,
    extract_emvco,
    extract_slip_data,
)
from promptslip.verify.reconcile import Outcome, reconcile


def tlv(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def _slip_payload(amount: str = "10000", additional: str | None = None) -> str:
    merchant = tlv("00", PROMPTPAY_AID) + tlv("01", "0066812345678")
    if additional is None:
        additional = tlv("05", "REF123") + tlv("07", "15/03/2568 10:30") + tlv("08", "TXN999")
    return (
        tlv("00", "01")
        + tlv("01", "12")
        + tlv("29", merchant)
        + tlv("53", "764")
        + tlv("54", amount)
        + tlv("58", "TH")
        + tlv("62", additional)
    )


def test_emvco_slip_is_fully_extracted() -> None:
    slip = extract_slip_data(_slip_payload())

    assert slip.amount == Decimal("100.00")
    assert slip.date_time == "15/03/2025 10:30"
    assert slip.reference == "REF123"
    assert slip.transaction_id == "TXN999"
    # first non-numeric merchant sub-value
    assert slip.account_name == PROMPTPAY_AID


def test_emvco_literal_decimal_amount() -> None:
    assert extract_slip_data(_slip_payload(amount="100.50")).amount == Decimal("100.50")


def test_emvco_date_falls_back_to_current_bangkok_time(monkeypatch) -> None:
    monkeypatch.setattr(slip_parser, "thai_locale_now", lambda: "1/1/2568 0:00:00")
    found = extract_emvco(tlv("00", "01") + tlv("54", "5000"))
    assert found is not None
    assert found.amount == Decimal("50")
    assert found.date_time == "1/1/2568 0:00:00"


def test_emvco_strategy_ignores_non_emvco_payloads() -> None:
    emvco_only = [s for s in STRATEGIES if s.name == "emvco"]
    slip = extract_slip_data("x5405100.00", emvco_only)
    assert slip.amount == 0


def test_emvco_without_amount_reports_zero() -> None:
    slip = extract_slip_data(tlv("00", "01") + tlv("58", "TH"))
    assert not slip.has_amount
    assert slip.amount == 0


def test_json_payload() -> None:
    payload = (
        '{"amount": "250.00", "date": "2025-01-01", "time": "12:00",'
        ' "account": "Shop", "transactionId": "T1", "ref": "R"}'
    )
    slip = extract_slip_data(payload)
    assert slip == SlipData(
        amount=Decimal("250.00"),
        date_time="2025-01-01 12:00",
        account_name="Shop",
        transaction_id="T1",
        reference="R",
    )


def test_json_zero_amount_is_treated_as_missing() -> None:
    assert extract_slip_data('{"amount": 0}').amount == 0


def test_english_text_slip() -> None:
    payload = "Transfer slip\nAmount: 1500.00\nDate: 15/03/2568 14:30\nReceiver: Somchai Shop\nRef: ABC123"
    slip = extract_slip_data(payload)

    assert slip.amount == Decimal("1500.00")
    assert slip.date_time == "15/03/2025 14:30"
    assert slip.account_name == "Somchai Shop"
    assert slip.transaction_id == "ABC123"
    assert slip.reference is None


def test_thai_text_slip_joins_separate_time_line() -> None:
    payload = "จำนวน: 250.00\nวันที่: 01/01/2568\nเวลา 09:15\nผู้รับ: ร้านค้า"
    slip = extract_slip_data(payload)

    assert slip.amount == Decimal("250.00")
    assert slip.date_time == "01/01/2025 09:15"
    assert slip.account_name == "ร้านค้า"


def test_url_parameters_override_earlier_values() -> None:
    payload = "https://promptpay.io/pay?amount=99.50&date=2025-02-01&time=10:00&account=Shop&ref=R1"
    slip = extract_slip_data(payload)

    assert slip.amount == Decimal("99.50")
    assert slip.date_time == "2025-02-01 10:00"
    assert slip.account_name == "Shop"
    assert slip.reference == "R1"


def test_unparseable_url_keeps_emvco_values() -> None:
    payload = _slip_payload(additional=tlv("05", "promptpay-ref") + tlv("08", "TXN1"))
    slip = extract_slip_data(payload)

    assert slip.amount == Decimal("100.00")
    assert slip.reference == "promptpay-ref"
    assert slip.transaction_id == "TXN1"


def test_unrecognized_payload_yields_empty_slip(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="promptslip.extract.slip_parser")
    assert extract_slip_data("hello world") == SlipData()
    assert extract_slip_data("") == SlipData()
    assert "Failed to extract amount" in caplog.text


def test_failing_strategy_is_skipped() -> None:
    def boom(payload, current):
        raise RuntimeError("broken")

    def amount_only(payload, current):
        return SlipFields(amount=Decimal("7"))

    strategies = [
        Strategy("boom", lambda p, c: True, boom),
        Strategy("amount", lambda p, c: True, amount_only),
    ]
    assert extract_slip_data("anything", strategies).amount == Decimal("7")


def test_fill_from_keeps_existing_values() -> None:
    first = SlipFields(amount=Decimal("1"), account_name="A")
    merged = first.fill_from(SlipFields(amount=Decimal("2"), account_name="B", reference="R"))
    assert merged == SlipFields(amount=Decimal("1"), account_name="A", reference="R")

    overridden = first.override_with(SlipFields(amount=Decimal("2")))
    assert overridden == SlipFields(amount=Decimal("2"), account_name="A")


def test_slip_data_response_shape() -> None:
    slip = SlipData(amount=Decimal("100.01"), date_time="2025-01-01", account_name="Shop", reference="R")
    assert slip.to_dict() == {
        "amount": 100.01,
        "dateTime": "2025-01-01",
        "accountName": "Shop",
        "transactionId": "",
        "reference": "R",
    }


def test_non_finite_json_amount_is_not_extracted() -> None:
    for payload in ('{"amount": NaN}', '{"amount": Infinity}', '{"amount": -Infinity}'):
        slip = extract_slip_data(payload)
        assert slip.amount == 0
        assert reconcile(slip, Decimal("250")).outcome is Outcome.PARSE_FAILED


def test_out_of_range_tag_54_is_not_extracted() -> None:
    slip = extract_slip_data(tlv("00", "01") + tlv("54", "1E9999999"))
    assert slip.amount == 0
    assert reconcile(slip, Decimal("250")).outcome is Outcome.PARSE_FAILED
