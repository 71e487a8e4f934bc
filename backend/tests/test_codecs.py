"""
Tests for wotc_sync/codecs - State submission record codecs.
"""
from datetime import date
from decimal import Decimal

import pytest

from wotc_sync.codecs import (
    CSDC_LAYOUT_V23,
    TEXAS_CSV_HEADERS,
    FieldSpec,
    RecordLayout,
    SubmissionRecord,
    encode_batch,
    encode_record,
    get_codec,
    get_jurisdiction,
    has_target_group,
    resolve_state_abbr,
    split_wage,
    supported_jurisdictions,
)
from wotc_sync.codecs.base import RecordCodec
from wotc_sync.codecs.texas_csv import TexasCsvCodec, clean_field
from wotc_sync.core.exceptions import ConfigurationError, SubmissionValidationError


def make_record(**overrides) -> SubmissionRecord:
    values = dict(
        first_name="Maria",
        last_name="Lopez",
        ssn="123-45-6789",
        employer_ein="12-3456789",
        date_of_birth=date(1990, 4, 15),
        address="12 Peach St",
        city="Atlanta",
        state="Georgia",
        zip_code="30301-1234",
        hire_date=date(2025, 2, 3),
        start_date=date(2025, 2, 10),
        date_gave_info=date(2025, 1, 28),
        hourly_wage=Decimal("11.75"),
        occupation_code="35-2014",
        target_groups=("SNAP",),
        screening_status="eligible",
        employer_name="Peach Foods",
    )
    values.update(overrides)
    return SubmissionRecord(**values)


def field(line: str, name: str) -> str:
    start, end = CSDC_LAYOUT_V23.offsets()[name]
    return line[start:end]


# =============================================================================
# Layouts
# =============================================================================


class TestLayouts:
    def test_csdc_layout_width(self):
        assert CSDC_LAYOUT_V23.width == 1051
        assert CSDC_LAYOUT_V23.version == "23"

    def test_offsets_are_contiguous(self):
        position = 0
        for name, (start, end) in CSDC_LAYOUT_V23.offsets().items():
            assert start == position
            position = end
        assert position == 1051

    def test_inconsistent_total_rejected(self):
        with pytest.raises(ConfigurationError):
            RecordLayout("bad", "1", (FieldSpec("a", 3), FieldSpec("b", 4)), total_width=10)

    def test_duplicate_field_rejected(self):
        with pytest.raises(ConfigurationError):
            RecordLayout("bad", "1", (FieldSpec("a", 3), FieldSpec("a", 4)))

    def test_non_positive_width_rejected(self):
        with pytest.raises(ConfigurationError):
            RecordLayout("bad", "1", (FieldSpec("a", 0),))

    def test_supported_jurisdictions(self):
        codes = supported_jurisdictions()
        assert codes == sorted(["AL", "AR", "CO", "GA", "ID", "OK", "OR", "SC", "TX", "VT", "WV"])

    def test_unknown_jurisdiction(self):
        with pytest.raises(ConfigurationError):
            get_jurisdiction("ZZ")

    def test_georgia_file_name_differs(self):
        assert get_jurisdiction("ga").file_name == "GANOELEVENTXT.txt"
        assert get_jurisdiction("AL").file_name == "ALNOVELEVENTXT.txt"
        assert get_jurisdiction("GA").remote_path == "GA.DIR;1/GANOELEVENTXT.txt"

    def test_texas_has_no_remote_path(self):
        assert get_jurisdiction("TX").remote_path is None

    @pytest.mark.parametrize("value,expected", [
        ("Georgia", "GA"),
        ("ga", "GA"),
        (" south carolina ", "SC"),
        ("Atlantis", ""),
        (None, ""),
    ])
    def test_resolve_state_abbr(self, value, expected):
        assert resolve_state_abbr(value) == expected


# =============================================================================
# Shared helpers
# =============================================================================


class TestHelpers:
    @pytest.mark.parametrize("wage,expected", [
        (Decimal("11.75"), ("11", "75")),
        (Decimal("11.996"), ("12", "00")),
        (Decimal("7.25"), ("7", "25")),
        (Decimal("15"), ("15", "00")),
        (Decimal("9.005"), ("9", "01")),
    ])
    def test_split_wage(self, wage, expected):
        assert split_wage(wage) == expected

    def test_target_group_whole_word(self):
        assert has_target_group(("LTANF",), "LTANF")
        assert not has_target_group(("LTANF",), "TANF")
        assert has_target_group(("snap recipient",), "SNAP")
        assert not has_target_group((), "SNAP")

    def test_from_sources_accepts_both_key_styles(self):
        camel = SubmissionRecord.from_sources(
            {"firstName": "Ana", "lastName": "Diaz", "ssn": "123456789", "hireDate": "2025-02-03",
             "hourlyStartWage": "$12.50", "zipCode": "30301"},
            {"targetGroups": "SNAP, TANF", "status": "eligible", "submittedAt": "2025-01-20T10:00:00Z"},
            employer_ein="123456789",
        )
        snake = SubmissionRecord.from_sources(
            {"first_name": "Ana", "last_name": "Diaz", "ssn": "123456789", "hire_date": "2025-02-03",
             "hourly_start_wage": 12.5, "zip_code": "30301"},
            {"target_groups": ["SNAP", "TANF"], "status": "eligible", "submitted_at": "2025-01-20"},
            employer_ein="123456789",
        )
        assert camel == snake
        assert camel.target_groups == ("SNAP", "TANF")
        assert camel.hourly_wage == Decimal("12.50")
        assert camel.start_date == date(2025, 2, 3)
        assert camel.date_gave_info == date(2025, 1, 20)

    def test_record_validation_lists_every_problem(self):
        record = SubmissionRecord(first_name="", last_name="", ssn="12-34", employer_ein="1")
        errors = record.validate()
        assert "First name required" in errors
        assert "Last name required" in errors
        assert "SSN must be 9 digits (###-##-#### or #########)" in errors
        assert "Hire date required" in errors
        assert "ZIP code required" in errors


# =============================================================================
# CSDC fixed width
# =============================================================================


class TestFixedWidthCodec:
    def test_line_is_exactly_1051_ascii_characters(self):
        line = encode_record(make_record(first_name="José"), "GA")
        assert len(line) == 1051
        line.encode("ascii")

    def test_field_positions(self):
        line = encode_record(make_record(), "GA", pin_or_password="PIN123")
        assert field(line, "ConsultantID").strip() == "SCREEN"
        assert field(line, "fein").strip() == "123456789"
        assert field(line, "plain_ssn").strip() == "123456789"
        assert field(line, "last_name").strip() == "Lopez"
        assert field(line, "first_name").strip() == "Maria"
        assert field(line, "state").strip() == "GA"
        assert field(line, "zip_code").strip() == "30301"
        assert field(line, "date_birth").strip() == "04151990"
        assert field(line, "pin_or_password").strip() == "PIN123"
        assert field(line, "date_started_job").strip() == "02102025"
        assert field(line, "Representative_774_785_12chars").strip() == "PHILIPW"
        assert field(line, "Version_8850_Pos_789_790_SET_23") == "23"

    def test_wage_split_into_dollars_and_cents(self):
        line = encode_record(make_record(hourly_wage=Decimal("11.75")), "GA")
        assert field(line, "StartingWage_Dollars_2").strip() == "11"
        assert field(line, "HourlyWage_Cents").strip() == "75"

    def test_wage_rounding_carries_into_dollars(self):
        line = encode_record(make_record(hourly_wage=Decimal("11.996")), "GA")
        assert field(line, "StartingWage_Dollars_2").strip() == "12"
        assert field(line, "HourlyWage_Cents").strip() == "00"

    def test_missing_wage_uses_state_default(self):
        line = encode_record(make_record(hourly_wage=None), "CO")
        assert field(line, "StartingWage_Dollars_2").strip() == "15"
        assert field(line, "HourlyWage_Cents").strip() == "50"

    def test_target_group_flags(self):
        line = encode_record(make_record(target_groups=("LTANF",)), "GA")
        assert field(line, "TANF_9_18_YN_327").strip() == "N"
        assert field(line, "Q6_YN_798").strip() == "Y"
        assert field(line, "SNAP1_YN_322").strip() == "N"

        snap = encode_record(make_record(target_groups=("SNAP",)), "GA")
        assert field(snap, "SNAP1_YN_322").strip() == "Y"
        assert field(snap, "PrimaryRecipientName_30").strip() == "Maria Lopez"

    def test_long_values_are_truncated(self):
        line = encode_record(make_record(address="X" * 500), "GA")
        assert len(line) == 1051
        assert field(line, "address") == "X" * (CSDC_LAYOUT_V23.offsets()["address"][1] - CSDC_LAYOUT_V23.offsets()["address"][0])

    def test_batch(self):
        submission = encode_batch([make_record(), make_record(first_name="Ana")], "GA")
        assert submission.record_count == 2
        assert len(submission.lines) == 2
        assert submission.file_name == "GANOELEVENTXT.txt"
        assert submission.remote_path == "GA.DIR;1/GANOELEVENTXT.txt"
        assert submission.to_bytes().count(b"\n") == 1

    def test_preview(self):
        submission = encode_batch([make_record() for _ in range(8)], "GA")
        preview = submission.preview(limit=3)
        assert preview.line_count == 8
        assert preview.record_count == 8
        assert len(preview.preview.split("\n")) == 3


# =============================================================================
# Texas CSV
# =============================================================================


class TestTexasCsvCodec:
    def test_header_row(self):
        submission = encode_batch([make_record(state="TX")], "TX", consultant_ein="98-7654321")
        assert len(TEXAS_CSV_HEADERS) == 45
        assert submission.lines[0] == ",".join(TEXAS_CSV_HEADERS)
        assert submission.record_count == 1
        assert len(submission.lines) == 2

    def test_row_values(self):
        row = encode_record(
            make_record(target_groups=("TANF", "SNAP")), "TX", consultant_ein="98-7654321"
        ).split(",")
        values = dict(zip(TEXAS_CSV_HEADERS, row))
        assert len(row) == 45
        assert values["cein"] == "987654321"
        assert values["dob"] == "19900415"
        assert values["state"] == "TX"
        assert values["startingWage"] == "11.75"
        assert values["jobOnetCode"] == "35"
        assert values["qualifiedIva"] == "Y"
        assert values["qualifiedIvaState"] == "TX"
        assert values["snap"] == "Y"
        assert values["ltfar"] == "N"

    def test_commas_and_quotes_stripped(self):
        assert clean_field('1,2 "Main" St') == "1 2 Main St"
        row = encode_record(make_record(address='1,2 "Main" St'), "TX")
        assert len(row.split(",")) == 45

    def test_missing_wage(self):
        row = encode_record(make_record(hourly_wage=None), "TX").split(",")
        assert dict(zip(TEXAS_CSV_HEADERS, row))["startingWage"] == "0.00"

    def test_record_cap(self):
        codec = get_codec("TX")
        assert codec.encode_batch([make_record()] * 998).record_count == 998
        with pytest.raises(SubmissionValidationError):
            codec.encode_batch([make_record()] * 999)

    def test_validation_requires_completed_screening_and_groups(self):
        codec = get_codec("TX")
        errors = codec.validate(make_record(screening_status="pending", target_groups=()))
        assert "Employee must have completed screening for WOTC" in errors
        assert "At least one target group must be identified" in errors

    def test_summer_youth_age(self):
        codec = TexasCsvCodec(get_jurisdiction("TX"))
        record = make_record(target_groups=("SUMMER_YOUTH",), date_of_birth=date(2000, 1, 1))
        assert "Summer Youth requires employee age 16-17" in codec.validate(record, today=date(2025, 6, 1))
        young = make_record(target_groups=("SUMMER_YOUTH",), date_of_birth=date(2008, 5, 1))
        assert codec.validate(young, today=date(2025, 6, 1)) == []


class TestEncodeBatchValidation:
    def test_invalid_batch_rejected_with_all_errors(self):
        records = [make_record(), make_record(first_name="", ssn="")]
        with pytest.raises(SubmissionValidationError) as exc_info:
            encode_batch(records, "GA", validate=True)
        errors = exc_info.value.errors
        assert any("First name required" in e for e in errors)
        assert any("SSN required" in e for e in errors)
        assert all(e.startswith("Record 2") for e in errors)

    def test_unknown_jurisdiction(self):
        with pytest.raises(ConfigurationError):
            encode_batch([make_record()], "ZZ")


class TestRecordCodecContract:
    def test_codec_without_field_map_cannot_be_instantiated(self):
        class EncodeOnlyCodec(RecordCodec):
            def encode(self, record):
                return ""

        with pytest.raises(TypeError):
            EncodeOnlyCodec(get_jurisdiction("GA"))
