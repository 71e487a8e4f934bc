"""
Texas Workforce Commission bulk upload CSV.

The portal rejects quoted values, so commas and quotes are stripped from
every field instead of being escaped. At most 998 data rows per file.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from wotc_sync.codecs.base import (
    RecordCodec,
    SubmissionRecord,
    digits_only,
    format_date,
    has_target_group,
    to_ascii,
)
from wotc_sync.codecs.layouts import CODEC_TEXAS_CSV, TEXAS_CSV_HEADERS, JurisdictionProfile

COMPLETED_SCREENING_STATUSES = {"eligible", "certified", "completed"}


def clean_field(value: Optional[str]) -> str:
    if not value:
        return ""
    return to_ascii(value).replace(",", " ").replace('"', "").replace("'", "").strip()


def format_wage(wage: Optional[Decimal]) -> str:
    if not wage or wage <= 0:
        return "0.00"
    return f"{wage:.2f}"


def onet_prefix(code: Optional[str]) -> str:
    prefix = (code or "")[:2]
    return prefix if len(prefix) == 2 and prefix.isdigit() else ""


def _yn(flag: bool) -> str:
    return "Y" if flag else "N"


class TexasCsvCodec(RecordCodec):
    CODEC = CODEC_TEXAS_CSV

    def __init__(self, profile: JurisdictionProfile, consultant_ein: str = ""):
        super().__init__(profile)
        self.consultant_ein = digits_only(consultant_ein)

    @property
    def header(self) -> str:
        return ",".join(TEXAS_CSV_HEADERS)

    def field_map(self, record: SubmissionRecord) -> Dict[str, str]:
        fmt = self.profile.date_format
        groups = record.target_groups
        is_tanf = has_target_group(groups, "TANF")
        is_ltanf = has_target_group(groups, "LTANF", "LTFAR")
        is_snap = has_target_group(groups, "SNAP")
        is_ssi = has_target_group(groups, "SSI")
        is_vet = has_target_group(groups, "VET", "VETERAN", "VETERAN_DISABLED", "VETERAN_UNEMPLOYED", "DV", "UV")
        is_felon = has_target_group(groups, "FELON", "EXFELON")
        is_vet_disabled = has_target_group(groups, "VETERAN_DISABLED", "DV")

        return {
            "cein": self.consultant_ein,
            "fein": digits_only(record.employer_ein),
            "ssn": digits_only(record.ssn),
            "dob": format_date(record.date_of_birth, fmt),
            "hireDate": format_date(record.hire_date, fmt),
            "startDate": format_date(record.start_date or record.hire_date, fmt),
            "lastName": clean_field(record.last_name),
            "firstName": clean_field(record.first_name),
            "address": clean_field(record.address),
            "city": clean_field(record.city),
            "state": "TX",
            "zip": digits_only(record.zip_code),
            "startingWage": format_wage(record.hourly_wage),
            "jobOnetCode": onet_prefix(record.occupation_code),
            "q1_condCert": "N",
            "q2_metConditions": _yn(is_snap or is_ssi or is_tanf),
            "q3_uVet6": "N",
            "q4_dVet": _yn(is_vet_disabled),
            "q5_dUVet6": "N",
            "q6_tanfPayments": _yn(is_tanf or is_ltanf),
            "q7_u27": "N",
            "qualifiedIva": _yn(is_tanf),
            "qualifiedIvaState": "TX" if is_tanf else "",
            "qualifiedVet": _yn(is_vet),
            "qualifiedVetState": "",
            "uVet4Weeks": "N",
            "uVet6Months": "N",
            "dVet": "N",
            "dUVet6Months": "N",
            "exFelon": _yn(is_felon),
            "exFelonTypeFederal": "",
            "exFelonTypeState": "",
            "dcr": "N",
            "dcrResidesInRRC": "",
            "dcrResidesInEZ": "",
            "vocRehab": "N",
            "summerYouth": "N",
            "snap": _yn(is_snap),
            "snapState": "TX" if is_snap else "",
            "ssi": _yn(is_ssi),
            "ltfar": _yn(is_ltanf),
            "ltfarState": "TX" if is_ltanf else "",
            "ltu": "N",
            "lturState": "",
            "sourceDocs": "N",
        }

    def encode(self, record: SubmissionRecord) -> str:
        fields = self.field_map(record)
        return ",".join(fields[name] for name in TEXAS_CSV_HEADERS)

    def validate(self, record: SubmissionRecord, today: Optional[date] = None) -> List[str]:
        errors = record.validate()

        if (record.screening_status or "").lower() not in COMPLETED_SCREENING_STATUSES:
            errors.append("Employee must have completed screening for WOTC")

        if not record.target_groups:
            errors.append("At least one target group must be identified")

        if "SUMMER_YOUTH" in record.target_groups and record.date_of_birth:
            today = today or date.today()
            dob = record.date_of_birth
            age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))
            if age < 16 or age > 17:
                errors.append("Summer Youth requires employee age 16-17")

        return errors
