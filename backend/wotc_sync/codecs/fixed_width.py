"""
CSDC fixed-width codec.

One 1051-character ASCII line per employee, fields left-justified and
space-padded, no separators. The portal PIN is embedded in every record.
"""

from typing import Dict

from wotc_sync.codecs.base import (
    RecordCodec,
    SubmissionRecord,
    digits_only,
    format_date,
    has_target_group,
    pad_field,
    split_wage,
)
from wotc_sync.codecs.layouts import (
    CODEC_CSDC_FIXED_WIDTH,
    CSDC_LAYOUT_V23,
    JurisdictionProfile,
    RecordLayout,
    resolve_state_abbr,
)


def _yn(flag: bool) -> str:
    return "Y" if flag else "N"


class FixedWidthCodec(RecordCodec):
    CODEC = CODEC_CSDC_FIXED_WIDTH

    def __init__(
        self,
        profile: JurisdictionProfile,
        layout: RecordLayout = CSDC_LAYOUT_V23,
        pin_or_password: str = "",
    ):
        super().__init__(profile)
        self.layout = layout
        self.pin_or_password = pin_or_password or ""

    def field_map(self, record: SubmissionRecord) -> Dict[str, str]:
        fmt = self.profile.date_format
        groups = record.target_groups
        is_snap = has_target_group(groups, "SNAP")
        is_tanf = has_target_group(groups, "TANF")
        is_ltanf = has_target_group(groups, "LTANF")
        is_ssi = has_target_group(groups, "SSI")
        is_benefit_recipient = is_tanf or is_snap

        employee_state = resolve_state_abbr(record.state)
        started = record.start_date or record.hire_date
        gave_info = format_date(record.date_gave_info, fmt)
        offered = format_date(record.date_offered_job or started, fmt)
        hired = format_date(record.hire_date or started, fmt)

        wage = record.hourly_wage or self.profile.default_hourly_wage
        dollars, cents = split_wage(wage) if wage > 0 else ("", "")

        return {
            "ConsultantID": self.profile.consultant_id,
            "fein": digits_only(record.employer_ein),
            "plain_ssn": digits_only(record.ssn),
            "MiddleInitial": "",
            "last_name": record.last_name,
            "address": record.address,
            "city": record.city,
            "state": employee_state,
            "zip_code": digits_only(record.zip_code)[:5],
            "phone": "",
            "date_birth": format_date(record.date_of_birth, fmt),
            "pin_or_password": self.pin_or_password,
            "SignatureOnFile_YN": "N",
            "DateOfSignature_mmddccyy": gave_info,
            "TargetedGroup_4_or_6_or_blank": "",
            "date_gave_info": gave_info,
            "date_was_offered_job": offered,
            "date_was_hired": hired,
            "date_started_job": format_date(started, fmt),
            "DatePart2Signature_mmddccyy": gave_info,
            "StartingWage_Dollars_2": dollars,
            "HourlyWage_Cents": cents,
            "occupation_code": record.occupation_code,
            "is_rehire": "N",
            "SNAP1_YN_322": _yn(is_snap),
            "TANF_9_18_YN_327": _yn(is_tanf),
            "TANF_last18_YN_328": _yn(is_tanf),
            "PrimaryRecipientName_30": record.full_name if is_benefit_recipient else "",
            "PrimaryRecipientState_2": employee_state if is_benefit_recipient else "",
            "Felony_YN_383": "N",
            "ConvictionDate_mmddccyy_384_391": "",
            "ReleaseDate_mmddccyy_392_399": "",
            "EmpowermentZone_YN_400": "N",
            "RuralRenewal_YN_401": "N",
            "SSI_YN_422": _yn(is_ssi),
            "Eligibility_Line1_80": "",
            "Eligibility_Line2_80": "",
            "Eligibility_Line3_80": "",
            "Eligibility_Line4_80": "",
            "CompletedBy_743_E_A_C_S_G": "C",
            "Dateof9061": gave_info,
            "OutOfStateBenefits_State_2_772_773": "",
            "Representative_774_785_12chars": self.profile.representative,
            "Version_8850_Pos_789_790_SET_23": self.layout.version,
            "Version_ICF_Pos_791_792_SET_23": self.layout.version,
            "Is9062_YN_793": "N",
            "Q2_YN_794": "Y",
            "Q3_YN_795": "N",
            "Q4_YN_796": "N",
            "Q5_YN_797": "N",
            "Q6_YN_798": _yn(is_ltanf),
            "ConvictionType_F_or_S_799": "",
            "ConvictionState_2_800_801": "",
            "CategoryF_YN_804": "N",
            "MailDate_mmddccyy_805_812_optional": "",
            "LTUR_YN_813": "N",
            "Q7_YN_815": "N",
            "LTUR_State_2_843_844": "",
            "first_name": record.first_name,
            "Vet_YN_865": "N",
            "WorkRelease_YN_866": "N",
            "VocRehab_YN_867": "N",
        }

    def render(self, fields: Dict[str, str]) -> str:
        return "".join(pad_field(fields.get(spec.name, ""), spec.width) for spec in self.layout.fields)

    def encode(self, record: SubmissionRecord) -> str:
        return self.render(self.field_map(record))
