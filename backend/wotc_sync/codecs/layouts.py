"""
Submission layouts and per-jurisdiction profiles.

A layout is pure data: an ordered list of named fields with fixed widths,
validated when it is built. Encoders read layouts; they never hard-code
positions.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from wotc_sync.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class FieldSpec:
    name: str
    width: int


@dataclass(frozen=True)
class RecordLayout:
    """Ordered fixed-width field list. Raises ConfigurationError if inconsistent."""

    name: str
    version: str
    fields: Tuple[FieldSpec, ...]
    total_width: Optional[int] = None

    def __post_init__(self):
        seen = set()
        for spec in self.fields:
            if spec.width <= 0:
                raise ConfigurationError(f"Layout {self.name}: field {spec.name} has non-positive width {spec.width}")
            if spec.name in seen:
                raise ConfigurationError(f"Layout {self.name}: duplicate field {spec.name}")
            seen.add(spec.name)

        if self.total_width is not None and self.width != self.total_width:
            raise ConfigurationError(
                f"Layout {self.name}: fields sum to {self.width}, expected {self.total_width}"
            )

    @property
    def width(self) -> int:
        return sum(spec.width for spec in self.fields)

    @property
    def field_names(self) -> List[str]:
        return [spec.name for spec in self.fields]

    def offsets(self) -> Dict[str, Tuple[int, int]]:
        """Zero-based ``(start, end)`` slice for each field."""
        result = {}
        position = 0
        for spec in self.fields:
            result[spec.name] = (position, position + spec.width)
            position += spec.width
        return result


def _layout(name: str, version: str, fields: List[Tuple[str, int]], total_width: int) -> RecordLayout:
    return RecordLayout(
        name=name,
        version=version,
        fields=tuple(FieldSpec(n, w) for n, w in fields),
        total_width=total_width,
    )


# CSDC bulk 8850 record, form version 23
CSDC_LAYOUT_V23 = _layout("csdc_8850", "23", [
    ("ConsultantID", 12),
    ("fein", 9),
    ("plain_ssn", 19),
    ("MiddleInitial", 1),
    ("last_name", 19),
    ("address", 30),
    ("city", 20),
    ("state", 2),
    ("zip_code", 5),
    ("phone", 10),
    ("date_birth", 90),
    ("pin_or_password", 20),
    ("SignatureOnFile_YN", 1),
    ("DateOfSignature_mmddccyy", 8),
    ("TargetedGroup_4_or_6_or_blank", 1),
    ("date_gave_info", 8),
    ("date_was_offered_job", 8),
    ("date_was_hired", 8),
    ("date_started_job", 31),
    ("DatePart2Signature_mmddccyy", 8),
    ("StartingWage_Dollars_2", 2),
    ("HourlyWage_Cents", 2),
    ("occupation_code", 2),
    ("is_rehire", 5),
    ("SNAP1_YN_322", 5),
    ("TANF_9_18_YN_327", 1),
    ("TANF_last18_YN_328", 3),
    ("PrimaryRecipientName_30", 50),
    ("PrimaryRecipientState_2", 2),
    ("Felony_YN_383", 1),
    ("ConvictionDate_mmddccyy_384_391", 8),
    ("ReleaseDate_mmddccyy_392_399", 8),
    ("EmpowermentZone_YN_400", 1),
    ("RuralRenewal_YN_401", 21),
    ("SSI_YN_422", 1),
    ("Eligibility_Line1_80", 80),
    ("Eligibility_Line2_80", 80),
    ("Eligibility_Line3_80", 80),
    ("Eligibility_Line4_80", 80),
    ("CompletedBy_743_E_A_C_S_G", 1),
    ("Dateof9061", 28),
    ("OutOfStateBenefits_State_2_772_773", 2),
    ("Representative_774_785_12chars", 15),
    ("Version_8850_Pos_789_790_SET_23", 2),
    ("Version_ICF_Pos_791_792_SET_23", 2),
    ("Is9062_YN_793", 1),
    ("Q2_YN_794", 1),
    ("Q3_YN_795", 1),
    ("Q4_YN_796", 1),
    ("Q5_YN_797", 1),
    ("Q6_YN_798", 1),
    ("ConvictionType_F_or_S_799", 1),
    ("ConvictionState_2_800_801", 4),
    ("CategoryF_YN_804", 1),
    ("MailDate_mmddccyy_805_812_optional", 8),
    ("LTUR_YN_813", 2),
    ("Q7_YN_815", 1),
    ("LTUR_State_2_843_844", 29),
    ("first_name", 20),
    ("Vet_YN_865", 1),
    ("WorkRelease_YN_866", 1),
    ("VocRehab_YN_867", 185),
], total_width=1051)


# Texas Workforce Commission bulk upload, header names are fixed by the portal
TEXAS_CSV_HEADERS: Tuple[str, ...] = (
    "cein", "fein", "ssn", "dob", "hireDate", "startDate", "lastName", "firstName",
    "address", "city", "state", "zip", "startingWage", "jobOnetCode",
    "q1_condCert", "q2_metConditions", "q3_uVet6", "q4_dVet", "q5_dUVet6",
    "q6_tanfPayments", "q7_u27", "qualifiedIva", "qualifiedIvaState",
    "qualifiedVet", "qualifiedVetState", "uVet4Weeks", "uVet6Months", "dVet",
    "dUVet6Months", "exFelon", "exFelonTypeFederal", "exFelonTypeState", "dcr",
    "dcrResidesInRRC", "dcrResidesInEZ", "vocRehab", "summerYouth", "snap",
    "snapState", "ssi", "ltfar", "ltfarState", "ltu", "lturState", "sourceDocs",
)
TEXAS_MAX_RECORDS = 998

CODEC_CSDC_FIXED_WIDTH = "csdc_fixed_width"
CODEC_TEXAS_CSV = "texas_csv"


@dataclass(frozen=True)
class JurisdictionProfile:
    code: str
    name: str
    codec: str
    consultant_id: str = ""
    representative: str = ""
    default_hourly_wage: Decimal = Decimal("0")
    date_format: str = "%m%d%Y"
    file_name: Optional[str] = None
    remote_directory: Optional[str] = None
    max_records: Optional[int] = None
    extra: Dict[str, str] = field(default_factory=dict)

    @property
    def remote_path(self) -> Optional[str]:
        if not self.remote_directory or not self.file_name:
            return None
        return f"{self.remote_directory}/{self.file_name}"


def _csdc_profile(code: str, name: str, consultant_id: str, representative: str, wage: str) -> JurisdictionProfile:
    # Georgia's mailbox uses a different file name from every other CSDC state
    file_name = "GANOELEVENTXT.txt" if code == "GA" else f"{code}NOVELEVENTXT.txt"
    return JurisdictionProfile(
        code=code,
        name=name,
        codec=CODEC_CSDC_FIXED_WIDTH,
        consultant_id=consultant_id,
        representative=representative,
        default_hourly_wage=Decimal(wage),
        date_format="%m%d%Y",
        file_name=file_name,
        remote_directory=f"{code}.DIR;1",
    )


JURISDICTIONS: Dict[str, JurisdictionProfile] = {
    profile.code: profile for profile in (
        _csdc_profile("AL", "Alabama", "ROCKERBOX", "Young", "7.25"),
        _csdc_profile("AR", "Arkansas", "ROCKERBOX", "DYOUNG", "11.00"),
        _csdc_profile("CO", "Colorado", "ROCKERBOX", "GRinehart", "15.50"),
        _csdc_profile("GA", "Georgia", "SCREEN", "PHILIPW", "11.50"),
        _csdc_profile("ID", "Idaho", "ROCKERBOX", "PCALHOUN", "11.50"),
        _csdc_profile("OK", "Oklahoma", "ROCKERBOX", "DYOUNG", "11.50"),
        _csdc_profile("OR", "Oregon", "ROCKERBOX", "DYOUNG", "16.00"),
        _csdc_profile("SC", "South Carolina", "ROCKERBOX", "DAVIDYOUNG", "11.50"),
        _csdc_profile("VT", "Vermont", "ROCKERBOX", "DAVIDY", "14.50"),
        _csdc_profile("WV", "West Virginia", "SCREENTECH", "DYOUNG", "11.50"),
        JurisdictionProfile(
            code="TX",
            name="Texas",
            codec=CODEC_TEXAS_CSV,
            date_format="%Y%m%d",
            file_name="TXWOTCBULK.csv",
            max_records=TEXAS_MAX_RECORDS,
        ),
    )
}


def get_jurisdiction(code: str) -> JurisdictionProfile:
    profile = JURISDICTIONS.get((code or "").strip().upper())
    if profile is None:
        raise ConfigurationError(f"No submission configuration found for jurisdiction: {code}")
    return profile


def supported_jurisdictions(codec: Optional[str] = None) -> List[str]:
    return sorted(
        code for code, profile in JURISDICTIONS.items()
        if codec is None or profile.codec == codec
    )


STATE_NAME_TO_ABBR = {
    "Alabama": "AL", "Alaska": "AK", "Arizona": "AZ", "Arkansas": "AR",
    "California": "CA", "Colorado": "CO", "Connecticut": "CT", "Delaware": "DE",
    "District of Columbia": "DC", "Florida": "FL", "Georgia": "GA", "Hawaii": "HI",
    "Idaho": "ID", "Illinois": "IL", "Indiana": "IN", "Iowa": "IA",
    "Kansas": "KS", "Kentucky": "KY", "Louisiana": "LA", "Maine": "ME",
    "Maryland": "MD", "Massachusetts": "MA", "Michigan": "MI", "Minnesota": "MN",
    "Mississippi": "MS", "Missouri": "MO", "Montana": "MT", "Nebraska": "NE",
    "Nevada": "NV", "New Hampshire": "NH", "New Jersey": "NJ", "New Mexico": "NM",
    "New York": "NY", "North Carolina": "NC", "North Dakota": "ND", "Ohio": "OH",
    "Oklahoma": "OK", "Oregon": "OR", "Pennsylvania": "PA", "Rhode Island": "RI",
    "South Carolina": "SC", "South Dakota": "SD", "Tennessee": "TN", "Texas": "TX",
    "Utah": "UT", "Vermont": "VT", "Virginia": "VA", "Washington": "WA",
    "West Virginia": "WV", "Wisconsin": "WI", "Wyoming": "WY", "Puerto Rico": "PR",
}
_STATE_NAME_LOOKUP = {name.lower(): abbr for name, abbr in STATE_NAME_TO_ABBR.items()}


def resolve_state_abbr(state: Optional[str]) -> str:
    """Two-letter code for a state name or code; empty string if unknown."""
    if not state:
        return ""
    trimmed = state.strip()
    if len(trimmed) == 2:
        return trimmed.upper()
    return _STATE_NAME_LOOKUP.get(trimmed.lower(), "")
