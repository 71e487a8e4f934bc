"""
Shared record projection and formatting helpers for submission codecs.
"""

import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from wotc_sync.codecs.layouts import JurisdictionProfile
from wotc_sync.core.exceptions import SubmissionValidationError

SSN_PATTERN = re.compile(r"^\d{3}-?\d{2}-?\d{4}$")


def _first(source: Optional[Mapping[str, Any]], *keys: str) -> Any:
    """First non-empty value among ``keys`` (camelCase and snake_case shapes both occur)."""
    if not source:
        return None
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def coerce_wage(value: Any) -> Optional[Decimal]:
    """Parse a wage like ``12.5``, ``"$1,012.50"``. Missing, invalid or non-positive gives None."""
    if value is None or value == "":
        return None
    try:
        wage = Decimal(str(value).replace("$", "").replace(",", "").strip())
    except InvalidOperation:
        return None
    if not wage.is_finite() or wage <= 0:
        return None
    return wage


def normalize_target_groups(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        parts = re.split(r"[,;|]", value)
    else:
        parts = [str(v) for v in value]
    return tuple(p.strip() for p in parts if p and p.strip())


def has_target_group(groups: Sequence[str], *keywords: str) -> bool:
    """Whole-word, case-insensitive match. ``TANF`` does not match ``LTANF``."""
    if not groups:
        return False
    haystack = " ".join(groups)
    return any(
        re.search(rf"\b{re.escape(keyword)}\b", haystack, re.IGNORECASE)
        for keyword in keywords
    )


def digits_only(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"[^0-9]", "", str(value))


def to_ascii(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    return normalized.encode("ascii", "ignore").decode("ascii")


def pad_field(value: Optional[str], width: int) -> str:
    """Left-justify, truncate or space-pad to exactly ``width`` ASCII characters."""
    text = to_ascii(value or "").replace("\r", " ").replace("\n", " ")
    return text[:width].ljust(width)


def format_date(value: Optional[date], fmt: str) -> str:
    return value.strftime(fmt) if value else ""


def split_wage(wage: Decimal) -> Tuple[str, str]:
    """
    Whole dollars and two-digit cents. Cents that round up to 100 carry into
    dollars: 11.996 gives ("12", "00").
    """
    dollars = int(wage)
    cents = int(((wage - dollars) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents >= 100:
        dollars += 1
        cents = 0
    return str(dollars), f"{cents:02d}"


@dataclass(frozen=True)
class SubmissionRecord:
    """
    Read-only projection of one certified employee, screening and employer,
    assembled right before encoding.
    """

    first_name: str
    last_name: str
    ssn: str
    employer_ein: str
    date_of_birth: Optional[date] = None
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    hire_date: Optional[date] = None
    start_date: Optional[date] = None
    date_gave_info: Optional[date] = None
    date_offered_job: Optional[date] = None
    hourly_wage: Optional[Decimal] = None
    occupation_code: str = ""
    target_groups: Tuple[str, ...] = ()
    screening_status: Optional[str] = None
    employer_name: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_sources(
        cls,
        employee: Mapping[str, Any],
        screening: Optional[Mapping[str, Any]],
        employer_ein: str,
        employer_name: str = "",
    ) -> "SubmissionRecord":
        e, s = employee, screening or {}
        start = coerce_date(_first(e, "startDate", "start_date", "date_started_job", "hireDate", "hire_date"))
        hire = coerce_date(_first(e, "dateWasHired", "date_was_hired", "hireDate", "hire_date"))
        return cls(
            first_name=str(_first(e, "firstName", "first_name") or ""),
            last_name=str(_first(e, "lastName", "last_name") or ""),
            ssn=str(_first(e, "ssn", "plain_ssn") or ""),
            employer_ein=employer_ein or "",
            date_of_birth=coerce_date(_first(e, "dateOfBirth", "date_of_birth", "date_birth", "dob")),
            address=str(_first(e, "address") or ""),
            city=str(_first(e, "city") or ""),
            state=str(_first(e, "state") or ""),
            zip_code=str(_first(e, "zipCode", "zip_code", "zip") or ""),
            hire_date=hire,
            start_date=start,
            date_gave_info=coerce_date(
                _first(e, "dateGaveInfo", "date_gave_info")
                or _first(s, "submittedAt", "submitted_at", "createdAt", "created_at")
            ),
            date_offered_job=coerce_date(_first(e, "dateWasOfferedJob", "date_was_offered_job")),
            hourly_wage=coerce_wage(_first(e, "hourlyStartWage", "hourly_start_wage", "startingWage", "starting_wage")),
            occupation_code=str(_first(e, "occupationCode", "occupation_code", "jobOnetCode", "job_onet_code") or ""),
            target_groups=normalize_target_groups(
                _first(s, "targetGroups", "target_groups", "qualifyingCategories", "qualifying_categories")
            ),
            screening_status=_first(s, "status"),
            employer_name=employer_name,
        )

    def validate(self) -> List[str]:
        """Human-readable problems that would make the record unusable."""
        errors = []
        if not self.first_name:
            errors.append("First name required")
        if not self.last_name:
            errors.append("Last name required")
        if not self.ssn:
            errors.append("SSN required")
        elif not SSN_PATTERN.match(self.ssn.strip()):
            errors.append("SSN must be 9 digits (###-##-#### or #########)")
        if not self.date_of_birth:
            errors.append("Date of birth required")
        if not self.hire_date and not self.start_date:
            errors.append("Hire date required")
        if not self.address:
            errors.append("Address required")
        if not self.city:
            errors.append("City required")
        if not self.state:
            errors.append("State required")
        if not self.zip_code:
            errors.append("ZIP code required")
        return errors


@dataclass
class SubmissionPreview:
    preview: str
    line_count: int
    record_count: int
    file_name: Optional[str]
    remote_path: Optional[str]


@dataclass
class SubmissionFile:
    """Encoded batch ready for transport."""

    jurisdiction: str
    lines: List[str]
    record_count: int
    file_name: Optional[str] = None
    remote_path: Optional[str] = None
    generated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def content(self) -> str:
        return "\n".join(self.lines)

    def to_bytes(self) -> bytes:
        return self.content.encode("ascii")

    def preview(self, limit: int = 5) -> SubmissionPreview:
        return SubmissionPreview(
            preview="\n".join(self.lines[:limit]),
            line_count=len(self.lines),
            record_count=self.record_count,
            file_name=self.file_name,
            remote_path=self.remote_path,
        )


class RecordCodec(ABC):
    """
    Turns one SubmissionRecord into one output line for a jurisdiction.

    Subclasses differ in wire format only; batching, record caps and
    file naming live here.
    """

    CODEC: str = "base"

    def __init__(self, profile: JurisdictionProfile):
        self.profile = profile

    @property
    def header(self) -> Optional[str]:
        return None

    @property
    def max_records(self) -> Optional[int]:
        return self.profile.max_records

    @abstractmethod
    def encode(self, record: SubmissionRecord) -> str:
        pass

    def validate(self, record: SubmissionRecord) -> List[str]:
        return record.validate()

    def encode_batch(self, records: Iterable[SubmissionRecord]) -> SubmissionFile:
        records = list(records)
        if self.max_records is not None and len(records) > self.max_records:
            raise SubmissionValidationError(
                f"{self.profile.name} submissions are limited to {self.max_records} records per file "
                f"(got {len(records)})"
            )

        lines = [self.header] if self.header is not None else []
        lines.extend(self.encode(record) for record in records)
        return SubmissionFile(
            jurisdiction=self.profile.code,
            lines=lines,
            record_count=len(records),
            file_name=self.profile.file_name,
            remote_path=self.profile.remote_path,
        )

    @abstractmethod
    def field_map(self, record: SubmissionRecord) -> Dict[str, str]:
        """Named values before rendering. Used by encode and by diagnostics."""
        pass
