import logging
from typing import Iterable, List, Optional

from wotc_sync.codecs.base import RecordCodec, SubmissionFile, SubmissionRecord
from wotc_sync.codecs.fixed_width import FixedWidthCodec
from wotc_sync.codecs.layouts import CODEC_CSDC_FIXED_WIDTH, CODEC_TEXAS_CSV, get_jurisdiction
from wotc_sync.codecs.texas_csv import TexasCsvCodec
from wotc_sync.core.exceptions import ConfigurationError, SubmissionValidationError

logger = logging.getLogger("wotc_sync.codecs")


def get_codec(
    jurisdiction: str,
    pin_or_password: str = "",
    consultant_ein: str = "",
) -> RecordCodec:
    """
    Codec for a jurisdiction code.

    Raises ConfigurationError for jurisdictions without a submission format.
    """
    profile = get_jurisdiction(jurisdiction)
    if profile.codec == CODEC_CSDC_FIXED_WIDTH:
        return FixedWidthCodec(profile, pin_or_password=pin_or_password)
    if profile.codec == CODEC_TEXAS_CSV:
        return TexasCsvCodec(profile, consultant_ein=consultant_ein)
    raise ConfigurationError(f"Unsupported codec '{profile.codec}' for {profile.code}")


def encode_record(record: SubmissionRecord, jurisdiction: str, **options) -> str:
    return get_codec(jurisdiction, **options).encode(record)


def encode_batch(
    records: Iterable[SubmissionRecord],
    jurisdiction: str,
    validate: bool = False,
    **options,
) -> SubmissionFile:
    """
    Encode a batch into one submission file.

    With ``validate=True`` every record is checked first and the whole batch
    is rejected with all problems listed.
    """
    codec = get_codec(jurisdiction, **options)
    records = list(records)

    if validate:
        problems: List[str] = []
        for index, record in enumerate(records):
            for error in codec.validate(record):
                problems.append(f"Record {index + 1} ({record.full_name or 'unnamed'}): {error}")
        if problems:
            raise SubmissionValidationError(
                f"{len(problems)} validation error(s) in {jurisdiction.upper()} batch", errors=problems
            )

    submission = codec.encode_batch(records)
    logger.info(
        f"Encoded {submission.record_count} record(s) for {submission.jurisdiction}"
        f" ({codec.CODEC})"
    )
    return submission


def preview_batch(records: Iterable[SubmissionRecord], jurisdiction: str, limit: int = 5, **options):
    return encode_batch(records, jurisdiction, **options).preview(limit)


def codec_name(jurisdiction: str) -> Optional[str]:
    try:
        return get_jurisdiction(jurisdiction).codec
    except ConfigurationError:
        return None
