"""
State submission codecs.

Fixed-width CSDC records for AL, AR, CO, GA, ID, OK, OR, SC, VT and WV.
Delimited bulk upload rows for TX.
"""

from wotc_sync.codecs.base import (
    RecordCodec,
    SubmissionFile,
    SubmissionPreview,
    SubmissionRecord,
    has_target_group,
    split_wage,
)
from wotc_sync.codecs.layouts import (
    CSDC_LAYOUT_V23,
    JURISDICTIONS,
    TEXAS_CSV_HEADERS,
    FieldSpec,
    JurisdictionProfile,
    RecordLayout,
    get_jurisdiction,
    resolve_state_abbr,
    supported_jurisdictions,
)
from wotc_sync.codecs.fixed_width import FixedWidthCodec
from wotc_sync.codecs.texas_csv import TexasCsvCodec
from wotc_sync.codecs.registry import encode_batch, encode_record, get_codec, preview_batch

__all__ = [
    "RecordCodec",
    "SubmissionFile",
    "SubmissionPreview",
    "SubmissionRecord",
    "has_target_group",
    "split_wage",
    "CSDC_LAYOUT_V23",
    "JURISDICTIONS",
    "TEXAS_CSV_HEADERS",
    "FieldSpec",
    "JurisdictionProfile",
    "RecordLayout",
    "get_jurisdiction",
    "resolve_state_abbr",
    "supported_jurisdictions",
    "FixedWidthCodec",
    "TexasCsvCodec",
    "encode_batch",
    "encode_record",
    "get_codec",
    "preview_batch",
]
