"""Batch identifier generation.

Formats:
  batch:        FCX-{prefix}-{date}-{rand:6}   e.g. FCX-TOM-261019-3FA9C1
  split child:  {parent}-S{rand:3}             e.g. FCX-TOM-261019-3FA9C1-S0B7

  {prefix}  → first three letters of the crop type, upper-cased
              ("CRP" when the crop type is shorter than three characters)
  {date}    → YYMMDD, local date
  {rand:N}  → N upper-case hex characters from a fresh uuid4
"""

import uuid
from datetime import date

BATCH_PREFIX = "FCX"
FALLBACK_CROP_PREFIX = "CRP"

# Width of every batch_id column
BATCH_ID_MAX_LENGTH = 64
# "-S" plus three random characters
SPLIT_SUFFIX_LENGTH = 5


def _random_token(length: int) -> str:
    return uuid.uuid4().hex[:length].upper()


def crop_prefix(crop_type: str | None) -> str:
    if crop_type and len(crop_type.strip()) >= 3:
        return crop_type.strip()[:3].upper()
    return FALLBACK_CROP_PREFIX


def generate_batch_id(crop_type: str | None, today: date | None = None) -> str:
    """Generate a new top-level batch id for the given crop type."""
    today_str = (today or date.today()).strftime("%y%m%d")
    return f"{BATCH_PREFIX}-{crop_prefix(crop_type)}-{today_str}-{_random_token(6)}"


def generate_split_id(parent_batch_id: str) -> str:
    """Generate a child id for a batch produced by splitting ``parent_batch_id``."""
    return f"{parent_batch_id}-S{_random_token(3)}"


def can_split(parent_batch_id: str) -> bool:
    """Whether a split child id of ``parent_batch_id`` still fits the column.

    Each split generation adds five characters; a generated id runs out
    after eight generations, a 64-character supplied id at once.
    """
    return len(parent_batch_id) + SPLIT_SUFFIX_LENGTH <= BATCH_ID_MAX_LENGTH
