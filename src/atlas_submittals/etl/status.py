"""
Status-code normalization across project vocabularies.

Lookup runs in tiers: placeholder tokens, the active vocabulary's exact
table, a fuzzy token fallback, and finally passthrough of the trimmed raw
value. Exact keys ignore case, spacing and punctuation, so "UR (ATJV)",
"UR(ATJV)" and "ur-atjv" are the same key; the output keeps the canonical
spelling.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

from atlas_submittals.domain.models import CanonicalStatus
from atlas_submittals.exceptions import ConfigError

logger = logging.getLogger(__name__)

PENDING_TOKENS = {"", "---", "--", "-", "null", "undefined", "none", "nan"}

TIER_PLACEHOLDER = "placeholder"
TIER_EXACT = "exact"
TIER_FUZZY = "fuzzy"
TIER_PASSTHROUGH = "passthrough"

_CODE_RE = re.compile(r"CODE([1-4])")


def status_key(raw: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", raw.upper())


@dataclass(frozen=True)
class StatusResult:
    value: str
    recognized: bool
    tier: str
    raw: Optional[str] = None


@dataclass(frozen=True)
class ProjectVocabulary:
    name: str
    spellings: Mapping[str, CanonicalStatus] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_table", {status_key(k): v for k, v in self.spellings.items()})

    def lookup(self, key: str) -> Optional[CanonicalStatus]:
        return self._table.get(key)

    def knows(self, raw: Any) -> bool:
        if raw is None:
            return False
        return status_key(str(raw)) in self._table


_COMMON_WORDS: Dict[str, CanonicalStatus] = {
    "CODE 1": CanonicalStatus.CODE1,
    "CODE 2": CanonicalStatus.CODE2,
    "CODE 3": CanonicalStatus.CODE3,
    "CODE 4": CanonicalStatus.CODE4,
    "APPROVED": CanonicalStatus.CODE1,
    "APPROVED WITH COMMENTS": CanonicalStatus.CODE2,
    "APPROVED AS NOTED": CanonicalStatus.CODE2,
    "REVISE AND RESUBMIT": CanonicalStatus.CODE3,
    "REVISE & RESUBMIT": CanonicalStatus.CODE3,
    "REJECT WITH COMMENTS": CanonicalStatus.CODE3,
    "REJECTED": CanonicalStatus.CODE4,
    "PENDING": CanonicalStatus.PENDING,
    "NOT SUBMITTED": CanonicalStatus.PENDING,
}

_COMPOUND_CODES: Dict[str, CanonicalStatus] = {
    "UR (ATJV)": CanonicalStatus.UR_ATJV,
    "AR (ATJV)": CanonicalStatus.AR_ATJV,
    "UR (DAR)": CanonicalStatus.UR_DAR,
    "RTN (ATLS)": CanonicalStatus.RTN_ATLS,
    "RTN (AS)": CanonicalStatus.RTN_AS,
    "UNDER REVIEW": CanonicalStatus.UR_ATJV,
    "ADVANCE REVIEW": CanonicalStatus.AR_ATJV,
}

# Atlas logs: compound review codes, "Code n" spellings.
ATLAS = ProjectVocabulary(name="atlas", spellings={**_COMMON_WORDS, **_COMPOUND_CODES})

# EMCT logs: bare numerals and letter grades on top of the shared codes.
# Numerals and letters must stay out of ATLAS.
EMCT = ProjectVocabulary(
    name="emct",
    spellings={
        **_COMMON_WORDS,
        **_COMPOUND_CODES,
        "1": CanonicalStatus.CODE1,
        "2": CanonicalStatus.CODE2,
        "3": CanonicalStatus.CODE3,
        "4": CanonicalStatus.CODE4,
        "A": CanonicalStatus.CODE1,
        "B": CanonicalStatus.CODE2,
        "C": CanonicalStatus.CODE3,
        "D": CanonicalStatus.CODE4,
        "SUBMITTED": CanonicalStatus.UR_ATJV,
    },
)

VOCABULARIES: Dict[str, ProjectVocabulary] = {v.name: v for v in (ATLAS, EMCT)}


def get_vocabulary(name: str) -> ProjectVocabulary:
    try:
        return VOCABULARIES[name.lower()]
    except KeyError:
        raise ConfigError(f"Unknown status vocabulary '{name}'. Known: {', '.join(sorted(VOCABULARIES))}")


class StatusNormalizer:
    """
    Maps raw status cells onto CanonicalStatus for one project vocabulary.
    """

    def __init__(self, vocabulary: ProjectVocabulary | str = ATLAS):
        self.vocabulary = get_vocabulary(vocabulary) if isinstance(vocabulary, str) else vocabulary

    def normalize(self, raw: Any) -> StatusResult:
        text = "" if raw is None else re.sub(r"\s+", " ", str(raw)).strip()
        if isinstance(raw, float) and raw.is_integer():
            text = str(int(raw))

        if text.lower() in PENDING_TOKENS:
            return StatusResult(CanonicalStatus.PENDING.value, True, TIER_PLACEHOLDER, raw=text)

        key = status_key(text)
        exact = self.vocabulary.lookup(key)
        if exact is not None:
            return StatusResult(exact.value, True, TIER_EXACT, raw=text)

        fuzzy = self._fuzzy(text.upper(), key)
        if fuzzy is not None:
            return StatusResult(fuzzy.value, True, TIER_FUZZY, raw=text)

        return StatusResult(text, False, TIER_PASSTHROUGH, raw=text)

    @staticmethod
    def _fuzzy(upper: str, key: str) -> Optional[CanonicalStatus]:
        tokens = set(re.findall(r"[A-Z0-9]+", upper))

        if "REJECT" in key or "NOTAPPROVED" in key or "DISAPPROVED" in key:
            return CanonicalStatus.CODE3 if "COMMENT" in key else CanonicalStatus.CODE4
        if "REVISE" in key:
            return CanonicalStatus.CODE3
        if "RTN" in tokens or key.startswith("RTN") or "RETURN" in key:
            if "ATL" in key:
                return CanonicalStatus.RTN_ATLS
            if "AS" in tokens or key.endswith("RTNAS") or "ASSUBMITTED" in key:
                return CanonicalStatus.RTN_AS
            return CanonicalStatus.RTN_ATLS
        if "UR" in tokens or key.startswith("URDAR") or key.startswith("URATJV") or "UNDERREVIEW" in key:
            if "DAR" in key:
                return CanonicalStatus.UR_DAR
            return CanonicalStatus.UR_ATJV
        if "AR" in tokens or key.startswith("ARATJV") or "ADVANCE" in key:
            return CanonicalStatus.AR_ATJV
        if "APPROVED" in key:
            if "COMMENT" in key or "NOTED" in key:
                return CanonicalStatus.CODE2
            return CanonicalStatus.CODE1
        code = _CODE_RE.search(key)
        if code:
            return CanonicalStatus(f"CODE{code.group(1)}")
        if "PENDING" in key or "AWAITING" in key or "NOTSUBMITTED" in key:
            return CanonicalStatus.PENDING
        return None

    def looks_like_status_column(self, values: Iterable[Any]) -> bool:
        """True when any non-placeholder sample value is an exact vocabulary hit."""
        for value in values:
            if value is None:
                continue
            text = str(value).strip()
            if not text or text.lower() in PENDING_TOKENS:
                continue
            if self.vocabulary.knows(text):
                return True
        return False


def normalize_status(raw: Any, vocabulary: ProjectVocabulary | str = ATLAS) -> str:
    return StatusNormalizer(vocabulary).normalize(raw).value
