"""
    Reconcile marker lists (summary statistics, reference panel, test panel) by
    chromosome and position, resolving allele orientation.

    A marker table is a DataFrame with the columns:
    CHR, POS, A1, A2

    CHR: chromosome, with any leading "chr" (case-insensitive) removed
    POS: base-pair position
    A1: the alternate (effect, counted) allele
    A2: the reference allele

    The query table passed to `match_markers` may omit one of A1 or A2.
"""

import logging
from collections.abc import Sequence
from enum import Enum

import numpy as np
import pandas as pd
from msgspec import Struct

logger = logging.getLogger(__name__)

CHROM_COLUMN = "CHR"
POS_COLUMN = "POS"
A1_COLUMN = "A1"
A2_COLUMN = "A2"
MARKER_COLUMNS = [CHROM_COLUMN, POS_COLUMN, A1_COLUMN, A2_COLUMN]

QUERY_ROW_COLUMN = "query_row"
REF_ROW_COLUMN = "ref_row"
ALLELE_COMPARISON_COLUMN = "allele_comparison"

COMPLEMENT = {"A": "T", "T": "A", "C": "G", "G": "C"}


class StrEnum(str, Enum):
    def __str__(self):
        return self.value


class AlleleMatchKind(StrEnum):
    MATCH = "Direct Match"
    SWAPPED = "A1 Is Reference A2"
    FLIPPED = "Complementary Strand"
    FLIPPED_SWAPPED = "Complementary Strand, A1 Is Reference A2"
    NO_MATCH = "Alleles Do Not Match"


ORIENTATION_SIGN = {
    AlleleMatchKind.MATCH: 1,
    AlleleMatchKind.SWAPPED: -1,
    AlleleMatchKind.FLIPPED: 1,
    AlleleMatchKind.FLIPPED_SWAPPED: -1,
}


class MarkerMatch(Struct, frozen=True):
    """Correspondence between a query marker list and a reference marker list.

    Attributes
    ----------
    order: np.ndarray of int
        Query row indices, one per extracted reference row, in reference-list order.
        ``query.iloc[order]`` lines up with ``reference[ref_extract]``.
    rev: np.ndarray of int
        +1 where the query A1 is the reference A1, -1 where it is the reference A2.
        Multiplying query-oriented values by ``rev`` re-expresses them relative to
        the reference A1.
    ref_extract: np.ndarray of bool
        Mask over the reference list, True where a usable match exists.
    """

    order: np.ndarray
    rev: np.ndarray
    ref_extract: np.ndarray

    @property
    def n_matched(self) -> int:
        return len(self.order)

    @property
    def is_empty(self) -> bool:
        return self.n_matched == 0

    @classmethod
    def empty(cls, n_reference: int) -> "MarkerMatch":
        return cls(
            order=np.zeros(0, dtype=np.int64),
            rev=np.zeros(0, dtype=np.int64),
            ref_extract=np.zeros(n_reference, dtype=bool),
        )


def normalize_chromosome(chromosomes: Sequence | pd.Series | np.ndarray) -> pd.Series:
    """Represent chromosomes as strings without a leading 'chr' (case-insensitive)."""
    return (
        pd.Series(np.asarray(chromosomes)).astype(str).str.replace(r"^chr", "", case=False, regex=True)
    )


def flip_strand(alleles: pd.Series) -> pd.Series:
    """Complement single-base alleles. Anything else becomes missing."""
    return alleles.map(COMPLEMENT)


def make_marker_table(
    chrom: Sequence | np.ndarray,
    pos: Sequence | np.ndarray,
    a1: Sequence | np.ndarray | None = None,
    a2: Sequence | np.ndarray | None = None,
) -> pd.DataFrame:
    """Build a normalized marker table. At least one of a1/a2 must be given."""
    if a1 is None and a2 is None:
        raise ValueError(
            "At least one of A1 (alternative allele) or A2 (reference allele) must be specified. "
            "Preferably both."
        )
    n_markers = len(chrom)
    if len(pos) != n_markers:
        raise ValueError(f"chrom and pos must have the same length, got {n_markers} and {len(pos)}")

    table = pd.DataFrame(
        {
            CHROM_COLUMN: normalize_chromosome(chrom).to_numpy(),
            POS_COLUMN: np.asarray(pos, dtype=np.int64),
        }
    )
    for column, alleles in ((A1_COLUMN, a1), (A2_COLUMN, a2)):
        if alleles is None:
            table[column] = None
            continue
        if len(alleles) != n_markers:
            raise ValueError(f"{column} must have length {n_markers}, got {len(alleles)}")
        table[column] = pd.Series(np.asarray(alleles)).astype(str).str.upper().to_numpy()

    return table


def markers_from_loci(loci: Sequence[str] | np.ndarray) -> pd.DataFrame:
    """Build a marker table from loci formatted as chr{CHR}:{POS}:{REF}:{ALT}.

    The alternate allele is the counted allele of a dosage matrix, so it becomes A1.
    """
    parts = pd.Series(np.asarray(loci), dtype=object).str.split(":", expand=True)
    if parts.shape[1] != 4:
        raise ValueError("Loci must be formatted as chr:pos:ref:alt")
    return make_marker_table(chrom=parts[0], pos=parts[1].astype(np.int64), a1=parts[3], a2=parts[2])


def is_ambiguous(a1: pd.Series, a2: pd.Series) -> pd.Series:
    """True where the allele pair is self-complementary (A/T, C/G)."""
    return (flip_strand(a1) == a2).fillna(False).astype(bool)


def _alleles_equal(query_alleles: pd.Series, ref_alleles: pd.Series) -> np.ndarray:
    # an unknown query allele is compatible with anything
    return (query_alleles.isna() | (query_alleles == ref_alleles).fillna(False)).to_numpy(dtype=bool)


def compare_alleles(merged: pd.DataFrame) -> pd.Series:
    """Describe how query alleles relate to reference alleles for each joined row."""
    query_a1, query_a2 = merged[A1_COLUMN], merged[A2_COLUMN]
    ref_a1, ref_a2 = merged[f"{A1_COLUMN}_ref"], merged[f"{A2_COLUMN}_ref"]

    flipped_a1 = flip_strand(query_a1).where(query_a1.notna())
    flipped_a2 = flip_strand(query_a2).where(query_a2.notna())

    def _known(alleles, flipped):
        # a known allele without a complement cannot match on the other strand
        return flipped.where(alleles.isna() | flipped.notna(), "-")

    flipped_a1 = _known(query_a1, flipped_a1)
    flipped_a2 = _known(query_a2, flipped_a2)

    conditions = [
        _alleles_equal(query_a1, ref_a1) & _alleles_equal(query_a2, ref_a2),
        _alleles_equal(query_a1, ref_a2) & _alleles_equal(query_a2, ref_a1),
        _alleles_equal(flipped_a1, ref_a1) & _alleles_equal(flipped_a2, ref_a2),
        _alleles_equal(flipped_a1, ref_a2) & _alleles_equal(flipped_a2, ref_a1),
    ]
    choices = [
        AlleleMatchKind.MATCH.value,
        AlleleMatchKind.SWAPPED.value,
        AlleleMatchKind.FLIPPED.value,
        AlleleMatchKind.FLIPPED_SWAPPED.value,
    ]
    kinds = np.select(conditions, choices, default=AlleleMatchKind.NO_MATCH.value)
    return pd.Series(kinds, index=merged.index, dtype=object)


def match_markers(
    query: pd.DataFrame,
    reference: pd.DataFrame,
    exclude_ambiguous: bool = True,
    drop_duplicates: bool = True,
) -> MarkerMatch:
    """
    Match a query marker table against a reference marker table.

    Rows are joined on (CHR, POS). Reference markers with self-complementary
    alleles are dropped first when `exclude_ambiguous` is set; alleles are then
    reconciled (direct, swapped, complementary strand, complementary strand and
    swapped, in that order of preference) and irreconcilable rows are dropped.
    Finally, when `drop_duplicates` is set, only the first match of every
    reference row and of every query row is kept.

    `rev` is -1 wherever the query A1 is the reference A2 (with or without a
    strand flip): a value oriented to the query A1 must be negated to refer to
    the reference A1.

    Returns an empty correspondence, rather than raising, when nothing matches.
    """
    for name, table in (("query", query), ("reference", reference)):
        missing = {CHROM_COLUMN, POS_COLUMN} - set(table.columns)
        if missing:
            raise ValueError(f"{name} marker table is missing columns: {missing}")

    if len(query) == 0 or len(reference) == 0:
        logger.warning("Nothing to match, one of the marker tables is empty")
        return MarkerMatch.empty(len(reference))

    for column in (A1_COLUMN, A2_COLUMN):
        if column not in reference.columns or reference[column].isna().any():
            raise ValueError(f"reference marker table must define {column} for every marker")

    query_alleles = [c for c in (A1_COLUMN, A2_COLUMN) if c in query.columns and query[c].notna().any()]
    if not query_alleles:
        raise ValueError("query marker table must define at least one of A1 or A2")

    query_df = pd.DataFrame(
        {
            CHROM_COLUMN: normalize_chromosome(query[CHROM_COLUMN]).to_numpy(),
            POS_COLUMN: np.asarray(query[POS_COLUMN], dtype=np.int64),
            A1_COLUMN: query[A1_COLUMN].to_numpy() if A1_COLUMN in query_alleles else None,
            A2_COLUMN: query[A2_COLUMN].to_numpy() if A2_COLUMN in query_alleles else None,
            QUERY_ROW_COLUMN: np.arange(len(query)),
        }
    )
    ref_df = pd.DataFrame(
        {
            CHROM_COLUMN: normalize_chromosome(reference[CHROM_COLUMN]).to_numpy(),
            POS_COLUMN: np.asarray(reference[POS_COLUMN], dtype=np.int64),
            A1_COLUMN: reference[A1_COLUMN].astype(str).str.upper().to_numpy(),
            A2_COLUMN: reference[A2_COLUMN].astype(str).str.upper().to_numpy(),
            REF_ROW_COLUMN: np.arange(len(reference)),
        }
    )
    for column in (A1_COLUMN, A2_COLUMN):
        known = query_df[column].notna()
        query_df.loc[known, column] = query_df.loc[known, column].astype(str).str.upper()

    if exclude_ambiguous:
        ambiguous = is_ambiguous(ref_df[A1_COLUMN], ref_df[A2_COLUMN])
        logger.debug("Excluding %d ambiguous reference markers", int(ambiguous.sum()))
        ref_df = ref_df[~ambiguous.to_numpy()]

    merged = query_df.merge(ref_df, on=[CHROM_COLUMN, POS_COLUMN], suffixes=("", "_ref"))

    if merged.empty:
        logger.warning("No markers match on chromosome and position")
        return MarkerMatch.empty(len(reference))

    merged[ALLELE_COMPARISON_COLUMN] = compare_alleles(merged)
    logger.debug("Allele comparison: %s", merged[ALLELE_COMPARISON_COLUMN].value_counts().to_dict())

    merged = merged[merged[ALLELE_COMPARISON_COLUMN] != AlleleMatchKind.NO_MATCH.value]
    merged = merged.sort_values([REF_ROW_COLUMN, QUERY_ROW_COLUMN], kind="stable")

    if drop_duplicates:
        merged = merged.drop_duplicates(subset=REF_ROW_COLUMN, keep="first")
        merged = merged.drop_duplicates(subset=QUERY_ROW_COLUMN, keep="first")
    elif merged[REF_ROW_COLUMN].duplicated().any() or merged[QUERY_ROW_COLUMN].duplicated().any():
        raise ValueError(
            "Markers are duplicated by chromosome and position; set drop_duplicates=True "
            "to keep the first occurrence."
        )

    if merged.empty:
        logger.warning("No markers have reconcilable alleles")
        return MarkerMatch.empty(len(reference))

    ref_extract = np.zeros(len(reference), dtype=bool)
    ref_extract[merged[REF_ROW_COLUMN].to_numpy()] = True

    rev = merged[ALLELE_COMPARISON_COLUMN].map(
        {kind.value: sign for kind, sign in ORIENTATION_SIGN.items()}
    )

    return MarkerMatch(
        order=merged[QUERY_ROW_COLUMN].to_numpy(dtype=np.int64),
        rev=rev.to_numpy(dtype=np.int64),
        ref_extract=ref_extract,
    )


def apply_orientation(values: np.ndarray, rev: np.ndarray) -> np.ndarray:
    """Multiply each row of `values` by the matching orientation sign.

    Works on vectors (one value per marker) and on coefficient paths
    (markers x penalty values). Applying the same signs twice is the identity.
    """
    values = np.asarray(values)
    rev = np.asarray(rev)
    if values.shape[0] != rev.shape[0]:
        raise ValueError(f"Expected {rev.shape[0]} rows, got {values.shape[0]}")
    if values.ndim == 1:
        return values * rev
    return values * rev[:, np.newaxis]
