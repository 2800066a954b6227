"""
    Genotype panels: reference and test datasets that supply marker definitions,
    genotype dosages, per-marker standard deviations and polygenic scores.

    Dosage matrices are Arrow IPC (feather) files with a `locus` column
    formatted as chr{CHR}:{POS}:{REF}:{ALT}, and one column per sample holding
    the alternate allele count (0, 1, 2), with -1 for a missing genotype.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np
import pandas as pd
import pyarrow as pa  # type: ignore
import pyarrow.dataset as ds  # type: ignore

from lassosum.prs.markers import MARKER_COLUMNS, make_marker_table, markers_from_loci
from lassosum.utils.config import get_marker_chunk_size

logger = logging.getLogger(__name__)

GENOTYPE_DOSAGE_LOCUS_COLUMN = "locus"
MISSING_DOSAGE = -1

Selection = np.ndarray | Sequence[str] | pd.Index | None


def parse_select(participants: pd.Index, keep: Selection = None, remove: Selection = None) -> np.ndarray | None:
    """
    Resolve keep/remove participant specifications into a boolean mask.

    keep, remove: boolean mask over `participants`, or a collection of sample ids.

    Returns None when every participant is selected.
    """
    if keep is not None and remove is not None:
        raise ValueError("keep and remove cannot both be specified")

    if keep is None and remove is None:
        return None

    selection = keep if keep is not None else remove
    selection = np.asarray(selection)

    if selection.dtype == bool:
        if len(selection) != len(participants):
            raise ValueError(
                f"A boolean selection must have one entry per participant ({len(participants)}), "
                f"got {len(selection)}"
            )
        mask = selection.copy()
    else:
        ids = pd.Index(selection.astype(str))
        unknown = ids.difference(participants.astype(str))
        if len(unknown) > 0:
            raise ValueError(f"Unknown participants: {list(unknown[:10])}")
        mask = participants.astype(str).isin(ids)

    if remove is not None:
        mask = ~mask

    return np.asarray(mask, dtype=bool)


def _column_moments(genotypes: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-column observed count, mean and sample variance, ignoring NaN."""
    observed = ~np.isnan(genotypes)
    n_observed = observed.sum(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        means = np.where(observed, genotypes, 0.0).sum(axis=0) / n_observed
        centered = np.where(observed, genotypes - means, 0.0)
        variance = (centered**2).sum(axis=0) / (n_observed - 1)
    return n_observed, means, variance


def _mean_impute(genotypes: np.ndarray) -> np.ndarray:
    missing = np.isnan(genotypes)
    if not missing.any():
        return genotypes
    n_observed, means, _ = _column_moments(genotypes)
    means = np.where(n_observed > 0, means, 0.0)
    return np.where(missing, means[np.newaxis, :], genotypes)


def normalize_genotypes(genotypes: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Mean-impute, center and scale each column to unit norm, so that X'X is
    the empirical correlation matrix. Constant columns become all zero.

    Returns
    -------
    normalized: np.ndarray, same shape as genotypes
    sd: np.ndarray
        Sample standard deviation of each column over observed genotypes,
        as `GenotypePanel.standard_deviation` computes it. NaN with fewer than 2.
    """
    n_observed, _, variance = _column_moments(genotypes)
    imputed = _mean_impute(genotypes)
    centered = imputed - imputed.mean(axis=0)
    norms = np.sqrt((centered**2).sum(axis=0))
    with np.errstate(invalid="ignore", divide="ignore"):
        normalized = np.where(norms > 0, centered / norms, 0.0)
    sd = np.where(n_observed > 1, np.sqrt(np.abs(variance)), np.nan)
    return normalized, sd


class GenotypePanel(ABC):
    """A set of participants genotyped at an ordered list of markers."""

    @property
    @abstractmethod
    def markers(self) -> pd.DataFrame:
        """Marker table (CHR, POS, A1, A2), A1 being the counted allele."""

    @property
    @abstractmethod
    def participants(self) -> pd.Index:
        """Sample ids, in genotype row order."""

    @abstractmethod
    def read_genotypes(self, marker_indices: np.ndarray, keep: np.ndarray | None = None) -> np.ndarray:
        """
        Read dosages for the markers at `marker_indices` (in the given order).

        Returns
        -------
        np.ndarray, shape (n_kept_participants, n_markers)
            Alternate allele counts as floats, NaN where missing.
        """

    @property
    def n_markers(self) -> int:
        return len(self.markers)

    @property
    def n_participants(self) -> int:
        return len(self.participants)

    def extract_indices(self, extract: np.ndarray | None) -> np.ndarray:
        if extract is None:
            return np.arange(self.n_markers)
        extract = np.asarray(extract, dtype=bool)
        if len(extract) != self.n_markers:
            raise ValueError(f"extract must have one entry per marker ({self.n_markers}), got {len(extract)}")
        return np.flatnonzero(extract)

    def _chunks(self, marker_indices: np.ndarray):
        chunk_size = get_marker_chunk_size()
        for start in range(0, len(marker_indices), chunk_size):
            yield start, marker_indices[start : start + chunk_size]

    def kept_participants(self, keep: np.ndarray | None = None) -> pd.Index:
        if keep is None:
            return self.participants
        return self.participants[np.asarray(keep, dtype=bool)]

    def standard_deviation(self, extract: np.ndarray | None = None, keep: np.ndarray | None = None) -> np.ndarray:
        """Sample standard deviation of each extracted marker's dosage, ignoring missing genotypes."""
        marker_indices = self.extract_indices(extract)
        sd = np.full(len(marker_indices), np.nan)
        for start, chunk in self._chunks(marker_indices):
            n_observed, _, variance = _column_moments(self.read_genotypes(chunk, keep))
            sd[start : start + len(chunk)] = np.where(n_observed > 1, np.sqrt(np.abs(variance)), np.nan)
        return sd

    def score(
        self, weights: np.ndarray, extract: np.ndarray | None = None, keep: np.ndarray | None = None
    ) -> np.ndarray:
        """
        Polygenic scores: weighted sums of dosages, missing genotypes imputed by the marker mean.

        weights: np.ndarray, shape (n_extracted_markers,) or (n_extracted_markers, n_weight_sets)

        Returns
        -------
        np.ndarray, shape (n_kept_participants, n_weight_sets)
        """
        marker_indices = self.extract_indices(extract)
        weights = np.asarray(weights, dtype=np.float64)
        if weights.ndim == 1:
            weights = weights[:, np.newaxis]
        if weights.shape[0] != len(marker_indices):
            raise ValueError(
                f"weights must have one row per extracted marker ({len(marker_indices)}), "
                f"got {weights.shape[0]}"
            )

        pgs = np.zeros((len(self.kept_participants(keep)), weights.shape[1]))
        for start, chunk in self._chunks(marker_indices):
            chunk_weights = weights[start : start + len(chunk)]
            nonzero = np.any(chunk_weights != 0, axis=1)
            if not nonzero.any():
                continue
            genotypes = _mean_impute(self.read_genotypes(chunk[nonzero], keep))
            pgs += genotypes @ chunk_weights[nonzero]
        return pgs


class InMemoryGenotypePanel(GenotypePanel):
    """Genotypes held as a (participants x markers) array."""

    def __init__(
        self,
        markers: pd.DataFrame,
        genotypes: np.ndarray,
        participants: Sequence[str] | pd.Index | None = None,
    ):
        genotypes = np.asarray(genotypes, dtype=np.float64)
        if genotypes.ndim != 2:
            raise ValueError("genotypes must be a 2-dimensional (participants x markers) array")
        if genotypes.shape[1] != len(markers):
            raise ValueError(
                f"genotypes has {genotypes.shape[1]} markers but the marker table has {len(markers)}"
            )
        if participants is None:
            participants = [f"sample{i}" for i in range(genotypes.shape[0])]
        if len(participants) != genotypes.shape[0]:
            raise ValueError(
                f"genotypes has {genotypes.shape[0]} participants but {len(participants)} ids were given"
            )

        self._markers = make_marker_table(
            markers["CHR"].to_numpy(), markers["POS"].to_numpy(), markers["A1"].to_numpy(), markers["A2"].to_numpy()
        )
        self._genotypes = np.where(genotypes < 0, np.nan, genotypes)
        self._participants = pd.Index(participants, dtype=object)

    @property
    def markers(self) -> pd.DataFrame:
        return self._markers

    @property
    def participants(self) -> pd.Index:
        return self._participants

    def read_genotypes(self, marker_indices: np.ndarray, keep: np.ndarray | None = None) -> np.ndarray:
        genotypes = self._genotypes[:, np.asarray(marker_indices, dtype=np.int64)]
        if keep is not None:
            genotypes = genotypes[np.asarray(keep, dtype=bool)]
        return genotypes

    def __repr__(self) -> str:
        return f"InMemoryGenotypePanel({self.n_participants} participants, {self.n_markers} markers)"


class DosageMatrixPanel(GenotypePanel):
    """Genotypes stored in an Arrow IPC (feather) dosage matrix."""

    def __init__(self, path: str):
        self.path = str(path)
        self._dataset = ds.dataset(self.path, format="arrow")

        names = self._dataset.schema.names
        if GENOTYPE_DOSAGE_LOCUS_COLUMN not in names:
            raise ValueError(f"{self.path} has no '{GENOTYPE_DOSAGE_LOCUS_COLUMN}' column")

        loci = self._dataset.to_table([GENOTYPE_DOSAGE_LOCUS_COLUMN]).column(GENOTYPE_DOSAGE_LOCUS_COLUMN)
        self._markers = markers_from_loci(loci.to_pylist())[MARKER_COLUMNS]
        self._participants = pd.Index(
            [name for name in names if name != GENOTYPE_DOSAGE_LOCUS_COLUMN], dtype=object
        )
        logger.info(
            "Loaded dosage matrix %s: %d markers, %d participants",
            self.path,
            len(self._markers),
            len(self._participants),
        )

    @property
    def markers(self) -> pd.DataFrame:
        return self._markers

    @property
    def participants(self) -> pd.Index:
        return self._participants

    def read_genotypes(self, marker_indices: np.ndarray, keep: np.ndarray | None = None) -> np.ndarray:
        samples = list(self.kept_participants(keep))
        marker_indices = np.asarray(marker_indices, dtype=np.int64)
        if len(samples) == 0 or len(marker_indices) == 0:
            return np.zeros((len(samples), len(marker_indices)))

        table = self._dataset.take(pa.array(marker_indices), columns=samples)
        dosages = table.to_pandas().to_numpy(dtype=np.float64)
        return np.where(dosages <= MISSING_DOSAGE, np.nan, dosages).T

    def __eq__(self, other: object) -> bool:
        return isinstance(other, DosageMatrixPanel) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    def __repr__(self) -> str:
        return f"DosageMatrixPanel({self.path!r})"
