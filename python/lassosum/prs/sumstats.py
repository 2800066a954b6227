"""
    Load GWAS summary statistics and express them as marker-phenotype correlations.

    Summary statistics are expected to have the columns:
    CHR, POS, A1, A2, and either COR, or P and BETA (and N, unless a sample size is given)

    A1: the effect allele
    A2: the other allele
    COR: correlation between the A1 allele count and the phenotype
    P: p-value of association
    BETA: the regression coefficient or log odds ratio, used only for its sign
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from pyarrow import feather  # type: ignore
from scipy.stats import t as t_dist  # type: ignore

from lassosum.prs.markers import A1_COLUMN, A2_COLUMN, CHROM_COLUMN, POS_COLUMN, normalize_chromosome

logger = logging.getLogger(__name__)

COR_COLUMN = "COR"
P_COLUMN = "P"
BETA_COLUMN = "BETA"
N_COLUMN = "N"

SUMSTAT_COLUMNS = [CHROM_COLUMN, POS_COLUMN, A1_COLUMN, A2_COLUMN, COR_COLUMN]

FEATHER_SUFFIXES = {".feather", ".arrow", ".ipc"}


def p2cor(p: np.ndarray, n: np.ndarray | int, sign: np.ndarray | None = None) -> np.ndarray:
    """
    Convert p-values to correlations, via the t distribution with n - 2 degrees of freedom.

    Parameters
    ----------
    p: np.ndarray
        Two-sided p-values in (0, 1].
    n: np.ndarray | int
        Sample size(s) behind each p-value.
    sign: np.ndarray, optional
        Anything whose sign gives the direction of effect (e.g. BETA or log(OR)).
    """
    p = np.asarray(p, dtype=np.float64)
    n = np.broadcast_to(np.asarray(n, dtype=np.float64), p.shape)

    if np.isnan(p).any():
        raise ValueError("p must not contain missing values")
    if not np.all((p > 0) & (p <= 1)):
        raise ValueError("p must lie in (0, 1]")
    if not np.all(n > 2):
        raise ValueError("n must be greater than 2")

    direction = np.ones_like(p) if sign is None else np.sign(np.asarray(sign, dtype=np.float64))
    if direction.shape != p.shape:
        raise ValueError("sign must have the same length as p")

    t = direction * t_dist.isf(p / 2, df=n - 2)
    return t / np.sqrt(n - 2 + t**2)


def _read_table(path: Path) -> pd.DataFrame:
    if path.suffix in FEATHER_SUFFIXES:
        return feather.read_feather(str(path))
    return pd.read_csv(path, sep=None, engine="python")


def load_sumstats(path: str | Path, sample_size: int | None = None) -> pd.DataFrame:
    """Load summary statistics into a frame with the columns CHR, POS, A1, A2, COR."""
    path = Path(path)
    try:
        sumstats = _read_table(path)
        logger.info("Successfully loaded summary statistics from: %s", path)
    except Exception as e:
        logger.exception("Failed to load summary statistics from: %s: %s", path, e)
        raise e

    sumstats.columns = [str(column).upper() for column in sumstats.columns]

    missing = {CHROM_COLUMN, POS_COLUMN} - set(sumstats.columns)
    if missing:
        raise ValueError(f"Summary statistics are missing columns: {missing}")
    if A1_COLUMN not in sumstats.columns and A2_COLUMN not in sumstats.columns:
        raise ValueError("Summary statistics must have at least one of the A1 or A2 columns")

    if COR_COLUMN not in sumstats.columns:
        if P_COLUMN not in sumstats.columns:
            raise ValueError("Summary statistics must have either a COR column or a P column")
        if sample_size is None and N_COLUMN not in sumstats.columns:
            raise ValueError("Converting p-values to correlations requires an N column or a sample size")

        n = sumstats[N_COLUMN].to_numpy() if sample_size is None else sample_size
        sign = sumstats[BETA_COLUMN].to_numpy() if BETA_COLUMN in sumstats.columns else None
        if sign is None:
            logger.warning("No BETA column; correlations derived from p-values will all be positive")
        sumstats[COR_COLUMN] = p2cor(sumstats[P_COLUMN].to_numpy(), n, sign)

    result = pd.DataFrame(
        {
            CHROM_COLUMN: normalize_chromosome(sumstats[CHROM_COLUMN]).to_numpy(),
            POS_COLUMN: sumstats[POS_COLUMN].astype(np.int64).to_numpy(),
            A1_COLUMN: sumstats[A1_COLUMN].to_numpy() if A1_COLUMN in sumstats.columns else None,
            A2_COLUMN: sumstats[A2_COLUMN].to_numpy() if A2_COLUMN in sumstats.columns else None,
            COR_COLUMN: sumstats[COR_COLUMN].astype(np.float64).to_numpy(),
        }
    )

    n_missing = int(result[COR_COLUMN].isna().sum())
    if n_missing:
        logger.warning("Dropping %d markers with missing correlations", n_missing)
        result = result.dropna(subset=[COR_COLUMN]).reset_index(drop=True)

    return result[SUMSTAT_COLUMNS]
