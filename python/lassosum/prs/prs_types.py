"""Data types produced by lassosum regression, the pipeline and pseudovalidation."""

import numpy as np
import pandas as pd
from msgspec import Struct

from lassosum.prs.genotypes import GenotypePanel


class LassosumResult(Struct, frozen=True):
    """Coefficients for one shrinkage value over a grid of penalties.

    Attributes
    ----------
    beta: np.ndarray, shape (n_markers, n_lambdas)
        Coefficients on the correlation (standardized) scale.
    lambdas: np.ndarray
        Penalties, in the order they were solved.
    shrink: float
        The shrinkage parameter s; 1 means LD is ignored.
    conv: np.ndarray of bool
        Whether coordinate descent converged in every block, per lambda.
    loss: np.ndarray
        b'((1-s)R + sI)b - 2b'r, per lambda.
    fbeta: np.ndarray
        loss + 2 * lambda * |b|_1, per lambda.
    sd: np.ndarray | None
        Reference panel standard deviation per marker, when genotypes were read.
    """

    beta: np.ndarray
    lambdas: np.ndarray
    shrink: float
    conv: np.ndarray
    loss: np.ndarray
    fbeta: np.ndarray
    sd: np.ndarray | None = None

    @property
    def nparams(self) -> np.ndarray:
        """Number of non-zero coefficients per lambda."""
        return np.count_nonzero(self.beta, axis=0)


class LassosumPipelineResult(Struct, frozen=True):
    """Output of `lassosum_pipeline`.

    Attributes
    ----------
    beta: dict[float, np.ndarray]
        One (n_markers x n_lambdas) coefficient matrix per s, for every marker
        common to the summary statistics and the test panel, in test panel order.
    test_extract: np.ndarray of bool
        Mask over the test panel's markers that have coefficients.
    also_in_refpanel: np.ndarray of bool
        Mask over the test panel's markers that are also in the reference panel,
        i.e. whose coefficients for s < 1 come from LD-aware lassosum.
    sumstats: pd.DataFrame
        Summary statistics (CHR, POS, A1, A2, COR) oriented to the test panel,
        aligned with the rows of each beta matrix.
    lambdas: np.ndarray
    s: np.ndarray
    test_panel: GenotypePanel
    keep_test: np.ndarray | None
        Participant mask of the test panel, None for everyone.
    destandardized: bool
        Whether beta has been divided by the test panel standard deviations.
    sd: np.ndarray | None
        Standard deviations used for destandardization.
    pgs: pd.DataFrame | None
        Polygenic scores, participants x (s, lambda). None when no test panel was given.
    """

    beta: dict[float, np.ndarray]
    test_extract: np.ndarray
    also_in_refpanel: np.ndarray
    sumstats: pd.DataFrame
    lambdas: np.ndarray
    s: np.ndarray
    test_panel: GenotypePanel
    keep_test: np.ndarray | None = None
    destandardized: bool = False
    sd: np.ndarray | None = None
    pgs: pd.DataFrame | None = None

    def __post_init__(self):
        n_markers = int(np.sum(self.test_extract))
        for shrink, beta in self.beta.items():
            if beta.shape != (n_markers, len(self.lambdas)):
                raise ValueError(
                    f"beta for s={shrink} has shape {beta.shape}, expected {(n_markers, len(self.lambdas))}"
                )
        if len(self.sumstats) != n_markers:
            raise ValueError(f"sumstats has {len(self.sumstats)} rows, expected {n_markers}")

    @property
    def in_refpanel(self) -> np.ndarray:
        """Rows of each beta matrix that are also in the reference panel."""
        return self.also_in_refpanel[self.test_extract]

    def beta_matrix(self) -> np.ndarray:
        """All coefficient paths side by side, s outer and lambda inner."""
        return np.hstack([self.beta[shrink] for shrink in self.s])


class PseudovalidationResult(Struct, frozen=True):
    """Output of `pseudovalidate`.

    Attributes
    ----------
    lambdas: np.ndarray
    s: np.ndarray
    pgs: pd.DataFrame
        Polygenic scores, participants x (s, lambda).
    validation_table: pd.DataFrame
        Columns lambda, s and value: the pseudovalidation statistic of every combination.
    best_s: float
    best_lambda: float
    best_pgs: pd.Series
    best_beta: np.ndarray
    """

    lambdas: np.ndarray
    s: np.ndarray
    pgs: pd.DataFrame
    validation_table: pd.DataFrame
    best_s: float
    best_lambda: float
    best_pgs: pd.Series
    best_beta: np.ndarray
