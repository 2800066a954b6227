"""
    Pseudovalidation: choose s and lambda for a lassosum pipeline result without a validation phenotype.

    For a coefficient vector b on the correlation scale, the pseudovalidation statistic is

        (r_shrunk' b) / sqrt(var(PGS))

    where r_shrunk are the summary statistic correlations shrunk towards zero by
    their local false discovery rate, and PGS are the polygenic scores of the
    test panel computed with b / sd.

    See: Mak et al. (2017), Polygenic scores via penalized regression on summary statistics.
"""

import logging

import numpy as np
import pandas as pd
from scipy.stats import median_abs_deviation  # type: ignore
from statsmodels.stats.multitest import NullDistribution, local_fdr as efron_local_fdr  # type: ignore

from lassosum.prs.genotypes import GenotypePanel, parse_select
from lassosum.prs.markers import apply_orientation, match_markers
from lassosum.prs.pipeline import (
    calculate_pgs,
    destandardize_coefficients,
    destandardize_pipeline_result,
    infinite_if_nonpositive,
)
from lassosum.prs.prs_types import LassosumPipelineResult, PseudovalidationResult
from lassosum.prs.sumstats import COR_COLUMN
from lassosum.utils.timer import Timer

logger = logging.getLogger(__name__)

# Too few correlations for the histogram-based density estimate
MIN_MARKERS_FOR_LOCAL_FDR = 50


def local_fdr(cor: np.ndarray) -> np.ndarray:
    """
    Efron's local false discovery rate of each correlation.

    Correlations are Fisher-transformed and standardized with a robust (MAD) scale;
    the null distribution's mean, scale and proportion are then estimated
    empirically from the center of the distribution. This approximates, but does
    not reproduce, fdrtool with `statistic="correlation"`; the two can rank
    markers differently.

    Returns ones (nothing is significant) when there are too few correlations, or
    they have no spread.
    """
    cor = np.asarray(cor, dtype=np.float64)
    if len(cor) < MIN_MARKERS_FOR_LOCAL_FDR:
        logger.warning(
            "Only %d correlations; local fdr set to 1 without shrinkage estimation", len(cor)
        )
        return np.ones(len(cor))

    z = np.arctanh(cor)
    scale = median_abs_deviation(z, scale="normal")
    if not np.isfinite(scale) or scale == 0:
        logger.warning("Correlations have no spread; local fdr set to 1")
        return np.ones(len(cor))

    z = (z - np.median(z)) / scale
    null = NullDistribution(z, estimate_mean=True, estimate_scale=True, estimate_null_proportion=True)
    null_proportion = min(float(null.null_proportion), 1.0)
    logger.debug(
        "Empirical null: mean %f, sd %f, proportion %f", null.mean, null.sd, null_proportion
    )

    lfdr = efron_local_fdr(z, null_proportion=null_proportion, null_pdf=null.pdf)
    return np.clip(np.nan_to_num(lfdr, nan=1.0), 0.0, 1.0)


def pseudovalidation(
    panel: GenotypePanel,
    beta: np.ndarray,
    cor: np.ndarray,
    extract: np.ndarray | None = None,
    keep: np.ndarray | None = None,
    sd: np.ndarray | None = None,
) -> np.ndarray:
    """
    Pseudovalidation statistic of every column of `beta`.

    Parameters
    ----------
    panel: GenotypePanel
    beta: np.ndarray, shape (n_extracted_markers, k)
        Coefficients on the correlation scale.
    cor: np.ndarray
        (Shrunk) correlations, aligned with the rows of beta.
    extract, keep: np.ndarray of bool, optional
        Markers and participants of the panel to use.
    sd: np.ndarray, optional
        Standard deviation of each extracted marker; computed from the panel if not given.

    Returns
    -------
    np.ndarray of length k. Undefined values are -inf.
    """
    beta = np.asarray(beta, dtype=np.float64)
    if beta.ndim == 1:
        beta = beta[:, np.newaxis]
    cor = np.asarray(cor, dtype=np.float64)
    if len(cor) != beta.shape[0]:
        raise ValueError(f"cor has {len(cor)} entries but beta has {beta.shape[0]} rows")

    if sd is None:
        sd = panel.standard_deviation(extract=extract, keep=keep)

    with np.errstate(divide="ignore", invalid="ignore"):
        weight = 1.0 / np.asarray(sd, dtype=np.float64)
    weight[~np.isfinite(weight)] = 0.0

    pgs = panel.score(beta * weight[:, np.newaxis], extract=extract, keep=keep)
    centered = pgs - pgs.mean(axis=0) if len(pgs) > 0 else pgs

    with np.errstate(divide="ignore", invalid="ignore"):
        values = (cor @ beta) / np.sqrt(np.mean(centered**2, axis=0))
    values = np.where(np.isfinite(values), values, -np.inf)
    return np.atleast_1d(values)


def standardized_coefficients(result: LassosumPipelineResult) -> dict[float, np.ndarray]:
    """The result's coefficients on the correlation scale."""
    if not result.destandardized:
        return result.beta
    if result.sd is None:
        raise ValueError("A destandardized pipeline result must carry its standard deviations")
    # beta / inf is zero, so markers without a finite sd stay at zero
    sd = np.where(np.isfinite(result.sd), result.sd, 0.0)
    return {shrink: beta * sd[:, np.newaxis] for shrink, beta in result.beta.items()}


def pseudovalidate(
    result: LassosumPipelineResult,
    test_panel: GenotypePanel | None = None,
    keep=None,
    remove=None,
    destandardize: bool = False,
    exclude_ambiguous: bool = True,
    shrink_with_fdr: bool = True,
) -> PseudovalidationResult:
    """
    Pseudovalidate every (s, lambda) of a pipeline result and pick the best.

    Parameters
    ----------
    result: LassosumPipelineResult
    test_panel: GenotypePanel, optional
        Panel to validate in. Defaults to the result's test panel (and its participant
        selection); a new panel is matched against the result's summary statistics.
    keep, remove:
        Participants of `test_panel`, see `parse_select`. Requires `test_panel`.
    destandardize: bool
        Destandardize the returned scores' coefficients with the panel's standard deviations.
    exclude_ambiguous: bool
        Exclude A/T and C/G markers when matching a new panel.
    shrink_with_fdr: bool
        Shrink correlations by (1 - local fdr) before computing the statistic.
    """
    if (keep is not None or remove is not None) and test_panel is None:
        raise ValueError("Please specify test_panel if you specify keep or remove")
    if destandardize and result.destandardized:
        raise ValueError("beta in the pipeline result is already destandardized")

    if test_panel is None and destandardize:
        result = destandardize_pipeline_result(result)

    beta = standardized_coefficients(result)
    cor = result.sumstats[COR_COLUMN].to_numpy()

    if test_panel is not None:
        logger.info("Coordinating lassosum output with test data...")
        panel = test_panel
        parsed_keep = parse_select(panel.participants, keep=keep, remove=remove)
        m = match_markers(result.sumstats, panel.markers, exclude_ambiguous=exclude_ambiguous, drop_duplicates=True)
        beta = {shrink: apply_orientation(b[m.order], m.rev) for shrink, b in beta.items()}
        cor = apply_orientation(cor[m.order], m.rev)
        extract = m.ref_extract
        sd = None
    else:
        panel = result.test_panel
        parsed_keep = result.keep_test
        extract = result.test_extract
        sd = result.sd

    if sd is None:
        sd = panel.standard_deviation(extract=extract, keep=parsed_keep)
    sd = infinite_if_nonpositive(sd)

    if test_panel is None:
        scored_beta = result.beta
    elif destandardize or result.destandardized:
        scored_beta = destandardize_coefficients(beta, sd)
    else:
        scored_beta = beta

    if test_panel is None and result.pgs is not None:
        pgs = result.pgs
    else:
        logger.info("Calculating PGS...")
        pgs = calculate_pgs(panel, scored_beta, result.s, result.lambdas, extract, parsed_keep)

    if shrink_with_fdr:
        logger.info("Estimating local fdr ...")
        cor_shrunk = cor * (1.0 - local_fdr(cor))
    else:
        cor_shrunk = cor

    logger.info("Performing pseudovalidation ...")
    with Timer("Pseudovalidation", logger):
        values = pseudovalidation(
            panel,
            np.hstack([beta[shrink] for shrink in result.s]),
            cor_shrunk,
            extract=extract,
            keep=parsed_keep,
            sd=sd,
        )

    n_lambdas = len(result.lambdas)
    validation_table = pd.DataFrame(
        {
            "lambda": np.tile(result.lambdas, len(result.s)),
            "s": np.repeat(result.s, n_lambdas),
            "value": values,
        }
    )

    # first maximum, s outer and lambda inner
    best = int(np.argmax(values))
    best_s = float(result.s[best // n_lambdas])
    best_lambda = float(result.lambdas[best % n_lambdas])
    logger.info("Best s = %s, best lambda = %s", best_s, best_lambda)

    return PseudovalidationResult(
        lambdas=result.lambdas,
        s=result.s,
        pgs=pgs,
        validation_table=validation_table,
        best_s=best_s,
        best_lambda=best_lambda,
        best_pgs=pgs.iloc[:, best],
        best_beta=scored_beta[best_s][:, best % n_lambdas],
    )
