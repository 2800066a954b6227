"""
    Run lassosum end to end: coordinate summary statistics with a reference panel
    and a test panel, fit lassosum over a grid of (s, lambda), and compute
    polygenic scores in the test panel.

    The coefficient matrices cover every marker common to the summary statistics
    and the test panel. lassosum with s < 1 is only run on markers common to the
    summary statistics, the reference panel and the test panel; for the remaining
    markers, coefficients for s < 1 are imputed with the s = 1 (soft-thresholding)
    estimates. `also_in_refpanel` marks the markers estimated with LD.
"""

import logging
import os

import msgspec
import numpy as np
import pandas as pd
import psutil

from lassosum.prs.genotypes import GenotypePanel, parse_select
from lassosum.prs.ld_blocks import blocks_from_labels, ld_block_labels, validate_ld_blocks
from lassosum.prs.markers import (
    A1_COLUMN,
    A2_COLUMN,
    CHROM_COLUMN,
    POS_COLUMN,
    MarkerMatch,
    apply_orientation,
    make_marker_table,
    match_markers,
)
from lassosum.prs.prs_types import LassosumPipelineResult, LassosumResult
from lassosum.prs.regression import (
    DEFAULT_LAMBDAS,
    DEFAULT_MAX_ITER,
    DEFAULT_THRESHOLD,
    indeplasso,
    lassosum,
    validate_correlations,
    validate_lambdas,
)
from lassosum.prs.sumstats import COR_COLUMN, SUMSTAT_COLUMNS
from lassosum.utils.timer import Timer

logger = logging.getLogger(__name__)

DEFAULT_S = (0.2, 0.5, 0.9, 1.0)
MAX_S_VALUES = 10

PGS_COLUMN_NAMES = ["s", "lambda"]


def validate_s(s: np.ndarray | list | tuple | float) -> np.ndarray:
    s = np.unique(np.atleast_1d(np.asarray(s, dtype=np.float64)))
    if len(s) == 0:
        raise ValueError("At least one value of s must be given")
    if not np.all((s > 0) & (s <= 1)):
        raise ValueError("s must lie in (0, 1]")
    if len(s) > MAX_S_VALUES:
        raise ValueError(f"At most {MAX_S_VALUES} values of s are supported, got {len(s)}")
    return s


def _memory_usage_mb() -> float:
    return psutil.Process(os.getpid()).memory_info().rss / 1024**2


def _orient_sumstats(sumstats: pd.DataFrame, match: MarkerMatch, panel_markers: pd.DataFrame) -> pd.DataFrame:
    """Summary statistics restricted to matched markers, re-expressed relative to the panel's alleles."""
    oriented = sumstats.iloc[match.order].reset_index(drop=True)
    oriented[COR_COLUMN] = apply_orientation(oriented[COR_COLUMN].to_numpy(), match.rev)
    matched_markers = panel_markers[match.ref_extract]
    oriented[A1_COLUMN] = matched_markers[A1_COLUMN].to_numpy()
    oriented[A2_COLUMN] = matched_markers[A2_COLUMN].to_numpy()
    return oriented


def infinite_if_nonpositive(sd: np.ndarray) -> np.ndarray:
    """Treat undefined or non-positive standard deviations as infinite, so coefficients vanish."""
    sd = np.asarray(sd, dtype=np.float64)
    return np.where(np.isfinite(sd) & (sd > 0), sd, np.inf)


def destandardize_coefficients(beta: dict[float, np.ndarray], sd: np.ndarray) -> dict[float, np.ndarray]:
    """Convert correlation-scale coefficients to the raw genotype scale: beta / sd, per marker."""
    sd = infinite_if_nonpositive(sd)
    return {shrink: coefficients / sd[:, np.newaxis] for shrink, coefficients in beta.items()}


def calculate_pgs(
    panel: GenotypePanel,
    beta: dict[float, np.ndarray],
    s: np.ndarray,
    lambdas: np.ndarray,
    extract: np.ndarray,
    keep: np.ndarray | None,
) -> pd.DataFrame:
    """Polygenic scores for every (s, lambda), as a participants x (s, lambda) frame."""
    weights = np.hstack([beta[shrink] for shrink in s])
    with Timer("Calculating polygenic scores", logger):
        scores = panel.score(weights, extract=extract, keep=keep)

    columns = pd.MultiIndex.from_product([s, lambdas], names=PGS_COLUMN_NAMES)
    return pd.DataFrame(scores, index=panel.kept_participants(keep), columns=columns)


def _resolve_blocks(
    ld_blocks: pd.DataFrame | np.ndarray | None,
    ref_markers: pd.DataFrame,
    ref_extract: np.ndarray,
    sumstat_rows: np.ndarray,
) -> np.ndarray:
    if ld_blocks is None or isinstance(ld_blocks, pd.DataFrame):
        if isinstance(ld_blocks, pd.DataFrame):
            logger.info("Splitting genome by LD blocks ...")
        return ld_block_labels(
            ref_markers[CHROM_COLUMN].to_numpy()[ref_extract],
            ref_markers[POS_COLUMN].to_numpy()[ref_extract],
            ld_blocks,
        )

    # a label per summary statistic, carried over to the markers being fit
    return blocks_from_labels(np.asarray(ld_blocks)[sumstat_rows], int(np.sum(ref_extract)))


def lassosum_pipeline(
    cor: np.ndarray | pd.Series,
    chrom: np.ndarray | pd.Series,
    pos: np.ndarray | pd.Series,
    a1: np.ndarray | pd.Series | None = None,
    a2: np.ndarray | pd.Series | None = None,
    ref_panel: GenotypePanel | None = None,
    test_panel: GenotypePanel | None = None,
    ld_blocks: pd.DataFrame | np.ndarray | None = None,
    lambdas: np.ndarray = DEFAULT_LAMBDAS,
    s: np.ndarray | list | tuple = DEFAULT_S,
    destandardize: bool = False,
    exclude_ambiguous: bool = True,
    keep_ref=None,
    remove_ref=None,
    keep_test=None,
    remove_test=None,
    thr: float = DEFAULT_THRESHOLD,
    maxiter: int = DEFAULT_MAX_ITER,
) -> LassosumPipelineResult:
    """
    Run lassosum with the standard pipeline.

    Parameters
    ----------
    cor: np.ndarray
        Marker-phenotype correlations derived from summary statistics, oriented to `a1`.
    chrom, pos: np.ndarray
        Chromosome and position of each correlation.
    a1, a2: np.ndarray, optional
        Alternative (effect) and reference alleles. At least one is required.
    ref_panel: GenotypePanel, optional
        Reference panel used to estimate LD. Defaults to `test_panel`.
    test_panel: GenotypePanel, optional
        Panel in which polygenic scores are calculated. If only `ref_panel` is given,
        coefficients are returned without scores.
    ld_blocks: pd.DataFrame | np.ndarray, optional
        Either a (chr, start, stop) table of LD blocks, or one block label per
        correlation. Defaults to one block per chromosome.
    lambdas: np.ndarray
        Penalties, solved in the order given.
    s: sequence of float
        Shrinkage values in (0, 1].
    destandardize: bool
        Divide coefficients by the test panel standard deviations, giving
        coefficients on the genotype scale.
    exclude_ambiguous: bool
        Exclude A/T and C/G markers.
    keep_ref, remove_ref, keep_test, remove_test:
        Participants to keep or remove (boolean masks or sample ids); see `parse_select`.
    """
    ######################### Input validation (start) #########################
    if ref_panel is None and test_panel is None:
        raise ValueError("At least one of ref_panel or test_panel must be specified")
    if test_panel is None and destandardize:
        raise ValueError("destandardize cannot be specified without test_panel")
    if test_panel is None and (keep_test is not None or remove_test is not None):
        raise ValueError("keep_test and remove_test should not be specified without test_panel")

    cor = validate_correlations(cor)
    sumstats = make_marker_table(chrom, pos, a1, a2)
    if len(cor) != len(sumstats):
        raise ValueError(f"cor has {len(cor)} entries but {len(sumstats)} markers were given")
    sumstats[COR_COLUMN] = cor

    if isinstance(ld_blocks, pd.DataFrame):
        ld_blocks = validate_ld_blocks(ld_blocks)
    elif ld_blocks is not None and len(ld_blocks) != len(cor):
        raise ValueError(f"ld_blocks must have one label per correlation ({len(cor)}), got {len(ld_blocks)}")

    lambdas = validate_lambdas(lambdas)
    s = validate_s(s)

    notest = False
    if ref_panel is None:
        logger.info("Reference panel assumed the same as test data.")
        ref_panel = test_panel
    elif test_panel is None:
        test_panel = ref_panel
        notest = True
    onefile = ref_panel is test_panel or ref_panel == test_panel

    parsed_ref = parse_select(ref_panel.participants, keep=keep_ref, remove=remove_ref)
    parsed_test = parse_select(test_panel.participants, keep=keep_test, remove=remove_test)
    ref_equal_test = onefile and (
        (parsed_ref is None and parsed_test is None)
        or (parsed_ref is not None and parsed_test is not None and np.array_equal(parsed_ref, parsed_test))
    )
    ######################### Input validation (end) #########################

    ref_markers = ref_panel.markers
    test_markers = test_panel.markers

    logger.info("Coordinating summary stats with reference panel...")
    m_ref = match_markers(sumstats, ref_markers, exclude_ambiguous=exclude_ambiguous, drop_duplicates=True)
    ss_ref = _orient_sumstats(sumstats, m_ref, ref_markers)

    if not onefile:
        logger.info("Coordinating summary stats with test data...")
        m_test = match_markers(sumstats, test_markers, exclude_ambiguous=exclude_ambiguous, drop_duplicates=True)
        logger.info("Coordinating summary stats, reference panel, and test data...")
        m_common = match_markers(ss_ref, test_markers, exclude_ambiguous=exclude_ambiguous, drop_duplicates=True)
    else:
        m_test = m_ref
        m_common = MarkerMatch(
            order=np.arange(m_ref.n_matched),
            rev=np.ones(m_ref.n_matched, dtype=np.int64),
            ref_extract=m_ref.ref_extract,
        )

    logger.debug(
        "Markers matched: %d with reference panel, %d with test panel, %d common to all",
        m_ref.n_matched,
        m_test.n_matched,
        m_common.n_matched,
    )

    # Reference panel markers common to summary statistics and test panel, in reference order
    ref_rows = np.flatnonzero(m_ref.ref_extract)
    common_ss_ref_rows = np.sort(m_common.order)
    ref_extract = np.zeros(len(ref_markers), dtype=bool)
    ref_extract[ref_rows[common_ss_ref_rows]] = True

    blocks = _resolve_blocks(ld_blocks, ref_markers, ref_extract, m_ref.order[common_ss_ref_rows])

    cor_common = ss_ref[COR_COLUMN].to_numpy()[common_ss_ref_rows]
    s_minus_1 = s[s != 1]

    logger.info("Running lassosum ...")
    ls_results: list[LassosumResult] = []
    for shrink in s_minus_1:
        logger.info("s = %s", shrink)
        ls_results.append(
            lassosum(
                cor_common,
                ref_panel,
                extract=ref_extract,
                shrink=shrink,
                lambdas=lambdas,
                blocks=blocks,
                keep=parsed_ref,
                thr=thr,
                maxiter=maxiter,
            )
        )
    logger.debug("Memory usage after lassosum: %s MB", _memory_usage_mb())

    ss_test = _orient_sumstats(sumstats, m_test, test_markers)

    logger.info("Running lassosum with s=1...")
    if np.any(s == 1):
        beta_independent = indeplasso(ss_test[COR_COLUMN].to_numpy(), lambdas=lambdas).beta
    else:
        beta_independent = np.zeros((m_test.n_matched, len(lambdas)))

    # Rows of the test-panel coefficient matrices that lassosum (s < 1) estimated
    test_rows = np.flatnonzero(m_test.ref_extract)
    common_test_rows = np.flatnonzero(m_common.ref_extract)
    position_in_test = np.searchsorted(test_rows, common_test_rows)
    found = position_in_test < len(test_rows)
    found[found] = test_rows[position_in_test[found]] == common_test_rows[found]
    if not found.all():
        logger.warning(
            "%d markers common to all datasets were not matched to the test panel directly; ignoring them",
            int(np.sum(~found)),
        )

    also_in_refpanel = np.zeros(len(test_markers), dtype=bool)
    also_in_refpanel[common_test_rows[found]] = True
    in_refpanel_rows = position_in_test[found]

    # lassosum rows are in reference order, i.e. sorted m_common.order
    ls_rows = np.searchsorted(common_ss_ref_rows, m_common.order[found])
    common_rev = m_common.rev[found]

    if np.any(~also_in_refpanel[m_test.ref_extract]) and len(s_minus_1) > 0:
        logger.info("Impute indeplasso estimates to SNPs not in reference panel ...")

    beta: dict[float, np.ndarray] = {}
    ls_by_s = dict(zip(s_minus_1.tolist(), ls_results))
    for shrink in s.tolist():
        coefficients = beta_independent.copy()
        if shrink in ls_by_s:
            coefficients[in_refpanel_rows] = apply_orientation(ls_by_s[shrink].beta[ls_rows], common_rev)
        beta[shrink] = coefficients

    sd = None
    if destandardize:
        logger.info("Obtain standard deviations ...")
        sd = np.full(m_test.n_matched, np.nan)
        if ls_results and ref_equal_test:
            # already computed by lassosum
            sd[in_refpanel_rows] = ls_results[0].sd[ls_rows]
        needs_sd = np.isnan(sd)
        if needs_sd.any():
            to_extract = np.zeros(len(test_markers), dtype=bool)
            to_extract[test_rows[needs_sd]] = True
            sd[needs_sd] = test_panel.standard_deviation(extract=to_extract, keep=parsed_test)

        logger.info("De-standardize lassosum coefficients ...")
        sd = infinite_if_nonpositive(sd)
        beta = destandardize_coefficients(beta, sd)

    results = LassosumPipelineResult(
        beta=beta,
        test_extract=m_test.ref_extract,
        also_in_refpanel=also_in_refpanel,
        sumstats=ss_test[SUMSTAT_COLUMNS],
        lambdas=lambdas,
        s=s,
        test_panel=test_panel,
        keep_test=parsed_test,
        destandardized=destandardize,
        sd=sd,
    )

    if notest:
        return results

    logger.info("Calculating polygenic scores ...")
    pgs = calculate_pgs(test_panel, beta, s, lambdas, m_test.ref_extract, parsed_test)

    return msgspec.structs.replace(results, pgs=pgs)


def destandardize_pipeline_result(
    result: LassosumPipelineResult,
    test_panel: GenotypePanel | None = None,
    keep: np.ndarray | None = None,
) -> LassosumPipelineResult:
    """
    A copy of `result` with coefficients divided by test panel standard deviations.

    Polygenic scores are not carried over, since they no longer match the coefficients.
    """
    if result.destandardized:
        raise ValueError("beta in the pipeline result is already destandardized")

    panel = result.test_panel if test_panel is None else test_panel
    if test_panel is None:
        keep = result.keep_test
    if panel.n_markers != len(result.test_extract):
        raise ValueError("test_panel does not have the markers the pipeline result was computed on")

    sd = infinite_if_nonpositive(panel.standard_deviation(extract=result.test_extract, keep=keep))
    return msgspec.structs.replace(
        result,
        beta=destandardize_coefficients(result.beta, sd),
        destandardized=True,
        sd=sd,
        pgs=None,
    )
