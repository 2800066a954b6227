"""
    lassosum: LASSO on summary statistics with a reference panel for LD.

    For shrinkage s and penalty lambda, lassosum minimizes, independently within
    each LD block,

        f(b) = b'((1 - s)R + sI)b - 2 b'r + 2 * lambda * |b|_1

    where r holds the marker-phenotype correlations from the summary statistics
    and R is the marker-marker correlation matrix estimated from the reference
    panel. s = 1 ignores LD altogether and has the closed form solution
    b = sign(r) * max(|r| - lambda, 0), computed by `indeplasso`.

    See: Mak et al. (2017), Polygenic scores via penalized regression on
    summary statistics. Genetic Epidemiology 41(6).
"""

import logging

import numpy as np
import pandas as pd

from lassosum.prs.genotypes import GenotypePanel, normalize_genotypes
from lassosum.prs.prs_types import LassosumResult
from lassosum.utils.timer import Timer

logger = logging.getLogger(__name__)

DEFAULT_LAMBDAS = np.exp(np.linspace(np.log(0.001), np.log(0.1), 20))
DEFAULT_THRESHOLD = 1e-4
DEFAULT_MAX_ITER = 10_000


def validate_correlations(cor: np.ndarray | pd.Series | list) -> np.ndarray:
    cor = np.asarray(cor, dtype=np.float64)
    if cor.ndim != 1:
        raise ValueError("cor must be a vector")
    if np.isnan(cor).any():
        raise ValueError("cor must not contain missing values")
    if not np.all((cor > -1) & (cor < 1)):
        raise ValueError("cor must lie strictly between -1 and 1")
    return cor


def validate_lambdas(lambdas: np.ndarray | list) -> np.ndarray:
    lambdas = np.atleast_1d(np.asarray(lambdas, dtype=np.float64))
    if lambdas.ndim != 1 or len(lambdas) == 0:
        raise ValueError("lambdas must be a non-empty vector")
    if not np.all(np.isfinite(lambdas) & (lambdas > 0)):
        raise ValueError("lambdas must be positive")
    return lambdas


def validate_shrink(shrink: float) -> float:
    shrink = float(shrink)
    if not 0 < shrink <= 1:
        raise ValueError(f"shrink must be in (0, 1], got {shrink}")
    return shrink


def soft_threshold(x: np.ndarray | float, lambda_: np.ndarray | float) -> np.ndarray:
    return np.sign(x) * np.maximum(np.abs(x) - lambda_, 0.0)


def elnet(
    lambda_: float,
    shrink: float,
    r: np.ndarray,
    R: np.ndarray,
    beta: np.ndarray,
    thr: float = DEFAULT_THRESHOLD,
    maxiter: int = DEFAULT_MAX_ITER,
) -> bool:
    """
    Cyclic coordinate descent for one block and one lambda.

    `beta` is the starting point and is updated in place.

    Returns
    -------
    bool
        True if the largest coefficient change in a sweep fell below `thr`
        within `maxiter` sweeps.
    """
    n_markers = len(r)
    if n_markers == 0:
        return True

    Rs = (1.0 - shrink) * R
    Rs[np.diag_indices(n_markers)] += shrink
    diag = np.diag(Rs).copy()
    Rb = Rs @ beta

    for _ in range(maxiter):
        max_change = 0.0
        for j in range(n_markers):
            old = beta[j]
            u = r[j] - (Rb[j] - diag[j] * old)
            new = np.sign(u) * max(abs(u) - lambda_, 0.0) / diag[j]
            if new != old:
                delta = new - old
                beta[j] = new
                Rb += delta * Rs[:, j]
                max_change = max(max_change, abs(delta))
        if max_change < thr:
            return True

    return False


def _block_loss(shrink: float, r: np.ndarray, R: np.ndarray, beta: np.ndarray) -> float:
    return float((1.0 - shrink) * beta @ R @ beta + shrink * beta @ beta - 2.0 * beta @ r)


def _solve_block(
    r: np.ndarray,
    X: np.ndarray,
    usable: np.ndarray,
    shrink: float,
    lambdas: np.ndarray,
    thr: float,
    maxiter: int,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Solve every lambda for one block, carrying each solution into the next lambda."""
    beta_path = np.zeros((len(r), len(lambdas)))
    conv = np.ones(len(lambdas), dtype=bool)
    loss = np.zeros(len(lambdas))

    r_usable = r[usable]
    X_usable = X[:, usable]
    R = X_usable.T @ X_usable
    beta = np.zeros(len(r_usable))

    for i, lambda_ in enumerate(lambdas):
        conv[i] = elnet(lambda_, shrink, r_usable, R, beta, thr=thr, maxiter=maxiter)
        beta_path[usable, i] = beta
        loss[i] = _block_loss(shrink, r_usable, R, beta)

    return beta_path, conv, loss


def lassosum(
    cor: np.ndarray,
    panel: GenotypePanel,
    extract: np.ndarray | None = None,
    shrink: float = 0.9,
    lambdas: np.ndarray = DEFAULT_LAMBDAS,
    blocks: np.ndarray | None = None,
    keep: np.ndarray | None = None,
    thr: float = DEFAULT_THRESHOLD,
    maxiter: int = DEFAULT_MAX_ITER,
) -> LassosumResult:
    """
    Fit lassosum over a grid of penalties.

    Parameters
    ----------
    cor: np.ndarray
        Marker-phenotype correlations, one per extracted reference marker,
        oriented to the reference panel's A1 allele.
    panel: GenotypePanel
        The reference panel used to estimate LD.
    extract: np.ndarray of bool, optional
        Mask over the panel's markers. Defaults to all markers.
    shrink: float
        s in (0, 1].
    lambdas: np.ndarray
        Positive penalties, solved in the order given with warm starts.
    blocks: np.ndarray, optional
        LD block label per extracted marker. Defaults to one block per chromosome.
    keep: np.ndarray of bool, optional
        Reference panel participants used to estimate LD.
    """
    cor = validate_correlations(cor)
    lambdas = validate_lambdas(lambdas)
    shrink = validate_shrink(shrink)

    marker_indices = panel.extract_indices(extract)
    if len(cor) != len(marker_indices):
        raise ValueError(
            f"cor has {len(cor)} entries but {len(marker_indices)} reference markers are extracted"
        )

    if blocks is None:
        blocks = panel.markers["CHR"].to_numpy()[marker_indices]
    blocks = np.asarray(blocks)
    if len(blocks) != len(cor):
        raise ValueError(f"blocks has {len(blocks)} entries, expected {len(cor)}")

    n_kept = len(panel.kept_participants(keep))
    beta = np.zeros((len(cor), len(lambdas)))
    conv = np.ones(len(lambdas), dtype=bool)
    loss = np.zeros(len(lambdas))
    sd = np.full(len(cor), np.nan)

    if n_kept < 2:
        logger.warning(
            "Only %d reference panel participants selected; returning zero coefficients", n_kept
        )
    else:
        # blocks are solved in order of first appearance
        codes, block_labels = pd.factorize(pd.Series(blocks), sort=False)
        logger.debug("Running lassosum with s=%s over %d blocks", shrink, len(block_labels))

        with Timer(f"lassosum (s={shrink})", logger):
            for block in range(len(block_labels)):
                in_block = np.flatnonzero(codes == block)
                genotypes = panel.read_genotypes(marker_indices[in_block], keep)
                X, block_sd = normalize_genotypes(genotypes)
                sd[in_block] = block_sd

                usable = block_sd > 0
                if not usable.any():
                    continue

                block_beta, block_conv, block_loss = _solve_block(
                    cor[in_block], X, usable, shrink, lambdas, thr, maxiter
                )
                beta[in_block] = block_beta
                conv &= block_conv
                loss += block_loss

        if not conv.all():
            logger.warning(
                "lassosum did not converge for lambdas: %s", lambdas[~conv].tolist()
            )

    fbeta = loss + 2.0 * lambdas * np.abs(beta).sum(axis=0)

    return LassosumResult(
        beta=beta, lambdas=lambdas, shrink=shrink, conv=conv, loss=loss, fbeta=fbeta, sd=sd
    )


def indeplasso(cor: np.ndarray, lambdas: np.ndarray = DEFAULT_LAMBDAS) -> LassosumResult:
    """lassosum with s = 1: soft-thresholding of each correlation, ignoring LD."""
    cor = validate_correlations(cor)
    lambdas = validate_lambdas(lambdas)

    beta = soft_threshold(cor[:, np.newaxis], lambdas[np.newaxis, :])
    if beta.shape[0] == 0:
        beta = np.zeros((0, len(lambdas)))
    loss = (beta**2).sum(axis=0) - 2.0 * cor @ beta
    fbeta = loss + 2.0 * lambdas * np.abs(beta).sum(axis=0)

    return LassosumResult(
        beta=beta,
        lambdas=lambdas,
        shrink=1.0,
        conv=np.ones(len(lambdas), dtype=bool),
        loss=loss,
        fbeta=fbeta,
    )
