"""
    Partition markers into approximately independent LD blocks.

    LD block files are BED-like, with three columns and no header:
    chromosome, start, stop

    Only the stop positions are used as breakpoints: a marker at position p on
    chromosome c belongs to block i when breakpoints[i-1] < p <= breakpoints[i].
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from lassosum.prs.markers import normalize_chromosome

logger = logging.getLogger(__name__)

LD_BLOCK_CHROM_COLUMN = "chr"
LD_BLOCK_START_COLUMN = "start"
LD_BLOCK_STOP_COLUMN = "stop"
LD_BLOCK_COLUMNS = [LD_BLOCK_CHROM_COLUMN, LD_BLOCK_START_COLUMN, LD_BLOCK_STOP_COLUMN]


def read_ld_blocks(path: str | Path) -> pd.DataFrame:
    """Load an LD block definition file (e.g. Berisa & Pickrell 2015 .bed)."""
    try:
        blocks = pd.read_csv(path, sep=r"\s+", header=None, comment="#")
        # tolerate a header line such as "chr start stop"
        if not pd.api.types.is_numeric_dtype(blocks[1]):
            blocks = blocks.iloc[1:].reset_index(drop=True)
        logger.info("Successfully loaded LD blocks from: %s", path)
    except Exception as e:
        logger.exception("Failed to load LD blocks from: %s: %s", path, e)
        raise e

    return validate_ld_blocks(blocks)


def validate_ld_blocks(blocks: pd.DataFrame) -> pd.DataFrame:
    """Check a chromosome/start/stop table and normalize its chromosome names."""
    if blocks.shape[1] != 3:
        raise ValueError(f"LD blocks must have 3 columns (chr, start, stop), found {blocks.shape[1]}")

    blocks = blocks.copy()
    blocks.columns = LD_BLOCK_COLUMNS
    blocks[LD_BLOCK_CHROM_COLUMN] = normalize_chromosome(blocks[LD_BLOCK_CHROM_COLUMN]).to_numpy()
    blocks[LD_BLOCK_START_COLUMN] = blocks[LD_BLOCK_START_COLUMN].astype(np.int64)
    blocks[LD_BLOCK_STOP_COLUMN] = blocks[LD_BLOCK_STOP_COLUMN].astype(np.int64)

    if not (blocks[LD_BLOCK_STOP_COLUMN] >= blocks[LD_BLOCK_START_COLUMN]).all():
        raise ValueError("LD block stop positions must not precede start positions")

    return blocks


def split_genome(
    chromosomes: np.ndarray | pd.Series,
    positions: np.ndarray | pd.Series,
    ref_chromosomes: np.ndarray | pd.Series,
    ref_breakpoints: np.ndarray | pd.Series,
) -> np.ndarray:
    """
    Assign each marker to a block given per-chromosome breakpoints.

    Markers at or before a chromosome's first breakpoint join the first interval,
    markers after its last breakpoint join the last interval; chromosomes without
    breakpoints form a single block. No marker is dropped.

    Returns
    -------
    np.ndarray of str
        One label per marker, formatted as "{chromosome}_{block index}".
    """
    chromosomes = normalize_chromosome(chromosomes).to_numpy()
    positions = np.asarray(positions, dtype=np.int64)
    ref_chromosomes = normalize_chromosome(ref_chromosomes).to_numpy()
    ref_breakpoints = np.asarray(ref_breakpoints, dtype=np.int64)

    if len(chromosomes) != len(positions):
        raise ValueError("chromosomes and positions must have the same length")
    if len(ref_chromosomes) != len(ref_breakpoints):
        raise ValueError("ref_chromosomes and ref_breakpoints must have the same length")

    labels = np.empty(len(chromosomes), dtype=object)
    for chrom in pd.unique(chromosomes):
        on_chrom = chromosomes == chrom
        breaks = np.unique(ref_breakpoints[ref_chromosomes == chrom])
        if len(breaks) < 2:
            logger.debug("Chromosome %s has fewer than 2 breakpoints; using a single block", chrom)
            labels[on_chrom] = f"{chrom}_1"
            continue

        idx = np.searchsorted(breaks, positions[on_chrom], side="left")
        idx = np.clip(idx, 1, len(breaks) - 1)
        labels[on_chrom] = [f"{chrom}_{i}" for i in idx]

    return labels


def blocks_from_labels(labels: np.ndarray | pd.Series | list, n_markers: int) -> np.ndarray:
    """Use a precomputed label per marker as the block assignment."""
    labels = np.asarray(labels)
    if labels.ndim != 1 or len(labels) != n_markers:
        raise ValueError(f"Expected one LD block label per marker ({n_markers}), got {labels.shape}")
    return labels


def ld_block_labels(
    chromosomes: np.ndarray,
    positions: np.ndarray,
    ld_blocks: pd.DataFrame | np.ndarray | None,
) -> np.ndarray:
    """
    Resolve the block assignment for the markers passed in.

    ld_blocks: None
        Each chromosome is one block.
    ld_blocks: DataFrame
        A (chr, start, stop) table, split with `split_genome`.
    ld_blocks: array-like
        One label per marker passed in.
    """
    if ld_blocks is None:
        return normalize_chromosome(chromosomes).to_numpy()

    if isinstance(ld_blocks, pd.DataFrame):
        blocks = validate_ld_blocks(ld_blocks)
        return split_genome(
            chromosomes,
            positions,
            blocks[LD_BLOCK_CHROM_COLUMN].to_numpy(),
            blocks[LD_BLOCK_STOP_COLUMN].to_numpy(),
        )

    return blocks_from_labels(ld_blocks, len(chromosomes))
