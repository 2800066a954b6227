import logging
from pathlib import Path

import pandas as pd

from lassosum.prs.genotypes import DosageMatrixPanel
from lassosum.prs.ld_blocks import read_ld_blocks
from lassosum.prs.markers import A1_COLUMN, A2_COLUMN, CHROM_COLUMN, POS_COLUMN
from lassosum.prs.messages import LassosumJobData, LassosumJobResult
from lassosum.prs.pipeline import lassosum_pipeline
from lassosum.prs.prs_types import LassosumPipelineResult
from lassosum.prs.pseudovalidate import pseudovalidate
from lassosum.prs.sumstats import COR_COLUMN, load_sumstats
from lassosum.utils.config import load_job_config
from lassosum.utils.timer import Timer

logger = logging.getLogger(__name__)

IN_REFPANEL_COLUMN = "in_refpanel"


def _coefficient_labels(s, lambdas) -> list[str]:
    return [f"s={shrink:g}:lambda={lambda_:.6g}" for shrink in s for lambda_ in lambdas]


def coefficients_to_frame(result: LassosumPipelineResult) -> pd.DataFrame:
    """Oriented summary statistics with one coefficient column per (s, lambda)."""
    coefficients = pd.DataFrame(result.beta_matrix(), columns=_coefficient_labels(result.s, result.lambdas))
    markers = result.sumstats.reset_index(drop=True)
    markers[IN_REFPANEL_COLUMN] = result.in_refpanel
    return pd.concat([markers, coefficients], axis=1)


def run_lassosum_job(job: LassosumJobData) -> LassosumJobResult:
    """
    Run lassosum for a single job: load inputs, fit, score, optionally pseudovalidate,
    and write tab-separated results to the job's output directory.
    """
    sumstats = load_sumstats(job.sumstats_path, sample_size=job.sample_size)

    ref_panel = DosageMatrixPanel(job.ref_dosage_matrix_path) if job.ref_dosage_matrix_path else None
    test_panel = DosageMatrixPanel(job.test_dosage_matrix_path) if job.test_dosage_matrix_path else None
    ld_blocks = read_ld_blocks(job.ld_blocks_path) if job.ld_blocks_path else None

    with Timer("lassosum pipeline", logger):
        result = lassosum_pipeline(
            cor=sumstats[COR_COLUMN].to_numpy(),
            chrom=sumstats[CHROM_COLUMN].to_numpy(),
            pos=sumstats[POS_COLUMN].to_numpy(),
            a1=sumstats[A1_COLUMN].to_numpy() if sumstats[A1_COLUMN].notna().any() else None,
            a2=sumstats[A2_COLUMN].to_numpy() if sumstats[A2_COLUMN].notna().any() else None,
            ref_panel=ref_panel,
            test_panel=test_panel,
            ld_blocks=ld_blocks,
            lambdas=job.lambdas,
            s=job.s,
            destandardize=job.destandardize,
            exclude_ambiguous=job.exclude_ambiguous,
            keep_ref=job.keep_ref,
            remove_ref=job.remove_ref,
            keep_test=job.keep_test,
            remove_test=job.remove_test,
        )

    out_dir = Path(job.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    basename = job.out_basename

    beta_path = out_dir / f"{basename}.lassosum.beta.tsv"
    coefficients_to_frame(result).to_csv(beta_path, sep="\t", index=False)
    logger.info("Wrote coefficients to %s", beta_path)

    pgs_path = None
    if result.pgs is not None:
        pgs_path = out_dir / f"{basename}.lassosum.pgs.tsv"
        pgs = result.pgs.copy()
        pgs.columns = _coefficient_labels(result.s, result.lambdas)
        pgs.to_csv(pgs_path, sep="\t", index_label="sample")
        logger.info("Wrote polygenic scores to %s", pgs_path)

    if not job.pseudovalidate:
        return LassosumJobResult(
            beta_path=str(beta_path), pgs_path=None if pgs_path is None else str(pgs_path)
        )

    validation = pseudovalidate(result, exclude_ambiguous=job.exclude_ambiguous)
    validation_path = out_dir / f"{basename}.lassosum.validation.tsv"
    validation.validation_table.to_csv(validation_path, sep="\t", index=False)
    logger.info("Wrote pseudovalidation results to %s", validation_path)

    return LassosumJobResult(
        beta_path=str(beta_path),
        pgs_path=None if pgs_path is None else str(pgs_path),
        validation_path=str(validation_path),
        best_s=validation.best_s,
        best_lambda=validation.best_lambda,
    )


def run_lassosum_job_from_config(config_path: str | Path) -> LassosumJobResult:
    """Entry point: configure logging, then run the job described by a YAML file."""
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(module)s - %(funcName)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    job = load_job_config(config_path, LassosumJobData)
    logger.info("Running lassosum job %s", job.out_basename)
    return run_lassosum_job(job)
