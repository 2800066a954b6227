from msgspec import Struct, field

from lassosum.prs.pipeline import DEFAULT_S
from lassosum.prs.regression import DEFAULT_LAMBDAS


class LassosumJobData(Struct, frozen=True, forbid_unknown_fields=True, rename="camel"):
    """
    The configuration of one lassosum job

    Attributes:
    sumstats_path: str
        The path to the summary statistics, a feather file or delimited text with the columns
        CHR, POS, A1, A2 and either COR, or P and BETA (and N, unless sample_size is given)
    out_dir: str
        The directory to save the output files
    out_basename: str
        The basename of the output files
    ref_dosage_matrix_path: str | None
        The path to the reference panel dosage matrix, used to estimate LD.
        Defaults to the test panel.
    test_dosage_matrix_path: str | None
        The path to the test panel dosage matrix, in which polygenic scores are calculated.
        At least one of the two dosage matrices is required.
    ld_blocks_path: str | None
        The path to a (chr, start, stop) LD block file. Defaults to one block per chromosome.
    sample_size: int | None
        The GWAS sample size, used to convert p-values to correlations when there is no N column
    lambdas: list[float]
        The lassosum penalties
    s: list[float]
        The lassosum shrinkage values, in (0, 1]
    destandardize: bool
        Whether to destandardize coefficients with the test panel standard deviations
    exclude_ambiguous: bool
        Whether to exclude A/T and C/G markers
    keep_ref, remove_ref, keep_test, remove_test: list[str] | None
        Sample ids to keep or remove from the reference and test panels
    pseudovalidate: bool
        Whether to pseudovalidate, choosing the best s and lambda
    """

    sumstats_path: str
    out_dir: str
    out_basename: str
    ref_dosage_matrix_path: str | None = None
    test_dosage_matrix_path: str | None = None
    ld_blocks_path: str | None = None
    sample_size: int | None = None
    lambdas: list[float] = field(default_factory=lambda: DEFAULT_LAMBDAS.tolist())
    s: list[float] = field(default_factory=lambda: list(DEFAULT_S))
    destandardize: bool = False
    exclude_ambiguous: bool = True
    keep_ref: list[str] | None = None
    remove_ref: list[str] | None = None
    keep_test: list[str] | None = None
    remove_test: list[str] | None = None
    pseudovalidate: bool = False

    def __post_init__(self):
        if self.ref_dosage_matrix_path is None and self.test_dosage_matrix_path is None:
            raise ValueError("At least one of refDosageMatrixPath or testDosageMatrixPath must be specified")
        if self.pseudovalidate and self.test_dosage_matrix_path is None:
            raise ValueError("Pseudovalidation requires testDosageMatrixPath")


class LassosumJobResult(Struct, frozen=True, forbid_unknown_fields=True, rename="camel"):
    """The output paths of a lassosum job, and the best s and lambda when pseudovalidated"""

    beta_path: str
    pgs_path: str | None = None
    validation_path: str | None = None
    best_s: float | None = None
    best_lambda: float | None = None
