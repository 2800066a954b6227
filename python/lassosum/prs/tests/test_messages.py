import msgspec
import pytest

from lassosum.prs.messages import LassosumJobData, LassosumJobResult
from lassosum.prs.pipeline import DEFAULT_S
from lassosum.prs.regression import DEFAULT_LAMBDAS


def test_job_data_from_camel_case():
    job = msgspec.convert(
        {
            "sumstatsPath": "sumstats.tsv",
            "outDir": "out",
            "outBasename": "height",
            "testDosageMatrixPath": "test.feather",
            "keepTest": ["1805", "1847"],
            "s": [0.5],
            "pseudovalidate": True,
        },
        type=LassosumJobData,
    )

    assert job.test_dosage_matrix_path == "test.feather"
    assert job.ref_dosage_matrix_path is None
    assert job.keep_test == ["1805", "1847"]
    assert job.s == [0.5]
    assert job.lambdas == DEFAULT_LAMBDAS.tolist()
    assert job.exclude_ambiguous
    assert not job.destandardize


def test_job_data_defaults_are_not_shared():
    first = LassosumJobData(sumstats_path="a", out_dir="o", out_basename="b", ref_dosage_matrix_path="r")
    second = LassosumJobData(sumstats_path="a", out_dir="o", out_basename="b", ref_dosage_matrix_path="r")

    assert first.s == list(DEFAULT_S)
    assert first.s is not second.s


def test_job_data_rejects_unknown_fields():
    with pytest.raises(msgspec.ValidationError, match="unknown field"):
        msgspec.convert(
            {"sumstatsPath": "a", "outDir": "o", "outBasename": "b", "refDosageMatrixPath": "r", "nope": 1},
            type=LassosumJobData,
        )


def test_job_data_requires_a_panel():
    with pytest.raises(ValueError, match="At least one of"):
        LassosumJobData(sumstats_path="a", out_dir="o", out_basename="b")

    with pytest.raises(ValueError, match="Pseudovalidation requires"):
        LassosumJobData(
            sumstats_path="a", out_dir="o", out_basename="b", ref_dosage_matrix_path="r", pseudovalidate=True
        )


def test_job_result_encodes_to_camel_case():
    result = LassosumJobResult(beta_path="out/b.beta.tsv", best_s=0.5, best_lambda=0.01)

    decoded = msgspec.json.decode(msgspec.json.encode(result))

    assert decoded == {
        "betaPath": "out/b.beta.tsv",
        "pgsPath": None,
        "validationPath": None,
        "bestS": 0.5,
        "bestLambda": 0.01,
    }
