import numpy as np
import pandas as pd
import pyarrow as pa  # type: ignore
import pytest

from lassosum.prs.genotypes import (
    DosageMatrixPanel,
    InMemoryGenotypePanel,
    normalize_genotypes,
    parse_select,
)
from lassosum.prs.markers import markers_from_loci

loci = [
    "chr2:8871342:C:A",
    "chr2:8877042:G:A",
    "chr2:8910987:A:C",
    "chr22:51183255:A:G",
    "chr22:51183421:C:T",
]
samples = ["1805", "1847", "4805", "5001"]
dosages = np.array(
    [
        [0, 1, 2, 1],
        [2, 2, 1, -1],
        [1, 1, 1, 1],
        [0, 0, 1, 2],
        [-1, 1, 0, 2],
    ]
)  # markers x samples, -1 is missing


@pytest.fixture
def in_memory_panel():
    return InMemoryGenotypePanel(markers_from_loci(loci), dosages.T, participants=samples)


@pytest.fixture
def dosage_matrix_file(tmp_path):
    file_path = str(tmp_path / "test_dosage.feather")
    data = {"locus": loci}
    for i, sample in enumerate(samples):
        data[sample] = dosages[:, i].astype(np.int16)
    table = pa.Table.from_pandas(pd.DataFrame(data), preserve_index=False)

    with pa.OSFile(file_path, "wb") as sink, pa.RecordBatchFileWriter(sink, table.schema) as writer:
        writer.write_table(table)

    return file_path


def test_parse_select():
    participants = pd.Index(["a", "b", "c", "d"])

    assert parse_select(participants) is None
    np.testing.assert_array_equal(parse_select(participants, keep=["b", "d"]), [False, True, False, True])
    np.testing.assert_array_equal(parse_select(participants, remove=["b", "d"]), [True, False, True, False])

    mask = np.array([True, False, False, True])
    np.testing.assert_array_equal(parse_select(participants, keep=mask), mask)
    np.testing.assert_array_equal(parse_select(participants, remove=mask), ~mask)

    np.testing.assert_array_equal(parse_select(participants, keep=[]), [False] * 4)


def test_parse_select_errors():
    participants = pd.Index(["a", "b", "c"])

    with pytest.raises(ValueError, match="cannot both be specified"):
        parse_select(participants, keep=["a"], remove=["b"])

    with pytest.raises(ValueError, match="Unknown participants"):
        parse_select(participants, keep=["a", "z"])

    with pytest.raises(ValueError, match="one entry per participant"):
        parse_select(participants, keep=np.array([True, False]))


def test_normalize_genotypes():
    genotypes = np.array([[0.0, 1.0, 2.0], [1.0, 1.0, np.nan], [2.0, 1.0, 0.0], [1.0, 1.0, 1.0]])
    normalized, sd = normalize_genotypes(genotypes)

    np.testing.assert_allclose(normalized[:, 0] @ normalized[:, 0], 1.0)
    np.testing.assert_allclose(normalized[:, 2] @ normalized[:, 2], 1.0)
    np.testing.assert_allclose(normalized.sum(axis=0), 0.0, atol=1e-12)
    # a constant column is all zero
    np.testing.assert_array_equal(normalized[:, 1], 0.0)

    np.testing.assert_allclose(sd[0], np.std([0, 1, 2, 1], ddof=1))
    assert sd[1] == 0
    # over observed genotypes only, as standard_deviation computes it
    np.testing.assert_allclose(sd[2], np.std([2, 1, 0], ddof=1))
    # the missing genotype is imputed with the mean of the others
    imputed = np.array([2.0, 1.0, 0.0, 1.0])
    np.testing.assert_allclose(normalized[:, 2], (imputed - 1.0) / np.sqrt(2.0))

    _, sd = normalize_genotypes(np.array([[1.0], [np.nan], [np.nan]]))
    assert np.isnan(sd[0])


def test_in_memory_panel(in_memory_panel):
    panel = in_memory_panel

    assert panel.n_markers == 5
    assert panel.n_participants == 4
    assert panel.participants.tolist() == samples
    assert panel.markers["CHR"].tolist() == ["2", "2", "2", "22", "22"]

    genotypes = panel.read_genotypes(np.array([4, 0]))
    assert genotypes.shape == (4, 2)
    assert np.isnan(genotypes[0, 0])
    np.testing.assert_array_equal(genotypes[:, 1], [0, 1, 2, 1])

    keep = np.array([False, True, True, False])
    np.testing.assert_array_equal(panel.read_genotypes(np.array([0]), keep)[:, 0], [1, 2])
    assert panel.kept_participants(keep).tolist() == ["1847", "4805"]


def test_in_memory_panel_validates_shapes():
    with pytest.raises(ValueError, match="markers"):
        InMemoryGenotypePanel(markers_from_loci(loci), dosages)

    with pytest.raises(ValueError, match="ids were given"):
        InMemoryGenotypePanel(markers_from_loci(loci), dosages.T, participants=samples[:2])


def test_standard_deviation(in_memory_panel):
    sd = in_memory_panel.standard_deviation()

    expected = [
        np.std([0, 1, 2, 1], ddof=1),
        np.std([2, 2, 1], ddof=1),
        0.0,
        np.std([0, 0, 1, 2], ddof=1),
        np.std([1, 0, 2], ddof=1),
    ]
    np.testing.assert_allclose(sd, expected)

    extract = np.array([True, False, False, True, False])
    keep = np.array([True, True, False, False])
    np.testing.assert_allclose(
        in_memory_panel.standard_deviation(extract=extract, keep=keep),
        [np.std([0, 1], ddof=1), 0.0],
    )

    # fewer than 2 observed genotypes
    only_one = np.array([True, False, False, False])
    assert np.isnan(in_memory_panel.standard_deviation(keep=only_one)).all()


def test_score_imputes_missing_with_the_mean(in_memory_panel):
    weights = np.array([[1.0, 0.0], [0.5, 0.0], [0.0, 0.0], [-1.0, 2.0], [2.0, 1.0]])
    pgs = in_memory_panel.score(weights)

    imputed = dosages.T.astype(float)
    imputed[3, 1] = np.mean([2, 2, 1])
    imputed[0, 4] = np.mean([1, 0, 2])
    np.testing.assert_allclose(pgs, imputed @ weights)

    extract = np.array([True, False, False, False, True])
    np.testing.assert_allclose(
        in_memory_panel.score(np.array([1.0, 2.0]), extract=extract),
        (imputed[:, [0, 4]] @ np.array([1.0, 2.0]))[:, np.newaxis],
    )

    with pytest.raises(ValueError, match="one row per extracted marker"):
        in_memory_panel.score(np.ones(3))


def test_score_in_chunks(in_memory_panel, monkeypatch):
    weights = np.arange(10, dtype=float).reshape(5, 2)
    expected = in_memory_panel.score(weights)

    monkeypatch.setenv("LASSOSUM_MARKER_CHUNK_SIZE", "2")
    np.testing.assert_allclose(in_memory_panel.score(weights), expected)


def test_dosage_matrix_panel(dosage_matrix_file, in_memory_panel):
    panel = DosageMatrixPanel(dosage_matrix_file)

    assert panel.participants.tolist() == samples
    pd.testing.assert_frame_equal(panel.markers, in_memory_panel.markers)

    indices = np.array([4, 1, 3])
    keep = np.array([True, False, True, True])
    np.testing.assert_array_equal(
        panel.read_genotypes(indices, keep), in_memory_panel.read_genotypes(indices, keep)
    )

    np.testing.assert_allclose(panel.standard_deviation(), in_memory_panel.standard_deviation())

    weights = np.linspace(-1, 1, 10).reshape(5, 2)
    np.testing.assert_allclose(panel.score(weights, keep=keep), in_memory_panel.score(weights, keep=keep))

    assert panel == DosageMatrixPanel(dosage_matrix_file)
    assert panel != in_memory_panel


def test_dosage_matrix_panel_requires_locus_column(tmp_path):
    file_path = str(tmp_path / "no_locus.feather")
    table = pa.Table.from_pandas(pd.DataFrame({"1805": [0, 1]}), preserve_index=False)
    with pa.OSFile(file_path, "wb") as sink, pa.RecordBatchFileWriter(sink, table.schema) as writer:
        writer.write_table(table)

    with pytest.raises(ValueError, match="locus"):
        DosageMatrixPanel(file_path)


def test_dosage_matrix_panel_reads_missing_genotypes(tmp_path):
    file_path = str(tmp_path / "missing.feather")
    table = pa.Table.from_pandas(
        pd.DataFrame(
            {
                "locus": ["chr1:100:A:G"],
                "s1": np.array([-1], dtype=np.int16),
                "s2": np.array([2], dtype=np.int16),
                "s3": np.array([1], dtype=np.int16),
            }
        ),
        preserve_index=False,
    )
    with pa.OSFile(file_path, "wb") as sink, pa.RecordBatchFileWriter(sink, table.schema) as writer:
        writer.write_table(table)

    panel = DosageMatrixPanel(file_path)
    genotypes = panel.read_genotypes(np.array([0]))

    assert genotypes.shape == (3, 1)
    assert np.isnan(genotypes[0, 0])
    np.testing.assert_array_equal(genotypes[1:, 0], [2.0, 1.0])
    np.testing.assert_allclose(panel.standard_deviation(), [np.std([2, 1], ddof=1)])
    np.testing.assert_allclose(panel.score(np.array([1.0])), [[1.5], [2.0], [1.0]])
