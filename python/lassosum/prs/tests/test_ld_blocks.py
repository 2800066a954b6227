import numpy as np
import pandas as pd
import pytest

from lassosum.prs.ld_blocks import (
    blocks_from_labels,
    ld_block_labels,
    read_ld_blocks,
    split_genome,
    validate_ld_blocks,
)

chromosomes = np.array(["1", "1", "1", "1", "1", "chr2", "2"])
positions = np.array([50, 100, 150, 250, 400, 10, 20])

ld_blocks = pd.DataFrame(
    {
        "chr": ["chr1", "chr1", "chr1", "chr2"],
        "start": [0, 100, 200, 0],
        "stop": [100, 200, 300, 500],
    }
)


def test_split_genome():
    labels = split_genome(chromosomes, positions, ld_blocks["chr"], ld_blocks["stop"])

    # (100, 200] is block 1, (200, 300] is block 2; the ends join the terminal blocks
    assert labels.tolist() == ["1_1", "1_1", "1_1", "1_2", "1_2", "2_1", "2_1"]


def test_split_genome_never_drops_markers():
    rng = np.random.default_rng(0)
    chrom = rng.choice(["1", "2", "3"], size=200)
    pos = rng.integers(1, 1_000, size=200)
    labels = split_genome(chrom, pos, ["1", "1", "1", "2", "2"], [100, 500, 900, 300, 600])

    assert len(labels) == 200
    assert all(label is not None for label in labels)

    # each block spans one contiguous range of positions on its chromosome
    frame = pd.DataFrame({"chrom": chrom, "pos": pos, "label": labels}).sort_values(["chrom", "pos"])
    for _, on_chrom in frame.groupby("chrom"):
        changes = (on_chrom["label"] != on_chrom["label"].shift()).sum()
        assert changes == on_chrom["label"].nunique()


def test_split_genome_length_checks():
    with pytest.raises(ValueError, match="same length"):
        split_genome(["1", "1"], [1], ["1"], [10])

    with pytest.raises(ValueError, match="same length"):
        split_genome(["1"], [1], ["1", "1"], [10])


def test_ld_block_labels_defaults_to_chromosomes():
    labels = ld_block_labels(chromosomes, positions, None)
    assert labels.tolist() == ["1", "1", "1", "1", "1", "2", "2"]


def test_ld_block_labels_dispatch():
    from_table = ld_block_labels(chromosomes, positions, ld_blocks)
    assert from_table.tolist() == split_genome(chromosomes, positions, ld_blocks["chr"], ld_blocks["stop"]).tolist()

    given = np.array(["a", "a", "b", "b", "b", "c", "c"])
    np.testing.assert_array_equal(ld_block_labels(chromosomes, positions, given), given)


def test_blocks_from_labels_checks_length():
    with pytest.raises(ValueError, match="one LD block label per marker"):
        blocks_from_labels(["a", "b"], 3)


def test_validate_ld_blocks():
    validated = validate_ld_blocks(ld_blocks)
    assert validated.columns.tolist() == ["chr", "start", "stop"]
    assert validated["chr"].tolist() == ["1", "1", "1", "2"]

    with pytest.raises(ValueError, match="3 columns"):
        validate_ld_blocks(ld_blocks[["chr", "stop"]])

    backwards = ld_blocks.assign(stop=[100, 50, 300, 500])
    with pytest.raises(ValueError, match="must not precede"):
        validate_ld_blocks(backwards)


@pytest.mark.parametrize("header", [True, False])
def test_read_ld_blocks(tmp_path, header):
    path = tmp_path / "blocks.bed"
    lines = ["chr1 0 100", "chr1 100 200", "chr2 0 500"]
    if header:
        lines.insert(0, "chr start stop")
    path.write_text("\n".join(lines) + "\n")

    blocks = read_ld_blocks(path)

    assert blocks["chr"].tolist() == ["1", "1", "2"]
    assert blocks["start"].tolist() == [0, 100, 0]
    assert blocks["stop"].tolist() == [100, 200, 500]


def test_read_ld_blocks_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_ld_blocks(tmp_path / "missing.bed")
