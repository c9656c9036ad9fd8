import io

import pytest

from mitopileup.pileup import Allele, Pileup
from mitopileup.tables import (
    COUNTS_HEADER,
    VARIANT_HEADER,
    PileupTableReader,
    PileupTableWriter,
    TableFormatError,
    VariantTableReader,
    VariantTableWriter,
    tabulated,
    write_fasta,
)
from mitopileup.variants import ClassifierOptions, Sample, Variant, VariantType


def make_sample(name="s1"):
    sample = Sample(name)
    sample.add(Variant(73, "A", Allele.G, "G", VariantType.HOMOPLASMY, 0.998, 500, 498))
    sample.add(Variant(310, "T", Allele.INSERTION, "C", VariantType.INSERTION, 0.25, 100, 80))
    sample.add(Variant(310, "T", Allele.C, "C", VariantType.LOW_LEVEL, 0.05, 100, 80))
    sample.add(Variant(3107, "N", Allele.DELETION, "D", VariantType.DELETION, 0.75, 20, 20))
    return sample


def test_write_variant_table():
    f = io.StringIO()
    n = VariantTableWriter(f).write_samples([make_sample()])
    assert n == 4
    lines = f.getvalue().splitlines()
    assert lines[0].split("\t") == VARIANT_HEADER
    assert lines[1].split("\t") == ["s1", "73", "A", "G", "major", "0.998", "500", "498", "998"]
    assert lines[2].split("\t") == ["s1", "310", "T", "C", "minor", "0.050", "100", "80", "180"]
    assert lines[3].split("\t") == ["s1", "310", "T", "+C", "minor", "0.250", "100", "80", "180"]
    assert lines[4].split("\t")[3:5] == ["D", "major"]


def test_variant_table_round_trip(tmp_path):
    path = tmp_path / "variants.txt"
    samples = [make_sample("s1"), make_sample("s2")]
    with open(path, "w") as f:
        VariantTableWriter(f).write_samples(samples)
    read_samples = VariantTableReader(path).read()
    assert list(read_samples) == ["s1", "s2"]
    for sample in samples:
        assert list(read_samples[sample.id]) == list(sample)


def test_gzipped_variant_table(tmp_path):
    from xopen import xopen

    path = tmp_path / "variants.txt.gz"
    with xopen(path, "w") as f:
        VariantTableWriter(f).write_samples([make_sample()])
    assert len(VariantTableReader(path).read()["s1"]) == 4


@pytest.mark.parametrize(
    "row",
    [
        "s1\t73\tA\tG\tmajor\t1.5\t5\t5\t10",
        "s1\t73\tA\tG\tmajor\t0.9\t5\t5\t11",
        "s1\t73\tA\tG\tmajor\t0.9\t5\t5",
        "s1\t73\tA\tG\tsome\t0.9\t5\t5\t10",
        "s1\tseventy\tA\tG\tmajor\t0.9\t5\t5\t10",
        "s1\t73\tA\tX\tmajor\t0.9\t5\t5\t10",
    ],
)
def test_malformed_variant_table(tmp_path, row):
    path = tmp_path / "variants.txt"
    path.write_text("\t".join(VARIANT_HEADER) + "\n" + row + "\n")
    with pytest.raises(TableFormatError):
        VariantTableReader(path).read()


def test_variant_table_with_wrong_header(tmp_path):
    path = tmp_path / "variants.txt"
    path.write_text("ID\tPos\n")
    with pytest.raises(TableFormatError):
        VariantTableReader(path).read()


def make_pileup():
    pileup = Pileup()
    counter = pileup.counter("s1", 2)
    counter.add(Allele.C, False, 30)
    counter.add(Allele.A, True, 20)
    counter.add(Allele.N, True, 0)
    counter.add_insertion("TT", True)
    counter.add_insertion("A", False)
    pileup.counter("s1", 3).add(Allele.DELETION, False, 35)
    pileup.counter("s0", 2).add(Allele.G, True, 40)
    return pileup


def test_write_counts_table():
    f = io.StringIO()
    PileupTableWriter(f).write_pileup(make_pileup())
    lines = f.getvalue().splitlines()
    assert lines[0].split("\t") == COUNTS_HEADER
    assert len(COUNTS_HEADER) == 2 + 6 + 6 + 5 + 5 + 1
    assert [line.split("\t")[:2] for line in lines[1:]] == [["s0", "2"], ["s1", "2"], ["s1", "3"]]
    assert lines[2].split("\t")[-1] == "A:1:0,TT:0:1"
    assert lines[3].split("\t")[-1] == "."


def test_counts_table_round_trip(tmp_path):
    path = tmp_path / "counts.txt"
    pileup = make_pileup()
    with open(path, "w") as f:
        PileupTableWriter(f).write_pileup(pileup)
    assert PileupTableReader(path).read() == pileup


def test_counts_tables_are_summed(tmp_path):
    path = tmp_path / "counts.txt"
    with open(path, "w") as f:
        PileupTableWriter(f).write_pileup(make_pileup())
    pileup = PileupTableReader(path).read()
    PileupTableReader(path).read(pileup)
    counter = pileup[("s1", 2)]
    assert counter.count(Allele.C) == 2
    assert counter.quality_sum(Allele.A, is_reverse=True) == 40
    assert counter.insertions == {"TT": [0, 2], "A": [2, 0]}


def test_negative_count_in_counts_table(tmp_path):
    path = tmp_path / "counts.txt"
    row = ["s1", "2", "-1"] + ["0"] * (len(COUNTS_HEADER) - 4) + ["."]
    path.write_text("\t".join(COUNTS_HEADER) + "\n" + "\t".join(row) + "\n")
    with pytest.raises(TableFormatError):
        PileupTableReader(path).read()


def test_write_fasta():
    f = io.StringIO()
    write_fasta(f, "s1", "ACGT")
    assert f.getvalue() == ">s1\nACGT\n"


def test_tabulated_sample_equals_sample_read_from_table(tmp_path):
    sample = Sample("s1")
    sample.add(Variant(10, "T", Allele.G, "G", VariantType.HETEROPLASMY, 1249 / 2500, 1250, 1250))
    sample.add(Variant(20, "A", Allele.C, "C", VariantType.HETEROPLASMY, 0.8996, 2000, 2000))
    sample.add(Variant(30, "A", Allele.C, "C", VariantType.LOW_LEVEL, 0.0996, 2000, 2000))
    options = ClassifierOptions()
    path = tmp_path / "variants.txt"
    with open(path, "w") as f:
        VariantTableWriter(f).write_samples([sample])
    written = list(VariantTableReader(path, options).read()["s1"])
    assert list(tabulated(sample, options)) == written
    assert [(v.level, v.type) for v in written] == [
        (0.5, VariantType.HETEROPLASMY),
        (0.9, VariantType.HOMOPLASMY),
        (0.1, VariantType.HETEROPLASMY),
    ]


@pytest.mark.parametrize("insertions", ["A:-1:0", "A:2:0", "A:0:3", ":1:0", "A:1"])
def test_invalid_insertion_in_counts_table(tmp_path, insertions):
    path = tmp_path / "counts.txt"
    # one A on the forward strand and two on the reverse strand
    row = ["s1", "2", "1"] + ["0"] * 5 + ["2"] + ["0"] * (len(COUNTS_HEADER) - 10) + [insertions]
    path.write_text("\t".join(COUNTS_HEADER) + "\n" + "\t".join(row) + "\n")
    with pytest.raises(TableFormatError, match="line 2"):
        PileupTableReader(path).read()
