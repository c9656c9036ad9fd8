import pytest

from mitopileup.reference import ContigNotFoundError, ReferenceSequence
from mitopileup.utils import FastaNotIndexedError
from .readutils import write_reference


@pytest.fixture
def fasta(tmp_path):
    return write_reference(tmp_path / "reference.fasta", [("chr1", "TTTT"), ("chrM", "gatcac")])


def test_first_contig_is_default(fasta):
    reference = ReferenceSequence.from_fasta(fasta)
    assert reference.name == "chr1"
    assert str(reference) == "TTTT"


def test_select_contig(fasta):
    reference = ReferenceSequence.from_fasta(fasta, "chrM")
    assert reference.name == "chrM"
    assert len(reference) == 6
    assert reference.base(1) == "G"
    assert reference.base(6) == "C"
    assert list(reference)[:2] == [(1, "G"), (2, "A")]


def test_missing_contig(fasta):
    with pytest.raises(ContigNotFoundError):
        ReferenceSequence.from_fasta(fasta, "chr2")


def test_missing_index(tmp_path):
    path = tmp_path / "reference.fasta"
    path.write_text(">chrM\nACGT\n")
    with pytest.raises(FastaNotIndexedError):
        ReferenceSequence.from_fasta(path)


@pytest.mark.parametrize("position", [0, 5, -1])
def test_position_outside_reference(position):
    with pytest.raises(IndexError):
        ReferenceSequence("chrM", "ACGT").base(position)
