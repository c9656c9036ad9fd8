import pytest

from mitopileup.bam import (
    AlignmentReader,
    BaqRecalibrator,
    FilterReason,
    NoRecalibration,
    ReadFilter,
    compute_baq_tags,
    write_alignments,
)
from mitopileup.reference import ReferenceSequence
from .readutils import (
    CONTIG,
    REFERENCE,
    make_header,
    make_read,
    reference_read,
    write_bam,
    write_reference,
)


@pytest.fixture
def reference():
    return ReferenceSequence(CONTIG, REFERENCE)


@pytest.mark.parametrize(
    "kwargs,reason",
    [
        (dict(mapping_quality=19), FilterReason.MAPPING_QUALITY),
        (dict(flag=4), FilterReason.UNMAPPED),
        (dict(flag=1024), FilterReason.DUPLICATE),
        (dict(tags=[("AS", 29)]), FilterReason.ALIGNMENT_SCORE),
        (dict(mapping_quality=0, flag=1024), FilterReason.MAPPING_QUALITY),
        (dict(), None),
        (dict(tags=[("AS", 30)]), None),
        (dict(mapping_quality=20), None),
    ],
)
def test_rejection_reason(kwargs, reason):
    read_filter = ReadFilter()
    assert read_filter.rejection_reason(reference_read(0, 30, **kwargs)) is reason


def test_short_reads_are_rejected():
    read_filter = ReadFilter(min_read_length=25)
    assert read_filter.rejection_reason(reference_read(0, 25)) is FilterReason.SHORT_READ
    assert read_filter.rejection_reason(reference_read(0, 26)) is None


def test_wrong_reference():
    header = make_header([(CONTIG, len(REFERENCE)), ("chr1", 1000)])
    read = make_read(REFERENCE[:30], header=header, reference_id=1)
    assert ReadFilter().rejection_reason(read) is None
    read_filter = ReadFilter(contig=CONTIG)
    assert read_filter.rejection_reason(read) is FilterReason.WRONG_REFERENCE
    assert read_filter.rejection_reason(make_read(REFERENCE[:30], header=header)) is None


def test_accept_tallies_and_merge():
    a = ReadFilter()
    b = ReadFilter()
    assert a.accept(reference_read(0, 30))
    assert not a.accept(reference_read(0, 30, flag=1024))
    assert not b.accept(reference_read(0, 30, flag=1024))
    assert not b.accept(reference_read(0, 10))
    a.merge(b)
    assert a.accepted == 1
    assert a.rejected == 3
    assert a.rejections[FilterReason.DUPLICATE] == 2
    assert a.rejections[FilterReason.SHORT_READ] == 1


def test_no_recalibration(reference):
    read = reference_read(0, 30, quality=25)
    assert list(NoRecalibration().recalibrate(read, reference).query_qualities) == [25] * 30


def test_baq_recalibration(reference):
    offsets = "@" * 10 + "D" * 10 + "~" * 10
    read = reference_read(0, 30, quality=30, tags=[("BQ", offsets)])
    qualities = list(BaqRecalibrator().recalibrate(read, reference).query_qualities)
    # '@' is 64, 'D' is 68 and '~' is 126
    assert qualities == [30] * 10 + [26] * 10 + [0] * 10


def test_baq_without_tag_keeps_qualities(reference):
    read = reference_read(0, 30, quality=30)
    assert list(BaqRecalibrator().recalibrate(read, reference).query_qualities) == [30] * 30


def test_baq_tag_of_wrong_length_is_ignored(reference):
    read = reference_read(0, 30, quality=30, tags=[("BQ", "D" * 5)])
    assert list(BaqRecalibrator().recalibrate(read, reference).query_qualities) == [30] * 30


def test_alignment_reader(tmp_path):
    reads = [reference_read(i, 30, name=f"r{i}") for i in range(5)]
    path = write_bam(tmp_path / "reads.bam", reads)
    with AlignmentReader(path) as reader:
        assert reader.references == (CONTIG,)
        names = [read.query_name for read in reader]
    assert names == ["r0", "r1", "r2", "r3", "r4"]


def test_compute_baq_tags(tmp_path):
    fasta = write_reference(tmp_path / "ref.fasta")
    reads = [reference_read(i, 30, name=f"r{i}") for i in range(5)]
    path = write_bam(tmp_path / "reads.bam", reads)
    output = str(tmp_path / "baq.bam")
    compute_baq_tags(path, fasta, output)
    with AlignmentReader(output, reference=fasta) as reader:
        reads = list(reader)
    assert [read.query_name for read in reads] == ["r0", "r1", "r2", "r3", "r4"]
    for read in reads:
        assert len(read.get_tag("BQ")) == read.query_length


def test_write_alignments(tmp_path):
    reads = [reference_read(i, 30, name=f"r{i}") for i in range(4)]
    path = write_bam(tmp_path / "reads.bam", reads)
    output = str(tmp_path / "odd.bam")
    with AlignmentReader(path) as reader:
        n = write_alignments((r for r in reader if r.reference_start % 2), reader.header, output)
    assert n == 2
    with AlignmentReader(output) as reader:
        assert reader.references == (CONTIG,)
        assert [read.query_name for read in reader] == ["r1", "r3"]
