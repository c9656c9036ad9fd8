"""
Build small alignment and reference files for tests
"""
import pysam

CONTIG = "chrM"

# start of the human mitochondrial reference (rCRS)
REFERENCE = (
    "GATCACAGGTCTATCACCCTATTAACCACTCACGGGAGCTCTCCATGCATTTGGTATTTTCGTCTGGGGGGTATGCACGC"
)


def make_header(contigs=((CONTIG, len(REFERENCE)),)):
    return pysam.AlignmentHeader.from_dict(
        {"HD": {"VN": "1.6", "SO": "unsorted"}, "SQ": [{"SN": n, "LN": l} for n, l in contigs]}
    )


HEADER = make_header()


def make_read(
    sequence,
    start=0,
    cigar=None,
    reverse=False,
    quality=30,
    name="read",
    mapping_quality=60,
    flag=0,
    tags=(),
    header=HEADER,
    reference_id=0,
):
    """
    Return an AlignedSegment. start is 0-based. quality is either a single
    value used for all bases or a list with one value per base.
    """
    read = pysam.AlignedSegment(header)
    read.query_name = name
    read.query_sequence = sequence
    read.flag = flag | (16 if reverse else 0)
    read.reference_id = reference_id
    read.reference_start = start
    read.mapping_quality = mapping_quality
    read.cigarstring = cigar if cigar is not None else f"{len(sequence)}M"
    if isinstance(quality, int):
        quality = [quality] * len(sequence)
    read.query_qualities = pysam.qualitystring_to_array("".join(chr(q + 33) for q in quality))
    for tag, value in tags:
        read.set_tag(tag, value)
    return read


def reference_read(start, length, **kwargs):
    """A read that matches the reference exactly"""
    return make_read(REFERENCE[start : start + length], start=start, **kwargs)


def mutate(sequence, offset, base):
    return sequence[:offset] + base + sequence[offset + 1 :]


def write_bam(path, reads, header=HEADER):
    with pysam.AlignmentFile(str(path), "wb", header=header) as f:
        for read in reads:
            f.write(read)
    return str(path)


def write_reference(path, sequences=((CONTIG, REFERENCE),)):
    with open(path, "w") as f:
        for name, sequence in sequences:
            print(f">{name}", file=f)
            print(sequence, file=f)
    pysam.faidx(str(path))
    return str(path)


def heteroplasmic_reads(n_reads=10, n_variant=3, position=10, base="C", length=30):
    """
    Reads starting at the first reference position, n_reads per strand, of
    which n_variant per strand carry base at the given 1-based position
    """
    reads = []
    for reverse in (False, True):
        for i in range(n_reads):
            sequence = REFERENCE[:length]
            if i < n_variant:
                sequence = mutate(sequence, position - 1, base)
            strand = "r" if reverse else "f"
            reads.append(make_read(sequence, reverse=reverse, name=f"{strand}{i}"))
    return reads
