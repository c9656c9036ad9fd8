"""
Count alleles in aligned reads and call variants

Reads from the files ALIGNMENTS (BAM, SAM or CRAM) are filtered and counted
per reference position and strand. Variants are called from the counts and
written as a tab-separated table. Each file is one sample, named after the
file without its extension. Files with the same name are merged.
"""
import os
import sys
import logging
import platform
from collections import OrderedDict
from contextlib import ExitStack
from dataclasses import dataclass
from multiprocessing import Pool
from tempfile import TemporaryDirectory
from typing import Dict, List, Optional, Sequence

import pysam

from mitopileup import __version__
from mitopileup.bam import (
    AlignmentReader,
    BaqRecalibrator,
    FilterReason,
    NoRecalibration,
    ReadFilter,
    compute_baq_tags,
    write_alignments,
)
from mitopileup.cli import (
    CommandLineError,
    add_classifier_arguments,
    load_reference,
    log_memory_usage,
    open_output,
    validate_classifier_arguments,
    write_variant_outputs,
)
from mitopileup.pileup import MalformedReadError, Pileup, PileupAggregator, PileupStatistics
from mitopileup.reference import ReferenceSequence
from mitopileup.tables import PileupTableWriter
from mitopileup.timer import StageTimer
from mitopileup.utils import detect_file_format, plural_s, sample_name_from_path, warn_once
from mitopileup.variants import ClassifierOptions, Sample, VariantClassifier, call_variants

logger = logging.getLogger(__name__)


# fmt: off
def add_arguments(parser):
    arg = parser.add_argument
    arg("-o", "--output", default=sys.stdout,
        help="Output file for the variant table. If omitted, use standard output.")
    arg("--counts", metavar="FILE", default=None,
        help="Also write per-position allele counts to FILE. The table can be "
        "passed to 'mitopileup call' later.")
    arg("--fasta", metavar="FILE", default=None,
        help="Also write one consensus sequence per sample to FILE")
    arg("--contig", metavar="NAME", default=None,
        help="Name of the reference sequence to use (default: first sequence in FASTA)")
    arg("--threads", "-t", metavar="THREADS", type=int, default=1,
        help="Number of alignment files processed in parallel (default: %(default)s)")

    arg = parser.add_argument_group("Read filtering").add_argument
    arg("--mapping-quality", "--mapq", metavar="QUAL", type=int, default=20,
        help="Minimum mapping quality (default: %(default)s)")
    arg("--alignment-score", metavar="SCORE", type=int, default=30,
        help="Minimum alignment score (AS tag). Reads without AS tag are used. "
        "(default: %(default)s)")
    arg("--base-quality", metavar="QUAL", type=int, default=20,
        help="Minimum base quality (default: %(default)s)")
    arg("--min-read-length", metavar="LENGTH", type=int, default=25,
        help="Discard reads of this length or shorter (default: %(default)s)")
    arg("--no-baq", dest="baq", default=True, action="store_false",
        help="Do not adjust base qualities by their base alignment quality (BAQ)")

    add_classifier_arguments(parser)

    arg = parser.add_argument
    arg("reference", metavar="FASTA",
        help="Reference sequence. Must be accompanied by .fai index (create with samtools faidx)")
    arg("alignment_files", metavar="ALIGNMENTS", nargs="+",
        help="BAM, SAM or CRAM files with reads aligned to the reference")
# fmt: on


def validate(args, parser):
    validate_classifier_arguments(args, parser)
    if args.threads < 1:
        parser.error("--threads must be at least 1")
    if args.base_quality < 0:
        parser.error("--base-quality must not be negative")


@dataclass
class PileupParameters:
    reference_path: str
    contig: str
    mapping_quality: int = 20
    alignment_score: int = 30
    base_quality: int = 20
    min_read_length: int = 25
    baq: bool = True

    def read_filter(self) -> ReadFilter:
        return ReadFilter(
            mapping_quality=self.mapping_quality,
            alignment_score=self.alignment_score,
            min_read_length=self.min_read_length,
            contig=self.contig,
        )


@dataclass
class PileupResult:
    sample: str
    path: str
    pileup: Pileup
    statistics: PileupStatistics
    read_filter: ReadFilter


def pileup_alignment_file(
    path: str, sample: str, reference: ReferenceSequence, param: PileupParameters
) -> PileupResult:
    """
    Count all accepted reads of one alignment file. This runs in a worker
    process if more than one thread is used, so all arguments must be picklable.

    With BAQ enabled, the accepted reads are first written to a temporary BAM
    file, which is then passed through 'samtools calmd' and counted.
    """
    read_filter = param.read_filter()
    aggregator = PileupAggregator(
        min_base_quality=param.base_quality, reference_length=len(reference)
    )
    with ExitStack() as stack:
        reader = stack.enter_context(AlignmentReader(path, reference=param.reference_path))
        reads = (read for read in reader if read_filter.accept(read))
        if param.baq:
            tmpdir = stack.enter_context(TemporaryDirectory(prefix="mitopileup-"))
            filtered_path = os.path.join(tmpdir, "filtered.bam")
            baq_path = os.path.join(tmpdir, "baq.bam")
            write_alignments(reads, reader.header, filtered_path)
            compute_baq_tags(filtered_path, param.reference_path, baq_path)
            reads = stack.enter_context(AlignmentReader(baq_path, reference=param.reference_path))
            recalibrator = BaqRecalibrator()
        else:
            recalibrator = NoRecalibration()
        for read in reads:
            try:
                aggregator.observe(sample, recalibrator.recalibrate(read, reference))
            except (MalformedReadError, ValueError) as e:
                aggregator.statistics.invalid_reads += 1
                warn_once(logger, "Skipping invalid read: %s", e)
    logger.debug(
        "%s: %d reads accepted, %d rejected", path, read_filter.accepted, read_filter.rejected
    )
    return PileupResult(sample, path, aggregator.pileup, aggregator.statistics, read_filter)


def _run_worker(path, sample, reference, param) -> PileupResult:
    try:
        return pileup_alignment_file(path, sample, reference, param)
    except (OSError, ValueError, pysam.SamtoolsError) as e:
        raise CommandLineError(f"Error while reading alignment file {path}: {e}")


def pileup_files(
    alignment_files: Dict[str, str],
    reference: ReferenceSequence,
    param: PileupParameters,
    threads: int = 1,
) -> List[PileupResult]:
    """
    Run pileup_alignment_file on each (path, sample) item of alignment_files.
    Results are returned in input order.
    """
    if threads == 1:
        return [
            _run_worker(path, sample, reference, param) for path, sample in alignment_files.items()
        ]
    with Pool(processes=threads) as pool:
        process_results = [
            pool.apply_async(_run_worker, (path, sample, reference, param))
            for path, sample in alignment_files.items()
        ]
        return [res.get() for res in process_results]


def check_alignment_files(paths: Sequence[str]) -> Dict[str, str]:
    """Return an ordered mapping from path to sample name"""
    files: Dict[str, str] = OrderedDict()
    for path in paths:
        try:
            file_format = detect_file_format(path)
        except OSError as e:
            raise CommandLineError(e)
        if file_format is None:
            raise CommandLineError(f"{path} is not a BAM, SAM or CRAM file")
        if path in files:
            logger.warning("Alignment file %s given more than once, using it only once", path)
            continue
        files[path] = sample_name_from_path(path)
    samples = list(files.values())
    for sample in sorted(set(samples)):
        n = samples.count(sample)
        if n > 1:
            logger.info("Merging reads of %d files into sample %r", n, sample)
    return files


def log_read_summary(read_filter: ReadFilter, statistics: PileupStatistics) -> None:
    total = read_filter.accepted + read_filter.rejected
    logger.info("Processed %d read%s", total, plural_s(total))
    for reason in FilterReason:
        n = read_filter.rejections[reason]
        if n:
            logger.info("  %7d rejected (%s)", n, reason.value)
    logger.info("  %7d rejected as invalid", statistics.invalid_reads)
    logger.info("  %7d counted", statistics.reads)
    logger.info(
        "Counted %d bases (%d forward, %d reverse), %d deletions and %d insertions",
        statistics.forward_bases + statistics.reverse_bases,
        statistics.forward_bases,
        statistics.reverse_bases,
        statistics.deletions,
        statistics.insertions,
    )
    logger.info("Skipped %d bases with low base quality", statistics.low_quality_bases)
    if statistics.unknown_bases:
        logger.info("Skipped %d bases with unknown base character", statistics.unknown_bases)


def run_pileup(
    reference,
    alignment_files: Sequence[str],
    output=sys.stdout,
    counts: Optional[str] = None,
    fasta: Optional[str] = None,
    contig: Optional[str] = None,
    threads: int = 1,
    mapping_quality: int = 20,
    alignment_score: int = 30,
    base_quality: int = 20,
    min_read_length: int = 25,
    baq: bool = True,
    min_level: float = 0.01,
    low_level: float = 0.1,
    homoplasmy_level: float = 0.9,
    call_deletions: bool = False,
    consensus_level: float = 0.5,
):
    timers = StageTimer()
    logger.info(
        "This is mitopileup %s running under Python %s", __version__, platform.python_version()
    )
    try:
        options = ClassifierOptions(
            min_level=min_level,
            low_level=low_level,
            homoplasmy_level=homoplasmy_level,
            call_deletions=call_deletions,
        )
    except ValueError as e:
        raise CommandLineError(e)

    with timers("read_reference"):
        reference_sequence = load_reference(reference, contig)
    files = check_alignment_files(alignment_files)
    param = PileupParameters(
        reference_path=reference,
        contig=reference_sequence.name,
        mapping_quality=mapping_quality,
        alignment_score=alignment_score,
        base_quality=base_quality,
        min_read_length=min_read_length,
        baq=baq,
    )
    logger.info(
        "Counting alleles in %d alignment file%s%s",
        len(files),
        plural_s(len(files)),
        " (BAQ enabled)" if baq else "",
    )
    with timers("pileup"):
        results = pileup_files(files, reference_sequence, param, threads=threads)

    pileup = Pileup()
    statistics = PileupStatistics()
    read_filter = param.read_filter()
    for result in results:
        pileup.merge(result.pileup)
        statistics.merge(result.statistics)
        read_filter.merge(result.read_filter)
    log_read_summary(read_filter, statistics)

    if counts is not None:
        with ExitStack() as stack:
            with timers("write_counts"):
                PileupTableWriter(open_output(stack, counts)).write_pileup(pileup)
        logger.info(
            "Wrote counts of %d position%s to %s", len(pileup), plural_s(len(pileup)), counts
        )

    with timers("call"):
        called = call_variants(pileup, reference_sequence, VariantClassifier(options))
    # samples without any counted read still get a consensus
    samples = {name: called.get(name, Sample(name)) for name in sorted(set(files.values()))}
    write_variant_outputs(
        samples, reference_sequence, options, output, fasta, consensus_level, timers
    )

    log_memory_usage(include_children=(threads > 1))
    timers.log_summary(
        [
            ("read_reference", "Time spent reading reference"),
            ("pileup", "Time spent counting alleles"),
            ("write_counts", "Time spent writing counts"),
            ("call", "Time spent calling variants"),
            ("write_variants", "Time spent writing variants"),
            ("consensus", "Time spent building consensus"),
        ]
    )


def main(args):
    run_pileup(**vars(args))
