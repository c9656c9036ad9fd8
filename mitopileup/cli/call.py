"""
Call variants from allele counts

Counts tables written by 'mitopileup pileup --counts' are read and summed
per sample and position. Variants are called from the summed counts and
written as a tab-separated table.
"""
import sys
import logging
import platform
from typing import Optional, Sequence

from mitopileup import __version__
from mitopileup.cli import (
    CommandLineError,
    add_classifier_arguments,
    load_reference,
    validate_classifier_arguments,
    write_variant_outputs,
)
from mitopileup.pileup import Pileup
from mitopileup.tables import PileupTableReader, TableFormatError
from mitopileup.timer import StageTimer
from mitopileup.utils import plural_s
from mitopileup.variants import ClassifierOptions, VariantClassifier, call_variants

logger = logging.getLogger(__name__)


# fmt: off
def add_arguments(parser):
    arg = parser.add_argument
    arg("-o", "--output", default=sys.stdout,
        help="Output file for the variant table. If omitted, use standard output.")
    arg("--fasta", metavar="FILE", default=None,
        help="Also write one consensus sequence per sample to FILE")
    arg("--contig", metavar="NAME", default=None,
        help="Name of the reference sequence to use (default: first sequence in FASTA)")
    add_classifier_arguments(parser)
    arg("reference", metavar="FASTA",
        help="Reference sequence. Must be accompanied by .fai index (create with samtools faidx)")
    arg("counts_files", metavar="COUNTS", nargs="+",
        help="Counts tables. Counts of the same sample and position are added up.")
# fmt: on


def validate(args, parser):
    validate_classifier_arguments(args, parser)


def read_counts(paths: Sequence[str]) -> Pileup:
    pileup = Pileup()
    for path in paths:
        try:
            PileupTableReader(path).read(pileup)
        except OSError as e:
            raise CommandLineError(f"Error while reading counts table {path}: {e}")
        except TableFormatError as e:
            raise CommandLineError(e)
    return pileup


def run_call(
    reference,
    counts_files: Sequence[str],
    output=sys.stdout,
    fasta: Optional[str] = None,
    contig: Optional[str] = None,
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
    with timers("read_counts"):
        pileup = read_counts(counts_files)
    n_samples = len(pileup.samples())
    logger.info(
        "Read counts of %d position%s in %d sample%s from %d file%s",
        len(pileup),
        plural_s(len(pileup)),
        n_samples,
        plural_s(n_samples),
        len(counts_files),
        plural_s(len(counts_files)),
    )
    with timers("call"):
        samples = call_variants(pileup, reference_sequence, VariantClassifier(options))
    write_variant_outputs(
        samples, reference_sequence, options, output, fasta, consensus_level, timers
    )

    timers.log_summary(
        [
            ("read_reference", "Time spent reading reference"),
            ("read_counts", "Time spent reading counts"),
            ("call", "Time spent calling variants"),
            ("write_variants", "Time spent writing variants"),
            ("consensus", "Time spent building consensus"),
        ]
    )


def main(args):
    run_call(**vars(args))
