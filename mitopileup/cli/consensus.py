"""
Build consensus sequences from a variant table

Variants in VARIANTS (as written by 'mitopileup pileup' or 'mitopileup call')
are applied to the reference. One FASTA record per sample is written.
"""
import sys
import logging
from contextlib import ExitStack
from typing import Optional

from mitopileup.cli import CommandLineError, add_consensus_arguments, load_reference, open_output
from mitopileup.consensus import ConsensusBuilder
from mitopileup.tables import TableFormatError, VariantTableReader, write_fasta
from mitopileup.timer import StageTimer
from mitopileup.utils import plural_s
from mitopileup.variants import ClassifierOptions

logger = logging.getLogger(__name__)


# fmt: off
def add_arguments(parser):
    arg = parser.add_argument
    arg("-o", "--output", default=sys.stdout,
        help="Output FASTA file. If omitted, use standard output.")
    arg("--contig", metavar="NAME", default=None,
        help="Name of the reference sequence to use (default: first sequence in FASTA)")
    arg("--sample", dest="samples", metavar="SAMPLE", default=None, action="append",
        help="Name of a sample to write. If not given, all samples in the table "
        "are written. Can be used multiple times.")
    arg("--low-level", metavar="LEVEL", type=float, default=0.1,
        help="Substitutions below LEVEL are treated as low-level calls (default: %(default)s)")
    arg("--homoplasmy-level", metavar="LEVEL", type=float, default=0.9,
        help="Substitutions at or above LEVEL are treated as homoplasmies (default: %(default)s)")
    add_consensus_arguments(parser)
    arg("reference", metavar="FASTA",
        help="Reference sequence. Must be accompanied by .fai index (create with samtools faidx)")
    arg("variant_file", metavar="VARIANTS", help="Variant table")
# fmt: on


def validate(args, parser):
    if not 0.0 <= args.low_level <= args.homoplasmy_level <= 1.0:
        parser.error("Levels must satisfy 0 <= --low-level <= --homoplasmy-level <= 1")
    if not 0.0 <= args.consensus_level <= 1.0:
        parser.error("--consensus-level must be between 0 and 1")


def run_consensus(
    reference,
    variant_file,
    output=sys.stdout,
    contig: Optional[str] = None,
    samples=None,
    low_level: float = 0.1,
    homoplasmy_level: float = 0.9,
    consensus_level: float = 0.5,
):
    timers = StageTimer()
    try:
        options = ClassifierOptions(
            min_level=0.0, low_level=low_level, homoplasmy_level=homoplasmy_level
        )
        builder = ConsensusBuilder(level=consensus_level)
    except ValueError as e:
        raise CommandLineError(e)

    reference_sequence = load_reference(reference, contig)
    with timers("read_variants"):
        try:
            variants = VariantTableReader(variant_file, options).read()
        except OSError as e:
            raise CommandLineError(f"Error while reading variant table {variant_file}: {e}")
        except TableFormatError as e:
            raise CommandLineError(e)

    if samples:
        missing = [name for name in samples if name not in variants]
        if missing:
            raise CommandLineError(
                f"Sample{plural_s(len(missing))} not found in {variant_file}: "
                + ", ".join(missing)
            )
        selected = [variants[name] for name in samples]
    else:
        selected = list(variants.values())

    with ExitStack() as stack:
        f = open_output(stack, output)
        with timers("consensus"):
            for sample in selected:
                write_fasta(f, sample.id, builder.build(sample, reference_sequence))
    n = len(selected)
    logger.info("Wrote consensus sequence%s of %d sample%s", plural_s(n), n, plural_s(n))
    timers.log_summary(
        [
            ("read_variants", "Time spent reading variants"),
            ("consensus", "Time spent building consensus"),
        ]
    )


def main(args):
    run_consensus(**vars(args))
