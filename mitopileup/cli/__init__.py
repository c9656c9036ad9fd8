import sys
import resource
import logging
from contextlib import ExitStack
from typing import Dict, Optional

from xopen import xopen

from mitopileup.consensus import ConsensusBuilder
from mitopileup.reference import ReferenceSequence, ContigNotFoundError
from mitopileup.tables import VariantTableWriter, tabulated, write_fasta
from mitopileup.timer import StageTimer
from mitopileup.utils import FastaNotIndexedError, plural_s
from mitopileup.variants import ClassifierOptions, Sample

logger = logging.getLogger(__name__)


class CommandLineError(Exception):
    """An anticipated command-line error occurred. This ends up as a user-visible error message"""


def load_reference(path, contig: Optional[str] = None) -> ReferenceSequence:
    try:
        reference = ReferenceSequence.from_fasta(path, contig)
    except OSError as e:
        raise CommandLineError(f"Error while opening FASTA reference file: {e}")
    except FastaNotIndexedError as e:
        raise CommandLineError(
            f"An index file (.fai) for the reference FASTA '{e.args[0]}' "
            "could not be found. Please create one with "
            "'samtools faidx'."
        )
    except ContigNotFoundError as e:
        raise CommandLineError(e)
    logger.info("Using reference %r of length %d", reference.name, len(reference))
    return reference


def open_output(stack: ExitStack, output):
    """Return a writable text file for output, which is a path or sys.stdout"""
    if output is sys.stdout or output == "-":
        return sys.stdout
    return stack.enter_context(xopen(output, "w"))


# fmt: off
def add_classifier_arguments(parser):
    arg = parser.add_argument_group("Variant calling").add_argument
    arg("--min-level", metavar="LEVEL", type=float, default=0.01,
        help="Report alleles whose level exceeds LEVEL (default: %(default)s)")
    arg("--low-level", metavar="LEVEL", type=float, default=0.1,
        help="Substitutions below LEVEL are reported as low-level calls (default: %(default)s)")
    arg("--homoplasmy-level", metavar="LEVEL", type=float, default=0.9,
        help="Substitutions at or above LEVEL are homoplasmies (default: %(default)s)")
    arg("--call-deletions", default=False, action="store_true",
        help="Also report deletions")
    add_consensus_arguments(parser)


def add_consensus_arguments(parser):
    arg = parser.add_argument_group("Consensus").add_argument
    arg("--consensus-level", metavar="LEVEL", type=float, default=0.5,
        help="Heteroplasmies at or above and deletions above LEVEL are applied to the "
        "consensus sequence (default: %(default)s)")
# fmt: on


def validate_classifier_arguments(args, parser):
    try:
        ClassifierOptions(
            min_level=getattr(args, "min_level", 0.0),
            low_level=args.low_level,
            homoplasmy_level=args.homoplasmy_level,
        )
    except ValueError as e:
        parser.error(str(e))
    if not 0.0 <= args.consensus_level <= 1.0:
        parser.error("--consensus-level must be between 0 and 1")


def write_variant_outputs(
    samples: Dict[str, Sample],
    reference: ReferenceSequence,
    options: ClassifierOptions,
    output,
    fasta,
    consensus_level: float,
    timers: StageTimer,
) -> None:
    """
    Write the variant table and, if fasta is not None, consensus sequences.
    The consensus is built from the variants as written to the table, so that
    'mitopileup consensus' on the table gives the same sequences.
    """
    with ExitStack() as stack:
        with timers("write_variants"):
            writer = VariantTableWriter(open_output(stack, output))
            n_variants = writer.write_samples(samples.values())
        logger.info(
            "Wrote %d variant%s of %d sample%s",
            n_variants,
            plural_s(n_variants),
            len(samples),
            plural_s(len(samples)),
        )
        if fasta is not None:
            builder = ConsensusBuilder(level=consensus_level)
            with timers("consensus"):
                fasta_file = open_output(stack, fasta)
                for sample in samples.values():
                    consensus = builder.build(tabulated(sample, options), reference)
                    write_fasta(fasta_file, sample.id, consensus)
            logger.info("Wrote consensus sequences to %s", fasta)


def log_memory_usage(include_children=False):
    if sys.platform == "linux":
        memory_kb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        if include_children:
            memory_kb += resource.getrusage(resource.RUSAGE_CHILDREN).ru_maxrss
        logger.info("Maximum memory usage: %.3f GB", memory_kb / 1e6)
