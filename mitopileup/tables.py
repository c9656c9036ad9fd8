"""
Tab-separated tables of pileup counts and variant calls, and FASTA output
"""
import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, TextIO

from xopen import xopen

from .pileup import COUNTED_ALLELES, Allele, Pileup, PositionCounter
from .variants import ClassifierOptions, Sample, Variant, VariantType

logger = logging.getLogger(__name__)


class TableFormatError(Exception):
    pass


VARIANT_HEADER = [
    "SampleID",
    "Pos",
    "Ref",
    "Variant",
    "Major/Minor",
    "Variant-Level",
    "Coverage-FWD",
    "Coverage-Rev",
    "Coverage-Total",
]

INSERTION_PREFIX = "+"

# levels are written rounded to this many decimals
LEVEL_DECIMALS = 3

QUALITY_ALLELES = tuple(allele for allele in COUNTED_ALLELES if allele is not Allele.N)

COUNTS_HEADER = (
    ["SampleID", "Pos"]
    + [f"{allele.symbol}-FWD" for allele in COUNTED_ALLELES]
    + [f"{allele.symbol}-REV" for allele in COUNTED_ALLELES]
    + [f"{allele.symbol}-FWD-QSUM" for allele in QUALITY_ALLELES]
    + [f"{allele.symbol}-REV-QSUM" for allele in QUALITY_ALLELES]
    + ["Insertions"]
)


def format_variant(variant: Variant) -> str:
    if variant.type is VariantType.INSERTION:
        return INSERTION_PREFIX + variant.sequence
    return variant.sequence


class VariantTableWriter:
    def __init__(self, file: TextIO):
        self._file = file
        print(*VARIANT_HEADER, sep="\t", file=self._file)

    def write(self, sample_id: str, variant: Variant) -> None:
        print(
            sample_id,
            variant.position,
            variant.reference,
            format_variant(variant),
            variant.label,
            f"{variant.level:.{LEVEL_DECIMALS}f}",
            variant.coverage_forward,
            variant.coverage_reverse,
            variant.coverage_total,
            sep="\t",
            file=self._file,
        )

    def write_samples(self, samples: Iterable[Sample]) -> int:
        """Write all variants of the given samples and return how many were written"""
        n = 0
        for sample in samples:
            for variant in sample:
                self.write(sample.id, variant)
                n += 1
        return n


def tabulated(sample: Sample, options: ClassifierOptions) -> Sample:
    """
    Return a copy of sample as VariantTableReader would read it back after
    writing it: levels are rounded and types derived from the rounded levels.
    """
    result = Sample(sample.id)
    for variant in sample:
        level = round(variant.level, LEVEL_DECIMALS)
        result.add(replace(variant, level=level, type=options.variant_type(variant.allele, level)))
    return result


class VariantTableReader:
    """
    Read a variant table back into Sample objects. Variant types are derived
    from the called allele and the level using the given classifier options.
    """

    def __init__(self, path, options: Optional[ClassifierOptions] = None):
        self.path = path
        self._options = options if options is not None else ClassifierOptions()

    def _error(self, line_number: int, message: str) -> TableFormatError:
        return TableFormatError(f"{self.path}, line {line_number}: {message}")

    def _parse(self, line_number: int, fields: List[str]) -> Variant:
        if len(fields) != len(VARIANT_HEADER):
            raise self._error(
                line_number, f"expected {len(VARIANT_HEADER)} columns, found {len(fields)}"
            )
        _, pos, ref, called, label, level, forward, reverse, total = fields
        try:
            position = int(pos)
            level_value = float(level)
            coverage_forward = int(forward)
            coverage_reverse = int(reverse)
            coverage_total = int(total)
        except ValueError as e:
            raise self._error(line_number, str(e)) from None
        if not 0.0 <= level_value <= 1.0:
            raise self._error(line_number, f"variant level {level} is not between 0 and 1")
        if coverage_forward + coverage_reverse != coverage_total:
            raise self._error(line_number, "strand coverages do not add up to the total")
        if label not in ("major", "minor"):
            raise self._error(line_number, f"unknown Major/Minor label {label!r}")
        if called.startswith(INSERTION_PREFIX) and len(called) > 1:
            allele = Allele.INSERTION
            sequence = called[len(INSERTION_PREFIX) :]
        else:
            allele = Allele.from_symbol(called)
            if allele is None or allele is Allele.N:
                raise self._error(line_number, f"cannot interpret variant {called!r}")
            sequence = allele.symbol
        return Variant(
            position=position,
            reference=ref,
            allele=allele,
            sequence=sequence,
            type=self._options.variant_type(allele, level_value),
            level=level_value,
            coverage_forward=coverage_forward,
            coverage_reverse=coverage_reverse,
        )

    def read(self) -> Dict[str, Sample]:
        """Return a dict mapping sample names to Sample objects, in order of appearance"""
        samples: Dict[str, Sample] = dict()
        with xopen(self.path) as f:
            header = f.readline().rstrip("\r\n").split("\t")
            if header != VARIANT_HEADER:
                raise self._error(1, "header does not match the variant table format")
            for line_number, line in enumerate(f, start=2):
                line = line.rstrip("\r\n")
                if not line:
                    continue
                fields = line.split("\t")
                variant = self._parse(line_number, fields)
                sample_id = fields[0]
                if sample_id not in samples:
                    samples[sample_id] = Sample(sample_id)
                samples[sample_id].add(variant)
        logger.debug("Read %d sample(s) from %s", len(samples), self.path)
        return samples


def format_insertions(counter: PositionCounter) -> str:
    if not counter.insertions:
        return "."
    return ",".join(
        f"{sequence}:{forward}:{reverse}"
        for sequence, (forward, reverse) in sorted(counter.insertions.items())
    )


class PileupTableWriter:
    def __init__(self, file: TextIO):
        self._file = file
        print(*COUNTS_HEADER, sep="\t", file=self._file)

    def write(self, sample: str, position: int, counter: PositionCounter) -> None:
        print(
            sample,
            position,
            *counter.forward,
            *counter.reverse,
            *(counter.forward_quality[allele] for allele in QUALITY_ALLELES),
            *(counter.reverse_quality[allele] for allele in QUALITY_ALLELES),
            format_insertions(counter),
            sep="\t",
            file=self._file,
        )

    def write_pileup(self, pileup: Pileup) -> None:
        for sample in pileup.samples():
            for position in pileup.positions(sample):
                self.write(sample, position, pileup[(sample, position)])


class PileupTableReader:
    """Read a counts table. Rows with the same sample and position are summed."""

    def __init__(self, path):
        self.path = path

    def _error(self, line_number: int, message: str) -> TableFormatError:
        return TableFormatError(f"{self.path}, line {line_number}: {message}")

    def _parse_counter(self, line_number: int, fields: List[str]) -> PositionCounter:
        n = len(COUNTED_ALLELES)
        q = len(QUALITY_ALLELES)
        try:
            values = [int(value) for value in fields[2:-1]]
        except ValueError as e:
            raise self._error(line_number, str(e)) from None
        if any(value < 0 for value in values):
            raise self._error(line_number, "negative count")
        counter = PositionCounter(forward=values[:n], reverse=values[n : 2 * n])
        for i, allele in enumerate(QUALITY_ALLELES):
            counter.forward_quality[allele] = values[2 * n + i]
            counter.reverse_quality[allele] = values[2 * n + q + i]
        if fields[-1] != ".":
            for item in fields[-1].split(","):
                try:
                    sequence, forward, reverse = item.split(":")
                    strands = [int(forward), int(reverse)]
                except ValueError:
                    raise self._error(line_number, f"cannot parse insertion {item!r}") from None
                if not sequence or min(strands) < 0:
                    raise self._error(line_number, f"invalid insertion {item!r}")
                # an insertion is only counted together with the base before it
                if strands[0] > counter.forward_depth() or strands[1] > counter.reverse_depth():
                    raise self._error(
                        line_number, f"insertion {item!r} is observed more often than the base"
                    )
                counter.insertions[sequence] = strands
        return counter

    def read(self, pileup: Optional[Pileup] = None) -> Pileup:
        """Add the counts in the table to pileup (a new one if None) and return it"""
        if pileup is None:
            pileup = Pileup()
        with xopen(self.path) as f:
            header = f.readline().rstrip("\r\n").split("\t")
            if header != COUNTS_HEADER:
                raise self._error(1, "header does not match the counts table format")
            for line_number, line in enumerate(f, start=2):
                line = line.rstrip("\r\n")
                if not line:
                    continue
                fields = line.split("\t")
                if len(fields) != len(COUNTS_HEADER):
                    raise self._error(
                        line_number,
                        f"expected {len(COUNTS_HEADER)} columns, found {len(fields)}",
                    )
                try:
                    position = int(fields[1])
                except ValueError as e:
                    raise self._error(line_number, str(e)) from None
                counter = self._parse_counter(line_number, fields)
                pileup.counter(fields[0], position).merge(counter)
        return pileup


def write_fasta(file: TextIO, name: str, sequence: str) -> None:
    print(f">{name}", file=file)
    print(sequence, file=file)
