"""
Strand-aware pileup of aligned reads.

Every aligned base, deletion and insertion of an accepted read is counted
per (sample, reference position). Counters only ever grow, so pileups of
disjoint sets of reads can be merged by summation in any order.
"""
import logging
from dataclasses import dataclass, field, fields
from enum import IntEnum
from typing import Dict, ItemsView, Iterator, List, NamedTuple, Optional

import pysam

from .utils import warn_once

logger = logging.getLogger(__name__)


class MalformedReadError(Exception):
    pass


class Allele(IntEnum):
    A = 0
    C = 1
    G = 2
    T = 3
    N = 4
    DELETION = 5
    INSERTION = 6

    @property
    def symbol(self) -> str:
        return "ACGTNDI"[self]

    @classmethod
    def from_symbol(cls, symbol: str) -> Optional["Allele"]:
        """
        Return the allele for a base letter or the deletion marker 'D', None for
        anything else.

        >>> Allele.from_symbol("g")
        <Allele.G: 2>
        >>> Allele.from_symbol("D")
        <Allele.DELETION: 5>
        >>> Allele.from_symbol("R") is None
        True
        """
        return _ALLELE_BY_SYMBOL.get(symbol.upper())


_ALLELE_BY_SYMBOL = {allele.symbol: allele for allele in Allele if allele is not Allele.INSERTION}
BASE_ALLELES = {symbol: _ALLELE_BY_SYMBOL[symbol] for symbol in "ACGTN"}

# Alleles with a count per strand, in storage order
COUNTED_ALLELES = (Allele.A, Allele.C, Allele.G, Allele.T, Allele.N, Allele.DELETION)

MATCH_OPERATIONS = frozenset((pysam.CMATCH, pysam.CEQUAL, pysam.CDIFF))


def _zeros() -> List[int]:
    return [0] * len(COUNTED_ALLELES)


class PositionKey(NamedTuple):
    sample: str
    position: int


@dataclass
class PositionCounter:
    """
    Allele counts and quality sums of one position of one sample, per strand.

    The quality sum of N is always zero. Insertions are stored as a mapping from
    inserted sequence to a [forward, reverse] pair of counts.
    """

    forward: List[int] = field(default_factory=_zeros)
    reverse: List[int] = field(default_factory=_zeros)
    forward_quality: List[int] = field(default_factory=_zeros)
    reverse_quality: List[int] = field(default_factory=_zeros)
    insertions: Dict[str, List[int]] = field(default_factory=dict)

    def add(self, allele: Allele, is_reverse: bool, quality: int) -> None:
        if is_reverse:
            counts, qualities = self.reverse, self.reverse_quality
        else:
            counts, qualities = self.forward, self.forward_quality
        counts[allele] += 1
        if allele is not Allele.N:
            qualities[allele] += quality

    def add_insertion(self, sequence: str, is_reverse: bool) -> None:
        strands = self.insertions.setdefault(sequence, [0, 0])
        strands[int(is_reverse)] += 1

    def forward_count(self, allele: Allele) -> int:
        return self.forward[allele]

    def reverse_count(self, allele: Allele) -> int:
        return self.reverse[allele]

    def count(self, allele: Allele) -> int:
        return self.forward[allele] + self.reverse[allele]

    def quality_sum(self, allele: Allele, is_reverse: bool) -> int:
        return (self.reverse_quality if is_reverse else self.forward_quality)[allele]

    def insertion_count(self, sequence: str) -> int:
        return sum(self.insertions.get(sequence, ()))

    def forward_depth(self) -> int:
        return sum(self.forward)

    def reverse_depth(self) -> int:
        return sum(self.reverse)

    def depth(self) -> int:
        """Number of bases and deletions on both strands, N included"""
        return self.forward_depth() + self.reverse_depth()

    def merge(self, other: "PositionCounter") -> None:
        for mine, theirs in (
            (self.forward, other.forward),
            (self.reverse, other.reverse),
            (self.forward_quality, other.forward_quality),
            (self.reverse_quality, other.reverse_quality),
        ):
            for i, value in enumerate(theirs):
                mine[i] += value
        for sequence, (forward, reverse) in other.insertions.items():
            strands = self.insertions.setdefault(sequence, [0, 0])
            strands[0] += forward
            strands[1] += reverse

    def copy(self) -> "PositionCounter":
        counter = PositionCounter()
        counter.merge(self)
        return counter

    def check(self) -> None:
        """Fail if any count or quality sum is negative"""
        for values in (self.forward, self.reverse, self.forward_quality, self.reverse_quality):
            assert all(value >= 0 for value in values), f"Negative value in counter {self}"
        for sequence, strands in self.insertions.items():
            assert all(value >= 0 for value in strands), f"Negative count for insertion {sequence}"


class Pileup:
    """
    Owned collection of PositionCounters keyed by (sample, position).

    Iteration order is unspecified. Use samples() and positions() for a
    sorted view.
    """

    def __init__(self) -> None:
        self._counters: Dict[PositionKey, PositionCounter] = dict()

    def counter(self, sample: str, position: int) -> PositionCounter:
        """Return the counter for a key, creating it on first access"""
        key = PositionKey(sample, position)
        try:
            return self._counters[key]
        except KeyError:
            counter = self._counters[key] = PositionCounter()
            return counter

    def __getitem__(self, key: PositionKey) -> PositionCounter:
        return self._counters[key]

    def get(self, key: PositionKey) -> Optional[PositionCounter]:
        return self._counters.get(key)

    def __contains__(self, key) -> bool:
        return key in self._counters

    def __len__(self) -> int:
        return len(self._counters)

    def __iter__(self) -> Iterator[PositionKey]:
        return iter(self._counters)

    def items(self) -> ItemsView[PositionKey, PositionCounter]:
        return self._counters.items()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Pileup):
            return NotImplemented
        return self._counters == other._counters

    def __repr__(self) -> str:
        return f"Pileup({len(self)} positions, samples={self.samples()})"

    def samples(self) -> List[str]:
        return sorted({key.sample for key in self._counters})

    def positions(self, sample: str) -> List[int]:
        return sorted(key.position for key in self._counters if key.sample == sample)

    def merge(self, other: "Pileup") -> "Pileup":
        """Add all counts of other to this pileup and return this pileup"""
        for key, counter in other.items():
            self.counter(key.sample, key.position).merge(counter)
        return self

    def copy(self) -> "Pileup":
        return Pileup().merge(self)


@dataclass
class PileupStatistics:
    reads: int = 0
    invalid_reads: int = 0
    forward_bases: int = 0
    reverse_bases: int = 0
    low_quality_bases: int = 0
    unknown_bases: int = 0
    deletions: int = 0
    insertions: int = 0
    skipped_insertions: int = 0

    def merge(self, other: "PileupStatistics") -> "PileupStatistics":
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self


class PileupAggregator:
    """
    Count the bases, deletions and insertions of reads into a Pileup.

    Reads must already have passed the ReadFilter (and, if enabled, base
    quality recalibration).
    """

    def __init__(
        self,
        pileup: Optional[Pileup] = None,
        *,
        min_base_quality: int = 20,
        reference_length: Optional[int] = None,
    ):
        """
        pileup -- counts are added to this pileup. A new one is created if None.
        min_base_quality -- bases (and inserted bases) below this quality are not counted
        reference_length -- if given, reads aligned beyond this length are rejected
        """
        self.pileup = pileup if pileup is not None else Pileup()
        self.statistics = PileupStatistics()
        self._min_base_quality = min_base_quality
        self._reference_length = reference_length

    def _check(self, read: pysam.AlignedSegment):
        name = read.query_name
        if read.is_unmapped or read.reference_start < 0:
            raise MalformedReadError(f"Read {name!r} has no alignment position")
        sequence = read.query_sequence
        if not sequence:
            raise MalformedReadError(f"Read {name!r} has no sequence")
        qualities = read.query_qualities
        if qualities is None:
            raise MalformedReadError(f"Read {name!r} has no base qualities")
        cigar = read.cigartuples
        if not cigar:
            raise MalformedReadError(f"Read {name!r} has no CIGAR")
        if read.infer_query_length() != len(sequence):
            raise MalformedReadError(f"CIGAR of read {name!r} does not match its sequence length")
        end = read.reference_end
        if self._reference_length is not None and end is not None and end > self._reference_length:
            raise MalformedReadError(
                f"Read {name!r} is aligned beyond the end of the reference "
                f"({end} > {self._reference_length})"
            )
        return sequence.upper(), qualities, cigar

    def observe(self, sample: str, read: pysam.AlignedSegment) -> None:
        """
        Add the contribution of a single read to the pileup of the given sample.

        Raise MalformedReadError (before anything is counted) if the read cannot
        be interpreted.
        """
        sequence, qualities, cigar = self._check(read)
        is_reverse = read.is_reverse
        min_quality = self._min_base_quality
        stats = self.statistics
        pileup = self.pileup

        # 1-based position of the last reference base consumed so far
        position = read.reference_start
        query_pos = 0
        # position this read last contributed a count to, if it is the previous one
        anchor = None
        counted = 0
        for operation, length in cigar:
            if operation in MATCH_OPERATIONS:
                for i in range(query_pos, query_pos + length):
                    position += 1
                    quality = qualities[i]
                    if quality < min_quality:
                        stats.low_quality_bases += 1
                        anchor = None
                        continue
                    allele = BASE_ALLELES.get(sequence[i])
                    if allele is None:
                        stats.unknown_bases += 1
                        warn_once(
                            logger,
                            "Read %r contains the character %r, which is not counted as a base.",
                            read.query_name,
                            sequence[i],
                        )
                        anchor = None
                        continue
                    pileup.counter(sample, position).add(allele, is_reverse, quality)
                    counted += 1
                    anchor = position
                query_pos += length
            elif operation == pysam.CINS:
                inserted_qualities = qualities[query_pos : query_pos + length]
                if anchor == position and min(inserted_qualities) >= min_quality:
                    inserted = sequence[query_pos : query_pos + length]
                    pileup.counter(sample, position).add_insertion(inserted, is_reverse)
                    stats.insertions += 1
                else:
                    stats.skipped_insertions += 1
                query_pos += length
            elif operation == pysam.CDEL:
                quality = qualities[query_pos - 1] if query_pos > 0 else 0
                for _ in range(length):
                    position += 1
                    pileup.counter(sample, position).add(Allele.DELETION, is_reverse, quality)
                stats.deletions += length
                anchor = position
            elif operation == pysam.CREF_SKIP:
                position += length
                anchor = None
            elif operation == pysam.CSOFT_CLIP:
                query_pos += length
                anchor = None
            # hard clips and padding consume neither query nor reference

        stats.reads += 1
        if is_reverse:
            stats.reverse_bases += counted
        else:
            stats.forward_bases += counted
