"""
Call variants from pileup counters.

The level of an allele is its number of observations divided by the total
depth (bases, N calls and deletions on both strands) at its position.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import IntEnum
from typing import DefaultDict, Dict, FrozenSet, Iterator, List, Optional, Set

from .pileup import Allele, Pileup, PositionCounter
from .reference import ReferenceSequence

logger = logging.getLogger(__name__)

MAJOR_LEVEL = 0.5


class VariantType(IntEnum):
    HOMOPLASMY = 1
    HETEROPLASMY = 2
    LOW_LEVEL = 3
    DELETION = 4
    INSERTION = 5

    @property
    def is_substitution(self) -> bool:
        """Deletions count as substitutions of a base by a gap"""
        return self is not VariantType.INSERTION


@dataclass(frozen=True)
class Variant:
    position: int
    reference: str
    allele: Allele
    # substitution letter, 'D' or the inserted sequence
    sequence: str
    type: VariantType
    level: float
    coverage_forward: int
    coverage_reverse: int

    def __post_init__(self):
        assert 0.0 <= self.level <= 1.0, f"Level {self.level} of {self} outside of [0, 1]"

    @property
    def coverage_total(self) -> int:
        return self.coverage_forward + self.coverage_reverse

    @property
    def is_major(self) -> bool:
        return self.level > MAJOR_LEVEL

    @property
    def label(self) -> str:
        return "major" if self.is_major else "minor"

    def sort_key(self):
        return (self.position, self.allele, self.sequence)


@dataclass
class ClassifierOptions:
    """
    min_level -- alleles must exceed this level to be reported
    low_level -- substitutions below this level are low-level calls
    homoplasmy_level -- substitutions at or above this level are homoplasmies
    call_deletions -- whether deletions are reported at all
    """

    min_level: float = 0.01
    low_level: float = 0.1
    homoplasmy_level: float = 0.9
    call_deletions: bool = False

    def __post_init__(self):
        if not 0.0 <= self.min_level <= self.low_level <= self.homoplasmy_level <= 1.0:
            raise ValueError(
                "Levels must satisfy 0 <= min_level <= low_level <= homoplasmy_level <= 1 "
                f"(got {self.min_level}, {self.low_level}, {self.homoplasmy_level})"
            )

    def variant_type(self, allele: Allele, level: float) -> VariantType:
        if allele is Allele.INSERTION:
            return VariantType.INSERTION
        if allele is Allele.DELETION:
            return VariantType.DELETION
        if level >= self.homoplasmy_level:
            return VariantType.HOMOPLASMY
        if level >= self.low_level:
            return VariantType.HETEROPLASMY
        return VariantType.LOW_LEVEL


class VariantClassifier:
    def __init__(self, options: Optional[ClassifierOptions] = None):
        self.options = options if options is not None else ClassifierOptions()

    def _strand_balanced(
        self, forward: int, reverse: int, level: float, counter: PositionCounter
    ) -> bool:
        """
        Alleles below the homoplasmy level must be seen on both strands,
        unless the position itself is covered by only one strand.
        """
        if level >= self.options.homoplasmy_level:
            return True
        if counter.forward_depth() == 0 or counter.reverse_depth() == 0:
            return True
        return forward > 0 and reverse > 0

    def classify(
        self, counter: PositionCounter, reference_base: str, position: int
    ) -> FrozenSet[Variant]:
        """
        Return the variants found in the counter of a single position. The
        returned set has no particular order.
        """
        counter.check()
        depth = counter.depth()
        if depth == 0:
            return frozenset()
        options = self.options
        reference_base = reference_base.upper()
        coverage_forward = counter.forward_depth()
        coverage_reverse = counter.reverse_depth()

        candidates = []
        for allele in (Allele.A, Allele.C, Allele.G, Allele.T, Allele.DELETION):
            if allele.symbol == reference_base:
                continue
            if allele is Allele.DELETION and not options.call_deletions:
                continue
            forward = counter.forward_count(allele)
            reverse = counter.reverse_count(allele)
            candidates.append((allele, allele.symbol, forward, reverse))
        for sequence, (forward, reverse) in counter.insertions.items():
            candidates.append((Allele.INSERTION, sequence, forward, reverse))

        variants = set()
        for allele, sequence, forward, reverse in candidates:
            level = (forward + reverse) / depth
            if level <= options.min_level:
                continue
            if not self._strand_balanced(forward, reverse, level, counter):
                logger.debug(
                    "Allele %s at position %d (level %.3f) not seen on both strands",
                    sequence,
                    position,
                    level,
                )
                continue
            variants.add(
                Variant(
                    position=position,
                    reference=reference_base,
                    allele=allele,
                    sequence=sequence,
                    type=options.variant_type(allele, level),
                    level=level,
                    coverage_forward=coverage_forward,
                    coverage_reverse=coverage_reverse,
                )
            )
        return frozenset(variants)


class Sample:
    """The variants of one sample, grouped by position"""

    def __init__(self, id: str):
        self.id = id
        self._variants: DefaultDict[int, Set[Variant]] = defaultdict(set)

    def add(self, variant: Variant) -> None:
        self._variants[variant.position].add(variant)

    def variants_at(self, position: int) -> FrozenSet[Variant]:
        return frozenset(self._variants.get(position, ()))

    def positions(self) -> List[int]:
        return sorted(self._variants)

    def __iter__(self) -> Iterator[Variant]:
        """Yield all variants sorted by position and allele"""
        for position in self.positions():
            yield from sorted(self._variants[position], key=Variant.sort_key)

    def __len__(self) -> int:
        return sum(len(variants) for variants in self._variants.values())

    def __repr__(self) -> str:
        return f"Sample({self.id!r}, {len(self)} variants)"


def call_variants(
    pileup: Pileup, reference: ReferenceSequence, classifier: VariantClassifier
) -> Dict[str, Sample]:
    """
    Classify every position of the pileup. Return a dict that maps sample
    names (sorted) to Sample objects. Samples without any variant are included.
    """
    samples = {name: Sample(name) for name in pileup.samples()}
    n_outside = 0
    for (name, position), counter in pileup.items():
        if not 1 <= position <= len(reference):
            n_outside += 1
            continue
        for variant in classifier.classify(counter, reference.base(position), position):
            samples[name].add(variant)
    if n_outside:
        logger.warning(
            "Skipped %d pileup position(s) outside of reference %r (length %d)",
            n_outside,
            reference.name,
            len(reference),
        )
    return samples
