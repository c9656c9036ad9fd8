"""
Build consensus sequences by applying variant calls to the reference.
"""
import logging
from typing import Iterable, Iterator, Tuple

from .reference import ReferenceSequence
from .variants import Sample, Variant, VariantType

logger = logging.getLogger(__name__)


def _precedence(variant: Variant):
    return (-variant.level, variant.sequence)


class ConsensusBuilder:
    """
    Walk the reference and emit, for every position, the reference base or the
    result of applying the variants called at that position.

    level -- deletions above this level remove the base, heteroplasmies at or
        above it replace the base. Substitutions (deletions included) above it
        also make a position "complex" if an insertion was called there too.
    """

    def __init__(self, level: float = 0.5):
        if not 0.0 <= level <= 1.0:
            raise ValueError(f"Consensus level must be between 0 and 1, got {level}")
        self.level = level

    def emit(self, reference_base: str, variants: Iterable[Variant]) -> str:
        """
        Return what replaces reference_base in the consensus. The order of
        variants does not matter.
        """
        variants = list(variants)
        if not variants:
            return reference_base
        insertions = sorted(
            (v for v in variants if v.type is VariantType.INSERTION), key=lambda v: v.sequence
        )
        substitution_signal = sum(
            1 for v in variants if v.type.is_substitution and v.level > self.level
        )
        if substitution_signal > 0 and insertions:
            # complex: keep the reference
            return reference_base
        if len(insertions) > 1:
            return reference_base + "".join(v.sequence for v in insertions)

        base = reference_base
        replaced = deleted = False
        for variant in sorted(variants, key=_precedence):
            if variant.type is VariantType.DELETION:
                deleted = deleted or variant.level > self.level
            elif not replaced and (
                variant.type is VariantType.HOMOPLASMY
                or (variant.type is VariantType.HETEROPLASMY and variant.level >= self.level)
            ):
                base = variant.sequence
                replaced = True
        if deleted:
            base = ""
        if insertions:
            base += insertions[0].sequence
        return base

    def walk(self, sample: Sample, reference: ReferenceSequence) -> Iterator[Tuple[int, str]]:
        """Yield (position, emitted sequence) for every reference position"""
        for position, reference_base in reference:
            variants = sample.variants_at(position)
            if variants:
                yield position, self.emit(reference_base, variants)
            else:
                yield position, reference_base

    def build(self, sample: Sample, reference: ReferenceSequence) -> str:
        sequence = "".join(emission for _, emission in self.walk(sample, reference))
        logger.debug(
            "Consensus of sample %r has length %d (reference: %d)",
            sample.id,
            len(sequence),
            len(reference),
        )
        return sequence
