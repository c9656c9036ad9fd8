"""
Read-only access to the reference sequence
"""
import logging
from typing import Iterator, Optional, Tuple

from .utils import IndexedFasta

logger = logging.getLogger(__name__)


class ContigNotFoundError(Exception):
    pass


class ReferenceSequence:
    """An immutable reference sequence with 1-based positions"""

    def __init__(self, name: str, sequence: str):
        self.name = name
        self._sequence = sequence.upper()

    @classmethod
    def from_fasta(cls, path, contig: Optional[str] = None) -> "ReferenceSequence":
        """
        Load one contig from an indexed FASTA file. If contig is None, the first
        contig in the file is used.

        Raise FastaNotIndexedError if there is no .fai index next to the file.
        """
        with IndexedFasta(path) as fasta:
            if contig is None:
                try:
                    contig = next(iter(fasta.keys()))
                except StopIteration:
                    raise ContigNotFoundError(f"No sequences found in {path}") from None
            try:
                sequence = fasta[contig][:]
            except KeyError:
                raise ContigNotFoundError(f"Contig {contig!r} not found in {path}") from None
        logger.debug("Loaded reference contig %r of length %d", contig, len(sequence))
        return cls(contig, sequence)

    def base(self, position: int) -> str:
        if not 1 <= position <= len(self._sequence):
            raise IndexError(f"Position {position} is outside of reference {self.name!r}")
        return self._sequence[position - 1]

    def __len__(self) -> int:
        return len(self._sequence)

    def __iter__(self) -> Iterator[Tuple[int, str]]:
        """Yield (position, base) pairs in reference order"""
        return enumerate(self._sequence, start=1)

    def __str__(self) -> str:
        return self._sequence

    def __repr__(self) -> str:
        return f"ReferenceSequence({self.name!r}, length={len(self)})"
