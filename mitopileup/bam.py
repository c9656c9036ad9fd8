import os
import logging
from abc import ABC, abstractmethod
from collections import Counter
from enum import Enum
from typing import Iterable, Iterator, Optional

import pysam

from .reference import ReferenceSequence
from .utils import warn_once

logger = logging.getLogger(__name__)


class FilterReason(Enum):
    MAPPING_QUALITY = "mapping-quality"
    UNMAPPED = "unmapped"
    DUPLICATE = "duplicate"
    SHORT_READ = "too-short"
    ALIGNMENT_SCORE = "low-alignment-score"
    WRONG_REFERENCE = "wrong-reference"


class ReadFilter:
    """
    Decide which alignments are counted. Rejected alignments are tallied per
    reason in the rejections attribute.
    """

    def __init__(
        self,
        *,
        mapping_quality: int = 20,
        alignment_score: int = 30,
        min_read_length: int = 25,
        contig: Optional[str] = None,
    ):
        """
        mapping_quality -- minimum mapping quality
        alignment_score -- minimum value of the AS tag. Reads without AS tag are kept.
        min_read_length -- reads of this length or shorter are rejected
        contig -- if given, reads aligned to another reference sequence are rejected
        """
        self.mapping_quality = mapping_quality
        self.alignment_score = alignment_score
        self.min_read_length = min_read_length
        self.contig = contig
        self.accepted = 0
        self.rejections: Counter = Counter()

    def rejection_reason(self, read: pysam.AlignedSegment) -> Optional[FilterReason]:
        if read.mapping_quality < self.mapping_quality:
            return FilterReason.MAPPING_QUALITY
        if read.is_unmapped:
            return FilterReason.UNMAPPED
        if read.is_duplicate:
            return FilterReason.DUPLICATE
        if read.query_length <= self.min_read_length:
            return FilterReason.SHORT_READ
        if read.has_tag("AS") and read.get_tag("AS") < self.alignment_score:
            return FilterReason.ALIGNMENT_SCORE
        if self.contig is not None and read.reference_name != self.contig:
            return FilterReason.WRONG_REFERENCE
        return None

    def accept(self, read: pysam.AlignedSegment) -> bool:
        reason = self.rejection_reason(read)
        if reason is None:
            self.accepted += 1
            return True
        self.rejections[reason] += 1
        return False

    @property
    def rejected(self) -> int:
        return sum(self.rejections.values())

    def merge(self, other: "ReadFilter") -> None:
        """Add the tallies of another filter (for example from a worker process)"""
        self.accepted += other.accepted
        self.rejections.update(other.rejections)


class Recalibrator(ABC):
    """Rewrites the base qualities of an accepted read"""

    @abstractmethod
    def recalibrate(
        self, read: pysam.AlignedSegment, reference: ReferenceSequence
    ) -> pysam.AlignedSegment:
        pass


class NoRecalibration(Recalibrator):
    def recalibrate(self, read, reference):
        return read


class BaqRecalibrator(Recalibrator):
    """
    Cap base qualities by their base alignment quality (BAQ).

    The BAQ is taken from the BQ tag as written by 'samtools calmd -r', which
    stores for each base the offset between base quality and BAQ plus 64.
    Qualities are overwritten in place.
    """

    def recalibrate(self, read, reference):
        if not read.has_tag("BQ"):
            warn_once(
                logger,
                "Read %r has no BQ tag, its base qualities are used without BAQ adjustment.",
                read.query_name,
            )
            return read
        offsets = read.get_tag("BQ")
        qualities = read.query_qualities
        if len(offsets) != len(qualities):
            warn_once(
                logger,
                "BQ tag of read %r does not match its length, base qualities are not adjusted.",
                read.query_name,
            )
            return read
        for i, offset in enumerate(offsets):
            qualities[i] = max(0, qualities[i] - (ord(offset) - 64))
        # pysam returns a copy, so the array must be assigned back
        read.query_qualities = qualities
        return read


def write_alignments(reads: Iterable[pysam.AlignedSegment], header, path: str) -> int:
    """Write reads to a new BAM file at path and return how many were written"""
    n = 0
    with pysam.AlignmentFile(path, "wb", header=header) as f:
        for read in reads:
            f.write(read)
            n += 1
    return n


def compute_baq_tags(path: str, reference_path: str, output_path: str) -> None:
    """
    Write a copy of the alignment file at path to output_path (BAM format) in
    which every read carries a BQ tag, using 'samtools calmd -r'. Only pass
    reads that are to be counted, since calmd realigns every read it is given.
    """
    logger.debug("Computing BAQ tags for %s", path)
    pysam.calmd("-b", "-r", path, os.path.abspath(reference_path), save_stdout=output_path)


class AlignmentReader:
    """
    Iterate over all records of a BAM, SAM or CRAM file in file order. An index
    is not required.
    """

    def __init__(self, path: str, *, reference: Optional[str] = None):
        """
        path -- path to alignment file
        reference -- optional path to FASTA reference (needed for CRAM)
        """
        if reference:
            reference = os.path.abspath(reference)
        self.path = path
        self._samfile = pysam.AlignmentFile(path, reference_filename=reference, check_sq=False)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def __iter__(self) -> Iterator[pysam.AlignedSegment]:
        return self._samfile.fetch(until_eof=True)

    @property
    def references(self):
        return self._samfile.references

    @property
    def header(self) -> pysam.AlignmentHeader:
        return self._samfile.header

    def close(self) -> None:
        self._samfile.close()
