from collections import defaultdict
import gzip
import logging
import os
from typing import DefaultDict, Optional

import pyfaidx


class FastaNotIndexedError(Exception):
    pass


ALIGNMENT_SUFFIXES = (".bam", ".sam", ".cram")


def detect_file_format(path) -> Optional[str]:
    """
    Detect file format and return 'BAM', 'CRAM', 'SAM' or None. None indicates an
    unrecognized file format.
    """
    with open(path, "rb") as f:
        first_bytes = f.read(16)
    if first_bytes.startswith(b"CRAM"):
        return "CRAM"
    if first_bytes.startswith(b"@HD") or first_bytes.startswith(b"@SQ"):
        return "SAM"

    gzip_header = b"\037\213"
    if first_bytes.startswith(gzip_header):
        with gzip.GzipFile(path, "rb") as f:
            if f.read(4) == b"BAM\1":
                return "BAM"
    return None


def sample_name_from_path(path) -> str:
    """
    Derive a sample identifier from the name of an alignment file.

    >>> sample_name_from_path("/data/run1/HG00096.bam")
    'HG00096'
    >>> sample_name_from_path("chunk.sorted.cram")
    'chunk.sorted'
    """
    name = os.path.basename(str(path))
    for suffix in ALIGNMENT_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def IndexedFasta(path):
    try:
        f = pyfaidx.Fasta(str(path), as_raw=True, sequence_always_upper=True, build_index=False)
    except pyfaidx.IndexNotFoundError:
        raise FastaNotIndexedError(path)
    return f


def plural_s(n: int) -> str:
    return "" if n == 1 else "s"


_warning_count: DefaultDict[str, int] = defaultdict(int)


def warn_once(logger, msg: str, *args) -> None:
    if _warning_count[msg] == 0 and not logger.isEnabledFor(logging.DEBUG):
        logger.warning(msg + " Hiding further warnings of this type, use --debug to show", *args)
    else:
        logger.debug(msg, *args)
    _warning_count[msg] += 1
