"""
Copyright © 2025 Merck & Co., Inc., Rahway, NJ, USA and its affiliates. All rights reserved.
This file is part of bcdecode.

This source code is licensed under the MIT License found in the
LICENSE file in the root directory of this source tree.
"""

import csv
import dataclasses
import logging
import os
import typing

import xopen
from libdecode import (
    DataError,
    FormatError,
    count_mismatches,
    count_no_calls,
    logs_runtime,
    wrap_exception,
)

UNASSIGNED_NAME = "0"


@dataclasses.dataclass(frozen=True, slots=True)
class BarcodeEntry:
    index: int
    seq: str
    name: str
    library: str = ""
    sample: str = ""
    description: str = ""

    @property
    def is_unassigned(self) -> bool:
        return self.index == 0


def clean_barcode(
    seq: str, quality: typing.Optional[str], max_low_quality_to_convert: int
) -> str:
    """
    Converts low quality bases in an observed barcode to 'N'.

    :param seq: Observed barcode sequence
    :param quality: Phred+33 quality string for the barcode, or None
    :param max_low_quality_to_convert: Bases with a phred score at or below this are converted
    :return: The cleaned barcode. If quality is None, the barcode is returned unchanged.
    :raises DataError: The barcode and quality strings are different lengths
    """
    if quality is None:
        return seq
    if len(seq) != len(quality):
        raise DataError(
            f"Barcode {seq!r} and quality {quality!r} are different lengths"
        )
    return "".join(
        "N" if ord(q) - 33 <= max_low_quality_to_convert else b
        for b, q in zip(seq, quality)
    )


@wrap_exception(
    (OSError, UnicodeDecodeError, csv.Error), FormatError, "Can't read barcode file {0}"
)
def read_barcode_file(
    source: typing.Union[str, os.PathLike, typing.TextIO],
) -> list[tuple[int, list[str]]]:
    """
    Returns (line number, fields) for each data line of a barcode file.
    The header line is consumed and discarded.
    """
    needs_close = not hasattr(source, "read")
    fh: typing.TextIO = xopen.xopen(source, "rt") if needs_close else source
    try:
        reader = csv.reader(fh, dialect="excel-tab", quoting=csv.QUOTE_NONE)
        if next(reader, None) is None:
            raise FormatError(f"Barcode file {source} is missing its header line")
        # materialize so read errors surface inside the wrapper
        return [(i, row) for i, row in enumerate(reader, 2) if any(row)]
    finally:
        if needs_close:
            fh.close()


class BarcodeCatalog:
    """
    Ordered barcode whitelist. Entry 0 is always the unassigned bucket,
    followed by the barcodes in file order.
    """

    def __init__(self, entries: list[BarcodeEntry], tag_len: int):
        self.entries = entries
        self.tag_len = tag_len

    @classmethod
    @logs_runtime
    def load(
        cls, source: typing.Union[str, os.PathLike, typing.TextIO]
    ) -> "BarcodeCatalog":
        """
        Reads a tab-separated barcode file with a header line and the columns
        sequence, name, library, sample and description.

        :param source: Path or open text handle
        :return: A BarcodeCatalog
        :raises FormatError: A line has fewer than five fields, or the barcodes are not all the same length
        """
        logger = logging.getLogger("BarcodeCatalog")
        entries = [BarcodeEntry(0, "", UNASSIGNED_NAME)]
        tag_len = 0
        for lineno, row in read_barcode_file(source):
            if len(row) < 5:
                raise FormatError(
                    f"Barcode file {source} line {lineno}: expected 5 fields, got {len(row)}"
                )
            seq, name, library, sample, description = row[:5]
            seq = seq.upper()
            if len(entries) == 1:
                tag_len = len(seq)
            elif len(seq) != tag_len:
                raise FormatError(
                    f"Tag '{seq}' is a different length to the previous tag"
                )
            entries.append(
                BarcodeEntry(len(entries), seq, name, library, sample, description)
            )
        entries[0] = dataclasses.replace(entries[0], seq="N" * tag_len)
        logger.info(
            "Loaded %d barcodes of length %d", len(entries) - 1, tag_len
        )
        return cls(entries, tag_len)

    @property
    def unassigned(self) -> BarcodeEntry:
        return self.entries[0]

    @property
    def barcodes(self) -> list[BarcodeEntry]:
        return self.entries[1:]

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def truncate(self, seq: str) -> str:
        return seq[: self.tag_len] if len(seq) > self.tag_len else seq

    def classify(
        self,
        seq: str,
        max_no_calls: int = 2,
        max_mismatches: int = 1,
        min_mismatch_delta: int = 1,
    ) -> BarcodeEntry:
        """
        Finds the closest barcode to an observed sequence.
        The best barcode is only accepted if the observation has few enough
        no-calls, the best barcode is within max_mismatches, and the second
        best barcode is at least min_mismatch_delta further away.
        Ties are resolved in favour of the first barcode in the file, which
        then fails the delta test.

        :param seq: Observed (cleaned and truncated) barcode
        :param max_no_calls: Maximum number of no-calls in the observed barcode
        :param max_mismatches: Maximum substitutions to the best barcode
        :param min_mismatch_delta: Minimum difference in substitutions between the best and second best barcode
        :return: The matching entry, or the unassigned entry
        """
        best: typing.Optional[BarcodeEntry] = None
        nm_best = nm_second = self.tag_len
        for entry in self.barcodes:
            nm = count_mismatches(entry.seq, seq)
            if nm < nm_best:
                if best is not None:
                    nm_second = nm_best
                nm_best = nm
                best = entry
            elif nm < nm_second:
                nm_second = nm

        if (
            best is not None
            and count_no_calls(seq) <= max_no_calls
            and nm_best <= max_mismatches
            and nm_second - nm_best >= min_mismatch_delta
        ):
            return best
        return self.unassigned
