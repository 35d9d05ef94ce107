"""
Copyright © 2025 Merck & Co., Inc., Rahway, NJ, USA and its affiliates. All rights reserved.
This file is part of bcdecode.

This source code is licensed under the MIT License found in the
LICENSE file in the root directory of this source tree.
"""

import os
import typing

import pysam
from libdecode import RecordStreamError

INPUT_MODES = {None: "r", "sam": "r", "bam": "rb", "cram": "rc"}
OUTPUT_MODES = {None: "wb", "sam": "w", "bam": "wb", "cram": "wc"}


class AlignmentStream:
    """
    Thin wrapper around pysam.AlignmentFile that reads or writes unaligned
    records one at a time. Use open_input or open_output to construct.
    """

    __slots__ = ("filename", "samfile", "_records", "num_read", "num_written")

    def __init__(self, filename: str, samfile: pysam.AlignmentFile):
        self.filename = filename
        self.samfile = samfile
        self._records: typing.Optional[typing.Iterator[pysam.AlignedSegment]] = None
        self.num_read = 0
        self.num_written = 0

    @classmethod
    def open_input(
        cls, filename: typing.Union[str, os.PathLike], fmt: typing.Optional[str] = None
    ) -> "AlignmentStream":
        try:
            mode = INPUT_MODES[fmt and fmt.lower()]
        except KeyError:
            raise RecordStreamError(f"Unknown input format: {fmt}") from None
        try:
            samfile = pysam.AlignmentFile(os.fspath(filename), mode, check_sq=False)
        except (OSError, ValueError) as e:
            raise RecordStreamError(
                f"Could not open input file ({filename}): {e}"
            ) from e
        return cls(os.fspath(filename), samfile)

    @classmethod
    def open_output(
        cls,
        filename: typing.Union[str, os.PathLike],
        header: typing.Union[dict, pysam.AlignmentHeader],
        fmt: typing.Optional[str] = None,
        compression_level: typing.Optional[int] = None,
        threads: int = 1,
    ) -> "AlignmentStream":
        try:
            mode = OUTPUT_MODES[fmt and fmt.lower()]
        except KeyError:
            raise RecordStreamError(f"Unknown output format: {fmt}") from None
        if compression_level is not None and mode != "w":
            mode += str(compression_level)
        try:
            samfile = pysam.AlignmentFile(
                os.fspath(filename), mode, header=header, threads=threads
            )
        except (OSError, ValueError) as e:
            raise RecordStreamError(
                f"Could not open output file ({filename}): {e}"
            ) from e
        return cls(os.fspath(filename), samfile)

    @property
    def header(self) -> pysam.AlignmentHeader:
        return self.samfile.header

    def read_next(self) -> typing.Optional[pysam.AlignedSegment]:
        """
        Fetch the next record in file order
        :return: The record, or None at the end of the stream
        """
        if self._records is None:
            self._records = self.samfile.fetch(until_eof=True)
        try:
            record = next(self._records, None)
        except OSError as e:
            raise RecordStreamError(
                f"Could not read record from {self.filename}: {e}"
            ) from e
        if record is not None:
            self.num_read += 1
        return record

    def write(self, record: pysam.AlignedSegment):
        if not self.samfile.is_open:
            raise RecordStreamError(
                f"Could not write record {record.query_name} to {self.filename}: file is closed"
            )
        try:
            self.samfile.write(record)
        except (OSError, ValueError) as e:
            raise RecordStreamError(
                f"Could not write record {record.query_name} to {self.filename}: {e}"
            ) from e
        self.num_written += 1

    def close(self):
        self.samfile.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.samfile.__exit__(exc_type, exc_val, exc_tb)
