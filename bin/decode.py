#!/usr/bin/env python

"""
Copyright © 2025 Merck & Co., Inc., Rahway, NJ, USA and its affiliates. All rights reserved.
This file is part of bcdecode.

This source code is licensed under the MIT License found in the
LICENSE file in the root directory of this source tree.
"""

import argparse
import contextlib
import logging
import os.path
import shlex
import sys
import typing

import pysam
from barcodes import BarcodeCatalog, BarcodeEntry, clean_barcode
from libdecode import DataError, RecordStreamError
from metrics import MetricsAggregator
from read_groups import barcoded_id, rewrite_header
from record_stream import AlignmentStream
from version import __version__

PROGRAM = os.path.splitext(os.path.basename(__file__))[0]


class Decoder:
    def __init__(
        self,
        catalog: BarcodeCatalog,
        *,
        max_no_calls=2,
        max_mismatches=1,
        min_mismatch_delta=1,
        convert_low_quality=False,
        max_low_quality_to_convert=15,
        change_read_name=False,
        barcode_tag_name="BC",
        quality_tag_name="QT",
    ):
        """Initialize a Decoder instance.

        :param catalog: The barcode catalogue, i.e. from BarcodeCatalog.load
        :param max_no_calls: Maximum number of no-calls in a barcode read before it is considered unmatchable.
        :param max_mismatches: Maximum number of mismatches for a barcode to be considered a match.
        :param min_mismatch_delta: Minimum difference between the number of mismatches in the best and second best
            barcodes for a barcode to be considered a match.
        :param convert_low_quality: Convert low quality bases in the barcode read to 'N' before matching.
        :param max_low_quality_to_convert: Bases with a phred score at or below this are converted.
        :param change_read_name: Append #<barcode name> to the read name.
        :param barcode_tag_name: Record tag holding the observed barcode.
        :param quality_tag_name: Record tag holding the barcode qualities.
        """
        self.catalog = catalog
        self.max_no_calls = max_no_calls
        self.max_mismatches = max_mismatches
        self.min_mismatch_delta = min_mismatch_delta
        self.convert_low_quality = convert_low_quality
        self.max_low_quality_to_convert = max_low_quality_to_convert
        self.change_read_name = change_read_name
        self.barcode_tag_name = barcode_tag_name
        self.quality_tag_name = quality_tag_name
        self.metrics = MetricsAggregator(
            catalog,
            barcode_tag_name=barcode_tag_name,
            max_no_calls=max_no_calls,
            max_mismatches=max_mismatches,
            min_mismatch_delta=min_mismatch_delta,
        )
        self.logger = logging.getLogger("Decoder")

    def observed_barcode(self, record: pysam.AlignedSegment) -> str:
        """
        Extracts the barcode to match from a record, converting low quality
        bases if enabled and truncating to the catalogue tag length.
        """
        seq = record.get_tag(self.barcode_tag_name).upper()
        if self.convert_low_quality and record.has_tag(self.quality_tag_name):
            try:
                seq = clean_barcode(
                    seq,
                    record.get_tag(self.quality_tag_name),
                    self.max_low_quality_to_convert,
                )
            except DataError as e:
                self.logger.warning("%s: %s", record.query_name, e)
        return self.catalog.truncate(seq)

    def classify(self, seq: str) -> BarcodeEntry:
        return self.catalog.classify(
            seq,
            max_no_calls=self.max_no_calls,
            max_mismatches=self.max_mismatches,
            min_mismatch_delta=self.min_mismatch_delta,
        )

    def tag_record(self, record: pysam.AlignedSegment, entry: BarcodeEntry):
        """
        Moves a record into the read group for its barcode, and optionally
        appends the barcode name to the read name.
        """
        rg = record.get_tag("RG") if record.has_tag("RG") else ""
        record.set_tag("RG", barcoded_id(rg, entry.name), value_type="Z")
        if self.change_read_name:
            record.query_name = barcoded_id(record.query_name, entry.name)

    def decode_record(
        self, record: pysam.AlignedSegment
    ) -> typing.Optional[BarcodeEntry]:
        """
        Classifies and tags one record. As a side effect, updates the metrics.
        :param record: The record to decode
        :return: The matched barcode, or None if the record has no barcode tag
        """
        if not record.has_tag(self.barcode_tag_name):
            return None
        seq = self.observed_barcode(record)
        entry = self.classify(seq)
        self.metrics.record(entry, seq, not record.is_qcfail)
        self.tag_record(record, entry)
        return entry

    def output_header(self, header: pysam.AlignmentHeader) -> dict:
        return rewrite_header(
            header.to_dict(), self.catalog, PROGRAM, __version__, shlex.join(sys.argv)
        )

    def decode_stream(self, infile: AlignmentStream, outfile: AlignmentStream) -> int:
        """
        Decodes every record of infile into outfile. Mates of paired reads are
        expected to follow their primary read, and are assigned the same barcode.
        :return: Number of records written
        """
        for i, record in enumerate(iter(infile.read_next, None), 1):
            entry = self.decode_record(record)
            outfile.write(record)
            if record.is_paired:
                if (mate := infile.read_next()) is None:
                    raise RecordStreamError(
                        f"Missing mate for paired read {record.query_name} in {infile.filename}"
                    )
                if entry is not None:
                    self.tag_record(mate, entry)
                outfile.write(mate)
            if i % 1000000 == 0:
                self.logger.info("Processed %d reads...", i)
        return outfile.num_written

    def decode_file(
        self,
        input_name: str,
        output_name: str,
        *,
        input_fmt: typing.Optional[str] = None,
        output_fmt: typing.Optional[str] = None,
        compression_level: typing.Optional[int] = None,
        cpus: int = 1,
    ) -> int:
        """
        Reads an unaligned SAM/BAM/CRAM file and writes it with read groups
        assigned by barcode.
        :param input_name: Input filename, or "-" for stdin
        :param output_name: Output filename, or "-" for stdout
        :return: Number of records written
        """
        logger = logging.getLogger(input_name)
        logger.info("Begin")
        with contextlib.ExitStack() as stack:
            infile = stack.enter_context(
                AlignmentStream.open_input(input_name, input_fmt)
            )
            header = self.output_header(infile.header)
            outfile = stack.enter_context(
                AlignmentStream.open_output(
                    output_name, header, output_fmt, compression_level, cpus
                )
            )
            n = self.decode_stream(infile, outfile)
        logger.info(
            "End, processed %d records, %d with barcodes", n, self.metrics.total_reads
        )
        return n


class CLI(argparse.Namespace):
    input: str = None
    output: str = "-"
    barcode_file: str
    metrics_file: str = None
    verbose: bool = False
    convert_low_quality: bool = False
    max_low_quality_to_convert: int = 15
    max_no_calls: int = 2
    max_mismatches: int = 1
    min_mismatch_delta: int = 1
    change_read_name: bool = False
    barcode_tag_name: str = "BC"
    quality_tag_name: str = "QT"
    input_fmt: str = None
    output_fmt: str = None
    compression_level: int = None
    cpus: int = 1

    _parser = argparse.ArgumentParser(
        description="Decode the index (barcode) of each read and assign it to a per-barcode read group"
    )
    _parser.add_argument(
        "input_pos",
        nargs="?",
        metavar="input",
        help="Input SAM/BAM/CRAM file, or - for stdin",
    )
    _parser.add_argument("-i", "--input", help="Input file (alternative to positional)")
    _parser.add_argument(
        "-o", "--output", default="-", help="Output file (default: stdout)"
    )
    _parser.add_argument(
        "-b",
        "--barcode-file",
        required=True,
        help="Path to TSV file with a header line and columns barcode sequence, name, library, sample, description",
    )
    _parser.add_argument(
        "--metrics-file", help="Per-barcode metrics are written to this file"
    )
    _parser.add_argument(
        "-v", "--verbose", action="store_true", default=False, help="Verbose output"
    )
    _parser.add_argument(
        "--convert-low-quality",
        action="store_true",
        default=False,
        help="Convert low quality bases in the barcode read to 'N'",
    )
    _parser.add_argument(
        "--max-low-quality-to-convert",
        type=int,
        default=15,
        help="Max low quality phred value to convert bases in the barcode read to 'N' (default: %(default)d)",
    )
    _parser.add_argument(
        "--max-no-calls",
        type=int,
        default=2,
        help="Max allowable number of no-calls in a barcode read before it is considered unmatchable "
        "(default: %(default)d)",
    )
    _parser.add_argument(
        "--max-mismatches",
        type=int,
        default=1,
        help="Maximum mismatches for a barcode to be considered a match (default: %(default)d)",
    )
    _parser.add_argument(
        "--min-mismatch-delta",
        type=int,
        default=1,
        help="Minimum difference between the number of mismatches in the best and second best barcodes "
        "for a barcode to be considered a match (default: %(default)d)",
    )
    _parser.add_argument(
        "--change-read-name",
        action="store_true",
        default=False,
        help="Change the read name by adding a #<barcode name> suffix",
    )
    _parser.add_argument(
        "--barcode-tag-name",
        default="BC",
        help="Barcode tag name (default: %(default)s)",
    )
    _parser.add_argument(
        "--quality-tag-name",
        default="QT",
        help="Quality tag name (default: %(default)s)",
    )
    _parser.add_argument(
        "--input-fmt", choices=["sam", "bam", "cram"], help="Format of the input file"
    )
    _parser.add_argument(
        "--output-fmt",
        choices=["sam", "bam", "cram"],
        help="Format of the output file (default: bam)",
    )
    _parser.add_argument(
        "--compression-level",
        type=int,
        choices=range(10),
        metavar="[0-9]",
        help="Compression level of the output file",
    )
    _parser.add_argument("--cpus", type=int, default=1, help="Number of BAM IO threads")

    def __init__(self, args=None):
        self.__class__._parser.parse_args(args, self)
        self.input = self.input or self.input_pos
        if not self.input:
            self._parser.error("You must specify an input file (positional or -i/--input)")

    def main(self) -> int:
        logging.basicConfig(
            level=logging.DEBUG if self.verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s:%(name)s:%(message)s",
        )
        logger = logging.getLogger(PROGRAM)
        try:
            catalog = BarcodeCatalog.load(self.barcode_file)
            decoder = Decoder(
                catalog,
                max_no_calls=self.max_no_calls,
                max_mismatches=self.max_mismatches,
                min_mismatch_delta=self.min_mismatch_delta,
                convert_low_quality=self.convert_low_quality,
                max_low_quality_to_convert=self.max_low_quality_to_convert,
                change_read_name=self.change_read_name,
                barcode_tag_name=self.barcode_tag_name,
                quality_tag_name=self.quality_tag_name,
            )
            decoder.decode_file(
                self.input,
                self.output,
                input_fmt=self.input_fmt,
                output_fmt=self.output_fmt,
                compression_level=self.compression_level,
                cpus=self.cpus,
            )
            if self.metrics_file:
                decoder.metrics.write(self.metrics_file)
        except Exception:
            logger.critical("Aborting", exc_info=True)
            return 1
        return 0


def main(args=None) -> int:
    return CLI(args).main()


if __name__ == "__main__":
    sys.exit(main())
