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

import pandas as pd
from barcodes import BarcodeCatalog, BarcodeEntry
from libdecode import count_mismatches

METRICS_COLUMNS = [
    "BARCODE",
    "BARCODE_NAME",
    "LIBRARY_NAME",
    "SAMPLE_NAME",
    "DESCRIPTION",
    "READS",
    "PF_READS",
    "PERFECT_MATCHES",
    "PF_PERFECT_MATCHES",
    "ONE_MISMATCH_MATCHES",
    "PF_ONE_MISMATCH_MATCHES",
    "PCT_MATCHES",
    "RATIO_TO_BEST_PCT",
    "PF_PCT_MATCHES",
    "PF_RATIO_TO_BEST_PCT",
    "PF_NORMALIZED_MATCHES",
]


# Dataclass for tracking per-barcode statistics
@dataclasses.dataclass(slots=True)
class BarcodeCounts:
    reads: int = 0
    pf_reads: int = 0
    perfect: int = 0
    pf_perfect: int = 0
    one_mismatch: int = 0
    pf_one_mismatch: int = 0


def _fraction(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


class MetricsAggregator:
    def __init__(
        self,
        catalog: BarcodeCatalog,
        *,
        barcode_tag_name: str = "BC",
        max_no_calls: int = 2,
        max_mismatches: int = 1,
        min_mismatch_delta: int = 1,
    ):
        self.catalog = catalog
        self.barcode_tag_name = barcode_tag_name
        self.max_no_calls = max_no_calls
        self.max_mismatches = max_mismatches
        self.min_mismatch_delta = min_mismatch_delta
        self.counts = [BarcodeCounts() for _ in catalog.entries]

    def __getitem__(self, entry: BarcodeEntry) -> BarcodeCounts:
        return self.counts[entry.index]

    def record(self, entry: BarcodeEntry, seq: str, passed_filter: bool):
        """
        Record one classified read
        :param entry: The barcode the read was assigned to
        :param seq: The barcode sequence used for classification
        :param passed_filter: False if the read is flagged as QC fail
        """
        mismatch = count_mismatches(entry.seq, seq)
        counts = self.counts[entry.index]
        counts.reads += 1
        if passed_filter:
            counts.pf_reads += 1
        if mismatch == 0:
            counts.perfect += 1
            if passed_filter:
                counts.pf_perfect += 1
        elif mismatch == 1:
            counts.one_mismatch += 1
            if passed_filter:
                counts.pf_one_mismatch += 1

    @property
    def total_reads(self) -> int:
        return sum(c.reads for c in self.counts)

    def report(self) -> pd.DataFrame:
        """
        Builds the per-barcode metrics table. The unassigned bucket is the last row.
        PF_NORMALIZED_MATCHES is the PF read count relative to a perfectly even
        spread of assigned PF reads across all barcodes.
        """
        assigned = self.counts[1:]
        total_reads = sum(c.reads for c in self.counts)
        total_pf = sum(c.pf_reads for c in self.counts)
        total_pf_assigned = sum(c.pf_reads for c in assigned)
        max_reads = max((c.reads for c in assigned), default=0)
        max_pf = max((c.pf_reads for c in assigned), default=0)
        n_barcodes = len(assigned)

        def make_row(entry: BarcodeEntry, counts: BarcodeCounts, pf_assigned: int):
            return [
                entry.seq,
                entry.name,
                entry.library,
                entry.sample,
                entry.description,
                counts.reads,
                counts.pf_reads,
                counts.perfect,
                counts.pf_perfect,
                counts.one_mismatch,
                counts.pf_one_mismatch,
                _fraction(counts.reads, total_reads),
                _fraction(counts.reads, max_reads),
                _fraction(counts.pf_reads, total_pf),
                _fraction(counts.pf_reads, max_pf),
                _fraction(counts.pf_reads * n_barcodes, pf_assigned),
            ]

        rows = [
            make_row(entry, counts, total_pf_assigned)
            for entry, counts in zip(self.catalog.barcodes, assigned)
        ]
        unassigned = dataclasses.replace(self.counts[0], perfect=0, pf_perfect=0)
        rows.append(
            make_row(
                dataclasses.replace(self.catalog.unassigned, name=""), unassigned, 0
            )
        )
        return pd.DataFrame(rows, columns=METRICS_COLUMNS)

    @property
    def header(self) -> str:
        return (
            "##\n"
            f"# BARCODE_TAG_NAME={self.barcode_tag_name} "
            f"MAX_MISMATCHES={self.max_mismatches} "
            f"MIN_MISMATCH_DELTA={self.min_mismatch_delta} "
            f"MAX_NO_CALLS={self.max_no_calls} \n"
            "##\n"
            "#\n"
            "\n"
            "##\n"
        )

    def write(self, dest: typing.Union[str, os.PathLike, typing.TextIO]):
        """
        Writes the metrics report
        :param dest: Filename or open text handle
        """
        needs_close = not hasattr(dest, "write")
        fh: typing.TextIO = open(dest, "w") if needs_close else dest
        try:
            fh.write(self.header)
            self.report().to_csv(
                fh,
                sep="\t",
                index=False,
                float_format="%f",
                lineterminator="\n",
                # catalogue fields hold no tabs or newlines
                quoting=csv.QUOTE_NONE,
            )
        finally:
            if needs_close:
                fh.close()
        logging.getLogger("Metrics").info("Wrote metrics to %s", dest)
