"""
Copyright © 2025 Merck & Co., Inc., Rahway, NJ, USA and its affiliates. All rights reserved.
This file is part of bcdecode.

This source code is licensed under the MIT License found in the
LICENSE file in the root directory of this source tree.
"""

import copy
import typing
from collections.abc import Mapping

from barcodes import BarcodeCatalog, BarcodeEntry
from libdecode import FormatError

ReadGroup = dict[str, str]


def barcoded_id(value: str, name: str) -> str:
    return f"{value}#{name}"


def rewrite_read_group(original: Mapping[str, str], entry: BarcodeEntry) -> ReadGroup:
    """
    Derives the read group for reads from one original read group that were
    assigned to one barcode. Field order follows the original read group.

    :param original: The original @RG fields, as from pysam.AlignmentHeader.to_dict()
    :param entry: The barcode
    :return: A new @RG field dict
    """
    if "ID" not in original:
        raise FormatError(f"Read group has no ID field: {dict(original)}")
    overrides = (
        {}
        if entry.is_unassigned
        else {"LB": entry.library, "SM": entry.sample, "DS": entry.description}
    )
    rg: ReadGroup = {"ID": barcoded_id(original["ID"], entry.name)}
    for key, value in original.items():
        if key == "ID":
            continue
        if key == "PU":
            value = barcoded_id(value, entry.name)
        rg[key] = overrides.get(key, value)
    return rg


def rewrite_read_groups(
    original_groups: typing.Iterable[Mapping[str, str]], catalog: BarcodeCatalog
) -> list[ReadGroup]:
    """One read group per original read group and barcode, unassigned first."""
    return [
        rewrite_read_group(original, entry)
        for original in original_groups
        for entry in catalog
    ]


def program_record(
    existing: typing.Sequence[Mapping[str, str]],
    program: str,
    version: str,
    command_line: str,
) -> dict[str, str]:
    """
    Builds the @PG record for this program. The ID is made unique among the
    existing records and PP points at the last existing record.
    """
    ids = {pg.get("ID") for pg in existing}
    pg_id = program
    i = 0
    while pg_id in ids:
        i += 1
        pg_id = f"{program}.{i}"
    record = {"ID": pg_id, "PN": program, "VN": version, "CL": command_line}
    if existing and "ID" in existing[-1]:
        record["PP"] = existing[-1]["ID"]
    return record


def rewrite_header(
    header: Mapping[str, typing.Any],
    catalog: BarcodeCatalog,
    program: str,
    version: str,
    command_line: str,
) -> dict[str, typing.Any]:
    """
    Rewrites a SAM header dict for the decoded output: every @RG is replaced
    by one @RG per barcode, and a @PG record is appended for provenance.
    The input header is not modified.

    :param header: Header dict, as from pysam.AlignmentHeader.to_dict()
    :param catalog: The barcode catalogue
    :param program: Program name, used for the @PG ID and PN fields
    :param version: Program version
    :param command_line: Full command line of this invocation
    :return: A new header dict
    :raises FormatError: A read group has no ID
    """
    new_header = copy.deepcopy(dict(header))
    new_header["RG"] = rewrite_read_groups(header.get("RG", []), catalog)
    if not new_header["RG"]:
        del new_header["RG"]
    pgs = new_header.setdefault("PG", [])
    pgs.append(program_record(pgs, program, version, command_line))
    return new_header
