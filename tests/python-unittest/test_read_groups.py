import copy
import io
import pathlib
import sys
import unittest

project_root = pathlib.Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root / "bin"))
import barcodes
import libdecode
import read_groups


class ReadGroupTest(unittest.TestCase):
    def setUp(self):
        self.catalog = barcodes.BarcodeCatalog.load(
            io.StringIO(
                "barcode_sequence\tbarcode_name\tlibrary_name\tsample_name\tdescription\n"
                "AAAA\tbc1\tlib1\tsample1\tdesc1\n"
                "TTTT\tbc2\tlib2\tsample2\tdesc2\n"
            )
        )
        self.header = {
            "HD": {"VN": "1.6", "SO": "unsorted"},
            "RG": [
                {
                    "ID": "1",
                    "PL": "ILLUMINA",
                    "PU": "run_1",
                    "LB": "pool",
                    "SM": "pool_sample",
                    "DS": "pooled",
                },
                {"ID": "2", "PL": "ILLUMINA"},
            ],
            "PG": [{"ID": "bwa", "PN": "bwa"}],
        }

    def test_rewrite_read_group(self):
        unassigned, bc1, _ = self.catalog.entries
        original = self.header["RG"][0]
        self.assertEqual(
            read_groups.rewrite_read_group(original, bc1),
            {
                "ID": "1#bc1",
                "PL": "ILLUMINA",
                "PU": "run_1#bc1",
                "LB": "lib1",
                "SM": "sample1",
                "DS": "desc1",
            },
        )
        self.assertEqual(
            read_groups.rewrite_read_group(original, unassigned),
            {
                "ID": "1#0",
                "PL": "ILLUMINA",
                "PU": "run_1#0",
                "LB": "pool",
                "SM": "pool_sample",
                "DS": "pooled",
            },
        )

    def test_rewrite_absent_fields(self):
        bc1 = self.catalog.entries[1]
        self.assertEqual(
            read_groups.rewrite_read_group(self.header["RG"][1], bc1),
            {"ID": "2#bc1", "PL": "ILLUMINA"},
        )

    def test_missing_id(self):
        with self.assertRaises(libdecode.FormatError):
            read_groups.rewrite_read_groups([{"PL": "ILLUMINA"}], self.catalog)

    def test_rewrite_read_groups(self):
        groups = read_groups.rewrite_read_groups(self.header["RG"], self.catalog)
        self.assertEqual(len(groups), 2 * len(self.catalog))
        self.assertEqual(
            [rg["ID"] for rg in groups],
            ["1#0", "1#bc1", "1#bc2", "2#0", "2#bc1", "2#bc2"],
        )
        self.assertEqual(len({rg["ID"] for rg in groups}), len(groups))

    def test_program_record(self):
        record = read_groups.program_record(
            self.header["PG"], "decode", "1.0", "decode -b bc.tsv in.bam"
        )
        self.assertEqual(
            record,
            {
                "ID": "decode",
                "PN": "decode",
                "VN": "1.0",
                "CL": "decode -b bc.tsv in.bam",
                "PP": "bwa",
            },
        )
        record = read_groups.program_record(
            [{"ID": "decode"}, {"ID": "decode.1"}], "decode", "1.0", "decode"
        )
        self.assertEqual(record["ID"], "decode.2")
        self.assertEqual(record["PP"], "decode.1")
        self.assertNotIn("PP", read_groups.program_record([], "decode", "1.0", ""))

    def test_rewrite_header(self):
        original = copy.deepcopy(self.header)
        header = read_groups.rewrite_header(
            self.header, self.catalog, "decode", "1.0", "decode"
        )
        self.assertEqual(self.header, original)
        self.assertEqual(header["HD"], original["HD"])
        self.assertEqual(len(header["RG"]), 6)
        self.assertEqual([pg["ID"] for pg in header["PG"]], ["bwa", "decode"])

    def test_rewrite_header_no_read_groups(self):
        header = read_groups.rewrite_header(
            {"HD": {"VN": "1.6"}}, self.catalog, "decode", "1.0", "decode"
        )
        self.assertNotIn("RG", header)
        self.assertEqual(header["PG"][0]["ID"], "decode")


if __name__ == "__main__":
    unittest.main()
