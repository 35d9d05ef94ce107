import io
import pathlib
import sys
import unittest

project_root = pathlib.Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root / "bin"))
import barcodes
import metrics


class MetricsTest(unittest.TestCase):
    def setUp(self):
        self.catalog = barcodes.BarcodeCatalog.load(
            io.StringIO(
                "barcode_sequence\tbarcode_name\tlibrary_name\tsample_name\tdescription\n"
                "AAAA\tbc1\tlib1\tsample1\tdesc1\n"
                "TTTT\tbc2\tlib2\tsample2\tdesc2\n"
            )
        )
        self.metrics = metrics.MetricsAggregator(self.catalog)
        self.unassigned, self.bc1, self.bc2 = self.catalog.entries
        self.metrics.record(self.bc1, "AAAA", True)
        self.metrics.record(self.bc1, "AAAT", False)
        self.metrics.record(self.bc2, "TTTT", True)
        self.metrics.record(self.unassigned, "AATT", True)

    def test_record(self):
        self.assertEqual(
            self.metrics[self.bc1], metrics.BarcodeCounts(2, 1, 1, 1, 1, 0)
        )
        self.assertEqual(
            self.metrics[self.bc2], metrics.BarcodeCounts(1, 1, 1, 1, 0, 0)
        )
        self.assertEqual(self.metrics[self.unassigned].reads, 1)
        self.assertEqual(self.metrics.total_reads, 4)

    def test_report(self):
        report = self.metrics.report()
        self.assertEqual(list(report.columns), metrics.METRICS_COLUMNS)
        self.assertEqual(report["BARCODE_NAME"].to_list(), ["bc1", "bc2", ""])
        self.assertEqual(report["BARCODE"].to_list(), ["AAAA", "TTTT", "NNNN"])
        self.assertEqual(report["READS"].sum(), 4)

        bc1 = report.iloc[0]
        self.assertEqual(bc1["LIBRARY_NAME"], "lib1")
        self.assertEqual(bc1["ONE_MISMATCH_MATCHES"], 1)
        self.assertAlmostEqual(bc1["PCT_MATCHES"], 0.5)
        self.assertAlmostEqual(bc1["RATIO_TO_BEST_PCT"], 1.0)
        self.assertAlmostEqual(bc1["PF_PCT_MATCHES"], 1 / 3)
        self.assertAlmostEqual(bc1["PF_RATIO_TO_BEST_PCT"], 1.0)
        self.assertAlmostEqual(bc1["PF_NORMALIZED_MATCHES"], 1.0)

        bc2 = report.iloc[1]
        self.assertAlmostEqual(bc2["PCT_MATCHES"], 0.25)
        self.assertAlmostEqual(bc2["RATIO_TO_BEST_PCT"], 0.5)
        self.assertAlmostEqual(bc2["PF_NORMALIZED_MATCHES"], 1.0)

        unassigned = report.iloc[2]
        self.assertEqual(unassigned["PERFECT_MATCHES"], 0)
        self.assertEqual(unassigned["PF_PERFECT_MATCHES"], 0)
        self.assertEqual(unassigned["PF_READS"], 1)
        self.assertAlmostEqual(unassigned["PCT_MATCHES"], 0.25)
        self.assertAlmostEqual(unassigned["PF_PCT_MATCHES"], 1 / 3)
        self.assertEqual(unassigned["PF_NORMALIZED_MATCHES"], 0)

        fractions = report[metrics.METRICS_COLUMNS[11:]]
        self.assertTrue(((fractions >= 0) & (fractions <= 1)).all().all())

    def test_report_no_reads(self):
        report = metrics.MetricsAggregator(self.catalog).report()
        self.assertEqual(len(report), 3)
        self.assertTrue((report[metrics.METRICS_COLUMNS[11:]] == 0).all().all())

    def test_report_empty_catalog(self):
        catalog = barcodes.BarcodeCatalog.load(io.StringIO("header\n"))
        aggregator = metrics.MetricsAggregator(catalog)
        aggregator.record(catalog.unassigned, "ACGT", True)
        report = aggregator.report()
        self.assertEqual(len(report), 1)
        self.assertEqual(report.iloc[0]["READS"], 1)
        self.assertAlmostEqual(report.iloc[0]["PCT_MATCHES"], 1.0)

    def test_write(self):
        aggregator = metrics.MetricsAggregator(
            self.catalog,
            barcode_tag_name="RT",
            max_no_calls=3,
            max_mismatches=2,
            min_mismatch_delta=1,
        )
        aggregator.record(self.bc1, "AAAA", True)
        fp = io.StringIO()
        aggregator.write(fp)
        lines = fp.getvalue().split("\n")
        self.assertEqual(
            lines[:6],
            [
                "##",
                "# BARCODE_TAG_NAME=RT MAX_MISMATCHES=2 MIN_MISMATCH_DELTA=1 MAX_NO_CALLS=3 ",
                "##",
                "#",
                "",
                "##",
            ],
        )
        self.assertEqual(lines[6], "\t".join(metrics.METRICS_COLUMNS))
        self.assertEqual(
            lines[7],
            "AAAA\tbc1\tlib1\tsample1\tdesc1\t1\t1\t1\t1\t0\t0\t"
            "1.000000\t1.000000\t1.000000\t1.000000\t2.000000",
        )
        self.assertTrue(lines[9].startswith("NNNN\t\t\t\t\t0\t0\t0\t0\t0\t0\t"))
        self.assertEqual(lines[10], "")

    def test_write_raw_fields(self):
        catalog = barcodes.BarcodeCatalog.load(
            io.StringIO(
                "barcode_sequence\tbarcode_name\tlibrary_name\tsample_name\tdescription\n"
                'AAAA\tbc1\tlib1\tsample1\tthe "A" pool\n'
            )
        )
        fp = io.StringIO()
        metrics.MetricsAggregator(catalog).write(fp)
        self.assertIn('\tthe "A" pool\t', fp.getvalue())


if __name__ == "__main__":
    unittest.main()
