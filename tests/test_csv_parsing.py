from __future__ import annotations

import unittest

from app.services.csv_import import CsvFormatError, clean_csv_text, coerce_cell, parse_csv_records


class CsvParsingTests(unittest.TestCase):
    def test_comment_lines_are_dropped_before_parsing(self) -> None:
        content = "# LOCATION IMPORT TEMPLATE\n   # indented comment\nlocation_id,name\n101,Dallas\n"
        self.assertEqual(clean_csv_text(content), "location_id,name\n101,Dallas")

        with_comments = parse_csv_records(content)
        without_comments = parse_csv_records("location_id,name\n101,Dallas\n")
        self.assertEqual(with_comments, without_comments)
        self.assertEqual(with_comments, [{"location_id": "101", "name": "Dallas"}])

    def test_coerce_cell_handles_empty_and_boolean_text(self) -> None:
        self.assertIsNone(coerce_cell(""))
        self.assertIsNone(coerce_cell("   "))
        self.assertIsNone(coerce_cell(None))
        self.assertIs(coerce_cell("true"), True)
        self.assertIs(coerce_cell("TRUE"), True)
        self.assertIs(coerce_cell("False"), False)
        self.assertEqual(coerce_cell(" 75201 "), "75201")
        self.assertEqual(coerce_cell("yes"), "yes")

    def test_records_are_keyed_by_header_and_cells_are_coerced(self) -> None:
        records = parse_csv_records(
            "location_id,name,street_line2,in_footprint,is_active\n"
            "101, Dallas Downtown ,,false,TRUE\n"
        )
        self.assertEqual(
            records,
            [
                {
                    "location_id": "101",
                    "name": "Dallas Downtown",
                    "street_line2": None,
                    "in_footprint": False,
                    "is_active": True,
                }
            ],
        )

    def test_blank_lines_and_bom_are_ignored(self) -> None:
        records = parse_csv_records("\ufefflocation_id,name\n\n101,A\n\n102,B\n   \n")
        self.assertEqual([item["location_id"] for item in records], ["101", "102"])

    def test_row_of_empty_cells_is_kept(self) -> None:
        records = parse_csv_records("location_id,name\n101,A\n,\n")
        self.assertEqual(records[1], {"location_id": None, "name": None})

    def test_quoted_cells_keep_commas(self) -> None:
        records = parse_csv_records('employee_id,last_name\n1001,"Smith, Jr."\n')
        self.assertEqual(records[0]["last_name"], "Smith, Jr.")

    def test_mismatched_column_count_raises(self) -> None:
        with self.assertRaises(CsvFormatError):
            parse_csv_records("location_id,name\n101,Dallas,extra\n")

    def test_duplicate_header_raises(self) -> None:
        with self.assertRaises(CsvFormatError):
            parse_csv_records("name,name\nA,B\n")

    def test_header_only_file_yields_no_records(self) -> None:
        self.assertEqual(parse_csv_records("# notes\nlocation_id,name\n"), [])


if __name__ == "__main__":
    unittest.main()
