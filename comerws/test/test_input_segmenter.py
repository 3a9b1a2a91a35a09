"""
Tests for distributing a batch input into query working directories.
"""

import pytest

from comerws.core.input_segmenter import InputSegmenter, iter_records
from comerws.core.query_unit import QueryFormat, UnitStatus
from comerws.utils.error_handling import InputError
from comerws.test.conftest import write_input


MIXED_INPUT = """\
MKVLAAGIVALLLAAGCSS
//
>seqA
ACDEFGHIK

//
>a
AC-DE
>b
ACGDE
//
"""


class TestRecordSplitting:
    def test_separator_and_blank_lines(self):
        records = list(iter_records(iter(["a\n", "\n", "//\n", "\n", "b\n", "c\n"])))
        assert records == [["a"], ["b", "c"]]

    def test_empty_records_skipped(self):
        assert list(iter_records(iter(["//\n", "//\n", "\n"]))) == []

    def test_separator_must_be_whole_line(self):
        records = list(iter_records(iter([">a\n", "//comment\n"])))
        assert records == [[">a", "//comment"]]


class TestSegment:
    def test_mixed_formats(self, job_dir):
        input_file = write_input(job_dir, MIXED_INPUT)
        result = InputSegmenter(input_file, max_queries=100).segment()
        table = result.table

        assert len(table) == 3
        assert [unit.format for unit in table] == [
            QueryFormat.PLAIN_FASTA,
            QueryFormat.PLAIN_FASTA,
            QueryFormat.ALIGNED_FASTA,
        ]
        assert all(unit.status is UnitStatus.PENDING for unit in table)
        assert result.info_message == "The queries in the input have different formats."
        assert result.warnings == []

    def test_file_layout(self, job_dir):
        input_file = write_input(job_dir, MIXED_INPUT)
        table = InputSegmenter(input_file, max_queries=100).segment().table

        unit = table[2]
        assert unit.workdir == job_dir / "job1__2"
        assert unit.input_path == job_dir / "job1__2" / "job1__2.afa"
        assert unit.log_path == job_dir / "job1__2" / "job1__2.log"
        assert unit.input_path.read_text() == ">a\nAC-DE\n>b\nACGDE\n"
        assert unit.size_bytes == len(unit.input_path.read_bytes())

    def test_synthesized_header_written(self, job_dir):
        input_file = write_input(job_dir, "MKVLAAG\n")
        table = InputSegmenter(input_file, max_queries=100).segment().table
        assert table[0].input_path.read_text() == ">Query_0 (unnamed)\nMKVLAAG\n"

    def test_non_utf8_bytes_written_verbatim(self, job_dir):
        input_file = job_dir / "job1.in"
        input_file.write_bytes(b">q \xff\xfe name\nMKV\n")
        table = InputSegmenter(input_file, max_queries=100).segment().table

        assert len(table) == 1
        assert table[0].format is QueryFormat.PLAIN_FASTA
        assert table[0].input_path.read_bytes() == b">q \xff\xfe name\nMKV\n"
        assert table[0].size_bytes == len(b">q \xff\xfe name\nMKV\n")

    def test_single_format_info(self, job_dir):
        input_file = write_input(job_dir, ">a\nACDE\n//\n>b\nFGHI\n")
        result = InputSegmenter(input_file, max_queries=100).segment()
        assert "sequence in FASTA format" in result.info_message

    def test_truncation_warns(self, job_dir):
        text = "".join(f">q{i}\nACDE\n//\n" for i in range(5))
        input_file = write_input(job_dir, text)
        result = InputSegmenter(input_file, max_queries=3).segment()

        assert len(result.table) == 3
        assert result.warnings == ["Number of queries reduced to the maximum allowed: 3"]
        assert not (job_dir / "job1__3").exists()

    def test_no_queries_is_fatal(self, job_dir):
        input_file = write_input(job_dir, "\n//\n\n//\n")
        with pytest.raises(InputError) as excinfo:
            InputSegmenter(input_file, max_queries=100).segment()
        assert excinfo.value.summary == "Invalid input format: No queries."

    def test_missing_input_is_fatal(self, job_dir):
        with pytest.raises(InputError):
            InputSegmenter(job_dir / "absent.in", max_queries=100).segment()

    def test_unwritable_directory_is_fatal(self, job_dir):
        input_file = write_input(job_dir, ">a\nACDE\n")
        (job_dir / "job1__0").write_text("a file where the directory should go")
        with pytest.raises(InputError):
            InputSegmenter(input_file, max_queries=100).segment()
