from __future__ import annotations

import asyncio
import codecs
import io

from csv_importer.config.config import ParserOptions
from csv_importer.domain.error_codes import ErrorCode, IssueCode
from csv_importer.domain.models import PREVIEW_ROW_COUNT, PreviewFailure, PreviewReport
from csv_importer.domain.transform.normalizer import BOM_CHAR
from csv_importer.errors import EmptyFileError, SourceReadError, UnsupportedSourceError
from csv_importer.usecases.preview_usecase import parse_preview


def _preview(source, **options):
    return asyncio.run(parse_preview(source, ParserOptions(**options)))


def test_preview_pads_to_five_rows():
    outcome = _preview(b"id,name\n1,Ann\n2,Bo\n")

    assert isinstance(outcome, PreviewReport)
    assert outcome.ok
    assert len(outcome.first_rows) == PREVIEW_ROW_COUNT
    assert outcome.first_rows == (("id", "name"), ("1", "Ann"), ("2", "Bo"), (), ())
    assert outcome.is_single_line is False
    assert outcome.parse_warning is None


def test_preview_stops_at_five_rows():
    data = "".join(f"{i},row{i}\n" for i in range(50)).encode()
    outcome = _preview(data, chunk_size=16)

    assert isinstance(outcome, PreviewReport)
    assert outcome.first_rows[-1] == ("4", "row4")
    assert all(outcome.first_rows)


def test_single_row_file_is_single_line():
    for data in (b"a,b,c", b"a,b,c\n"):
        outcome = _preview(data)
        assert isinstance(outcome, PreviewReport)
        assert outcome.is_single_line is True
        assert outcome.first_rows[0] == ("a", "b", "c")


def test_empty_file_is_a_failure():
    outcome = _preview(b"")

    assert isinstance(outcome, PreviewFailure)
    assert outcome.ok is False
    assert isinstance(outcome.error, EmptyFileError)
    assert "empty" in str(outcome.error).lower()
    assert outcome.error.code == ErrorCode.FILE_EMPTY.value


def test_bom_stripped_only_from_first_row():
    data = codecs.BOM_UTF8 + "id,name\n".encode() + (BOM_CHAR + "1,Ann\n").encode()
    outcome = _preview(data)

    assert outcome.first_rows[0] == ("id", "name")
    assert outcome.first_rows[1] == (BOM_CHAR + "1", "Ann")


def test_first_chunk_is_captured():
    outcome = _preview(b"id,name\n1,Ann\n2,Bo\n", chunk_size=8)
    assert outcome.first_chunk == "id,name\n"


def test_first_warning_kept_and_rest_counted():
    outcome = _preview(b"a,b\n1,2,3\n4\n", delimiter=",")

    assert isinstance(outcome, PreviewReport)
    assert outcome.parse_warning.code == IssueCode.TOO_MANY_FIELDS.value
    assert outcome.parse_warning.row == 1
    assert outcome.warning_count == 2
    assert outcome.first_rows[:3] == (("a", "b"), ("1", "2", "3"), ("4",))


def test_unsupported_source_resolves_to_failure():
    source = io.StringIO("a,b\n")
    outcome = _preview(source)

    assert isinstance(outcome, PreviewFailure)
    assert outcome.source is source
    assert isinstance(outcome.error, UnsupportedSourceError)


def test_missing_file_resolves_to_failure(tmp_path):
    outcome = _preview(tmp_path / "missing.csv")
    assert isinstance(outcome, PreviewFailure)
    assert isinstance(outcome.error, SourceReadError)


def test_decode_failure_resolves_to_failure():
    outcome = _preview(b"a,b\n\xff\n")
    assert isinstance(outcome, PreviewFailure)
    assert outcome.error.code == ErrorCode.DECODE_FAILED.value


def test_reading_stops_after_row_cap():
    handle = io.BytesIO(b"".join(b"%d\n" % i for i in range(100)))
    outcome = _preview(handle, chunk_size=4, delimiter=",")

    assert isinstance(outcome, PreviewReport)
    assert handle.tell() < len(handle.getvalue())
    assert [row[0] for row in outcome.first_rows] == ["0", "1", "2", "3", "4"]
