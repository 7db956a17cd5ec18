from __future__ import annotations

import asyncio
import codecs

import pytest

from csv_importer.config.config import ConsumerErrorPolicy, ParserOptions
from csv_importer.domain.fields import FieldAssignmentMap, FieldSpec
from csv_importer.domain.transform.normalizer import BOM_CHAR
from csv_importer.errors import AssignmentError, BatchConsumerError, SourceReadError
from csv_importer.usecases.process_usecase import ProcessUseCase, process_file


def _process(data, assignments, has_headers, chunk_size=10000, on_batch=None, policy=ConsumerErrorPolicy.COLLECT, **options):
    batches = []
    progress = []

    def collect(records, info):
        batches.append((info.start_index, records))

    summary = asyncio.run(
        process_file(
            data,
            ParserOptions(chunk_size=chunk_size, **options),
            assignments,
            has_headers,
            progress.append,
            on_batch or collect,
            consumer_error_policy=policy,
        )
    )
    return summary, batches, progress


def test_end_to_end_example():
    summary, batches, progress = _process(b"id,name\n1,Ann\n2,Bo\n", {"id": 0, "name": 1}, True)

    assert batches == [(0, [{"id": "1", "name": "Ann"}, {"id": "2", "name": "Bo"}])]
    assert progress == [2]
    assert summary.rows_processed == 2
    assert summary.batches_delivered == 1
    assert summary.consumer_errors == []


def test_start_index_contiguous_over_small_chunks():
    data = "id,name\n" + "".join(f"{i},name{i}\n" for i in range(40))
    summary, batches, progress = _process(data.encode(), {"id": 0}, True, chunk_size=7)

    assert len(batches) > 1
    expected = 0
    for start, records in batches:
        assert start == expected
        expected += len(records)
    flat = [record["id"] for _, records in batches for record in records]
    assert flat == [str(i) for i in range(40)]
    assert sum(progress) == 40
    assert summary.rows_processed == 40


def test_header_chunk_reports_zero_progress_without_batch():
    summary, batches, progress = _process(b"id,name\n1,Ann\n2,Bo\n", {"id": 0}, True, chunk_size=8)

    assert progress[0] == 0
    assert [start for start, _ in batches] == [0, 1]
    assert summary.chunks_seen == len(progress)


def test_progress_reported_for_chunk_without_complete_row():
    summary, batches, progress = _process(
        b"1,a\n2,b\n3,cc\n4,dd\n", {"n": 0}, False, chunk_size=4, delimiter=",", newline="\n"
    )

    assert progress == [1, 1, 0, 1, 1]
    assert summary.chunks_seen == 5
    assert [start for start, _ in batches] == [0, 1, 2, 3]


@pytest.mark.parametrize(
    ("data", "newline", "cell"),
    [
        (b"1,x\ry\n2,z\n", "\n", "x\ry"),
        (b"1,x\ny\r2,z\r", "\r", "x\ny"),
    ],
)
def test_row_with_stray_line_break_is_not_lost(data, newline, cell):
    summary, batches, progress = _process(data, {"a": 0, "b": 1}, False, delimiter=",", newline=newline)

    records = [record for _, records in batches for record in records]
    assert [record["a"] for record in records] == ["1", "2"]
    assert records[0]["b"] == cell
    assert sum(progress) == 2
    assert summary.rows_processed == 2


def test_without_header_every_row_is_data():
    _, batches, _ = _process(b"1,Ann\n2,Bo\n", {"name": 1}, False)
    assert batches == [(0, [{"name": "Ann"}, {"name": "Bo"}])]


def test_bom_removed_from_first_row_header_or_data():
    data = codecs.BOM_UTF8 + b"1,Ann\n" + (BOM_CHAR + "2,Bo\n").encode()
    _, batches, _ = _process(data, {"id": 0}, False)
    assert batches == [(0, [{"id": "1"}, {"id": BOM_CHAR + "2"}])]

    data = codecs.BOM_UTF8 + b"id,name\n1,Ann\n"
    _, batches, _ = _process(data, {"id": 0}, True)
    assert batches == [(0, [{"id": "1"}])]


def test_short_rows_omit_fields():
    _, batches, _ = _process(b"1,Ann\n2\n", {"id": 0, "name": 1}, False, delimiter=",")
    assert batches == [(0, [{"id": "1", "name": "Ann"}, {"id": "2"}])]


def test_consumer_runs_before_next_chunk_is_seen():
    events = []

    async def slow_consumer(records, info):
        events.append(("start", info.start_index))
        for _ in range(5):
            await asyncio.sleep(0)
        events.append(("end", info.start_index))

    def on_progress(delta):
        events.append(("progress", delta))

    data = b"".join(b"%d\n" % i for i in range(20))
    asyncio.run(
        process_file(data, ParserOptions(delimiter=",", chunk_size=3), {"n": 0}, False, on_progress, slow_consumer)
    )

    in_flight = False
    for kind, _ in events:
        if kind == "start":
            in_flight = True
        elif kind == "end":
            in_flight = False
        else:
            assert not in_flight
    assert sum(1 for kind, _ in events if kind == "start") > 1


def test_no_reads_while_consumer_in_flight():
    pulls = []
    snapshots = []

    class Pieces:
        def __init__(self):
            self._items = [b"1\n", b"2\n", b"3\n"]

        def __aiter__(self):
            return self

        async def __anext__(self):
            if not self._items:
                raise StopAsyncIteration
            pulls.append(1)
            return self._items.pop(0)

    async def consumer(records, info):
        before = len(pulls)
        for _ in range(5):
            await asyncio.sleep(0)
        snapshots.append((info.start_index, before, len(pulls)))

    summary = asyncio.run(
        process_file(Pieces(), ParserOptions(delimiter=",", newline="\n"), {"n": 0}, False, None, consumer)
    )

    assert snapshots == [(0, 1, 1), (1, 2, 2), (2, 3, 3)]
    assert summary.rows_processed == 3


def test_consumer_failure_collected_by_default():
    calls = []

    def flaky(records, info):
        calls.append(info.start_index)
        if info.start_index == 0:
            raise ValueError("storage unavailable")

    summary, _, _ = _process(b"1\n2\n3\n4\n", {"n": 0}, False, chunk_size=4, on_batch=flaky, delimiter=",")

    assert calls == [0, 2]
    assert len(summary.consumer_errors) == 1
    assert isinstance(summary.consumer_errors[0], ValueError)
    assert summary.rows_processed == 4


def test_consumer_failure_aborts_with_fail_policy():
    calls = []

    async def failing(records, info):
        calls.append(info.start_index)
        raise ValueError("storage unavailable")

    with pytest.raises(BatchConsumerError) as excinfo:
        _process(
            b"1\n2\n3\n4\n",
            {"n": 0},
            False,
            chunk_size=4,
            on_batch=failing,
            policy=ConsumerErrorPolicy.FAIL,
            delimiter=",",
        )

    assert calls == [0]
    assert excinfo.value.start_index == 0
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_fatal_source_error_stops_delivery():
    class Flaky:
        def __init__(self):
            self.reads = 0

        def read(self, size):
            self.reads += 1
            if self.reads == 1:
                return b"1,a\n2,b\n"
            raise OSError("connection reset")

    batches = []
    progress = []
    with pytest.raises(SourceReadError):
        asyncio.run(
            process_file(
                Flaky(),
                ParserOptions(delimiter=","),
                {"n": 0},
                False,
                progress.append,
                lambda records, info: batches.append(records),
            )
        )

    assert batches == [[{"n": "1"}, {"n": "2"}]]
    assert progress == [2]


def test_required_fields_checked_before_streaming():
    usecase = ProcessUseCase(ParserOptions())
    with pytest.raises(AssignmentError) as excinfo:
        asyncio.run(
            usecase.run(
                b"1,Ann\n",
                FieldAssignmentMap({"id": 0, "email": None}),
                False,
                None,
                lambda records, info: None,
                fields=[FieldSpec("id"), FieldSpec("email")],
            )
        )
    assert excinfo.value.missing == ["email"]
