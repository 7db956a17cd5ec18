from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

ProgressCallback = Callable[[int], None]


class RunState(str, Enum):
    """
    Назначение:
        Состояния потоковой обработки.

    Переходы:
        IDLE -> CHUNK_RECEIVED -> AWAITING_CONSUMER -> RESUMING -> IDLE
        IDLE -> COMPLETED, любое нетерминальное -> FAILED
    """

    IDLE = "idle"
    CHUNK_RECEIVED = "chunk_received"
    AWAITING_CONSUMER = "awaiting_consumer"
    RESUMING = "resuming"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.CHUNK_RECEIVED, RunState.COMPLETED, RunState.FAILED}),
    RunState.CHUNK_RECEIVED: frozenset({RunState.AWAITING_CONSUMER, RunState.FAILED}),
    RunState.AWAITING_CONSUMER: frozenset({RunState.RESUMING, RunState.FAILED}),
    RunState.RESUMING: frozenset({RunState.IDLE, RunState.FAILED}),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
}


@dataclass
class StreamingRun:
    """
    Назначение/ответственность:
        Состояние одного запуска потоковой обработки.
        Изменяется только обработчиком чанков и колбэком возобновления.

    Поля:
        skip_line: bool
            True, пока строка заголовка не пропущена (только если заголовок объявлен).
        skip_bom: bool
            True, пока первая строка запуска не проверена на BOM.
        processed_count: int
            Монотонный счётчик выданных записей.
    """

    skip_line: bool
    skip_bom: bool = True
    processed_count: int = 0
    state: RunState = RunState.IDLE
    consumer_errors: list[BaseException] = field(default_factory=list)

    def enter(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal run state transition: {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def finished(self) -> bool:
        return self.state in (RunState.COMPLETED, RunState.FAILED)


class ProgressTracker:
    """
    Назначение:
        Счётчики прогресса поверх пользовательского on_progress(delta).

    Контракт:
        - report() вызывается синхронно в обработчике чанка до ожидания потребителя,
          поэтому отражает увиденные строки, а не сохранённые потребителем.
        - Пустой батч тоже сообщается (delta=0).
    """

    def __init__(self, on_progress: ProgressCallback | None = None) -> None:
        self._on_progress = on_progress
        self.rows_seen = 0
        self.chunks_seen = 0
        self.batches_delivered = 0

    def report(self, delta: int) -> None:
        self.chunks_seen += 1
        self.rows_seen += delta
        if self._on_progress is not None:
            self._on_progress(delta)

    def batch_delivered(self) -> None:
        self.batches_delivered += 1
