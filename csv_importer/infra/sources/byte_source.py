from __future__ import annotations

import asyncio
import codecs
import inspect
import io
import os
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, AsyncIterator

import httpx

from csv_importer.config.config import DEFAULT_CHUNK_SIZE, DEFAULT_ENCODING
from csv_importer.domain.error_codes import ErrorCode
from csv_importer.errors import SourceError, SourceReadError, UnsupportedSourceError

_URL_PREFIXES = ("http://", "https://")


class ByteSource:
    """
    Назначение/ответственность:
        Приостанавливаемый поток байтов с учётом кодировки.
        Сводит разные виды ресурсов (файл, HTTP, file-like, байты в памяти)
        к одному контракту chunks()/pause()/resume()/close().

    Инварианты/гарантии:
        - pause()/resume() идемпотентны.
        - Флаг потока проверяется перед каждым чтением и перед каждой выдачей,
          поэтому после pause() не выдаётся ни одного чанка, кроме уже отданного.
        - Декодирование инкрементальное: многобайтовые символы на границе
          чанков не разрываются.
    """

    def __init__(self, name: str, encoding: str = DEFAULT_ENCODING, chunk_size: int = DEFAULT_CHUNK_SIZE):
        try:
            codec = codecs.lookup(encoding)
        except LookupError:
            raise UnsupportedSourceError(
                f"Unsupported encoding: {encoding}",
                code=ErrorCode.ENCODING_UNSUPPORTED,
                details={"encoding": encoding},
            ) from None
        if codec.incrementaldecoder is None:
            raise UnsupportedSourceError(
                f"Encoding {encoding} cannot be decoded incrementally",
                code=ErrorCode.ENCODING_UNSUPPORTED,
                details={"encoding": encoding},
            )
        self.name = name
        self.encoding = codec.name
        self.chunk_size = chunk_size
        self.bytes_read = 0
        self._decoder = codec.incrementaldecoder(errors="strict")
        self._flowing = asyncio.Event()
        self._flowing.set()
        self._closed = False

    @property
    def paused(self) -> bool:
        return not self._flowing.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    def pause(self) -> None:
        self._flowing.clear()

    def resume(self) -> None:
        self._flowing.set()

    async def chunks(self) -> AsyncIterator[str]:
        """
        Назначение:
            Выдаёт декодированные текстовые чанки до конца ресурса.

        Поведение:
            - Ошибки ввода-вывода -> SourceReadError(SOURCE_IO).
            - Ошибки декодирования -> SourceReadError(DECODE_FAILED).
        """
        while True:
            await self._flowing.wait()
            if self._closed:
                return
            data = await self._read_guarded()
            final = not data
            self.bytes_read += len(data)
            try:
                text = self._decoder.decode(data, final)
            except UnicodeDecodeError as exc:
                raise SourceReadError(
                    f"Failed to decode {self.name} as {self.encoding}: {exc.reason}",
                    code=ErrorCode.DECODE_FAILED,
                    details={"encoding": self.encoding, "offset": self.bytes_read - len(data) + exc.start},
                ) from exc
            if text:
                # пауза, выставленная во время чтения, должна сработать до выдачи
                await self._flowing.wait()
                if self._closed:
                    return
                yield text
            if final:
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # разбудить ожидающих, чтобы генератор завершился
        self._flowing.set()
        await self._close()

    async def _read_guarded(self) -> bytes:
        try:
            data = await self._read_chunk()
        except SourceError:
            raise
        except (OSError, httpx.HTTPError) as exc:
            raise SourceReadError(f"Failed to read {self.name}: {exc}", code=ErrorCode.SOURCE_IO) from exc
        if isinstance(data, str):
            raise SourceReadError(
                f"Source {self.name} returned text instead of bytes; open it in binary mode",
                code=ErrorCode.SOURCE_IO,
            )
        return bytes(data or b"")

    async def _read_chunk(self) -> bytes:
        raise NotImplementedError

    async def _close(self) -> None:
        return None


class ReaderByteSource(ByteSource):
    """
    Назначение:
        Источник поверх file-like объекта с read(size).
        Поддерживает и синхронный, и корутинный read (например, UploadFile).
        Не закрывает чужой дескриптор, если owns_handle=False.
    """

    def __init__(
        self,
        reader: Any,
        name: str,
        encoding: str = DEFAULT_ENCODING,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        owns_handle: bool = False,
        blocking: bool = False,
    ):
        super().__init__(name, encoding, chunk_size)
        self._reader = reader
        self._owns_handle = owns_handle
        self._blocking = blocking

    async def _read_chunk(self) -> bytes:
        if self._blocking:
            return await asyncio.to_thread(self._reader.read, self.chunk_size)
        result = self._reader.read(self.chunk_size)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _close(self) -> None:
        if not self._owns_handle:
            return
        result = self._reader.close()
        if inspect.isawaitable(result):
            await result


class FileByteSource(ReaderByteSource):
    """Локальный файл; чтение в рабочем потоке, чтобы не блокировать цикл событий."""

    def __init__(self, path: Path, encoding: str = DEFAULT_ENCODING, chunk_size: int = DEFAULT_CHUNK_SIZE):
        try:
            handle = path.open("rb")
        except OSError as exc:
            raise SourceReadError(
                f"Cannot open {path}: {exc.strerror or exc}",
                code=ErrorCode.SOURCE_IO,
                details={"path": str(path)},
            ) from exc
        try:
            super().__init__(handle, str(path), encoding, chunk_size, owns_handle=True, blocking=True)
        except BaseException:
            handle.close()
            raise
        self.path = path


class MemoryByteSource(ByteSource):
    """
    Назначение:
        Запасной путь: ресурс без потокового чтения материализуется целиком
        и затем отдаётся чанками того же размера.
    """

    def __init__(self, data: bytes, name: str, encoding: str = DEFAULT_ENCODING, chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__(name, encoding, chunk_size)
        self._data = memoryview(bytes(data))
        self._offset = 0

    async def _read_chunk(self) -> bytes:
        start = self._offset
        self._offset = min(len(self._data), start + self.chunk_size)
        return self._data[start:self._offset].tobytes()

    async def _close(self) -> None:
        self._data = memoryview(b"")


class AsyncIterByteSource(ByteSource):
    """Источник поверх асинхронного итератора байтов (httpx.Response.aiter_bytes и т.п.)."""

    def __init__(self, iterator: AsyncIterator[bytes], name: str, encoding: str = DEFAULT_ENCODING, chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__(name, encoding, chunk_size)
        self._iterator = iterator

    async def _read_chunk(self) -> bytes:
        while True:
            try:
                data = await self._iterator.__anext__()
            except StopAsyncIteration:
                return b""
            if data:
                return data

    async def _close(self) -> None:
        aclose = getattr(self._iterator, "aclose", None)
        if aclose is not None:
            await aclose()


class HttpByteSource(ByteSource):
    """
    Назначение:
        Потоковое чтение файла по HTTP(S) через httpx.AsyncClient.stream.

    Контракт:
        - Соединение открывается при первом чтении.
        - Клиент, созданный здесь, закрывается в close(); переданный снаружи: нет.
        - Статус вне 2xx -> SourceReadError(SOURCE_IO).
    """

    def __init__(
        self,
        url: str,
        encoding: str = DEFAULT_ENCODING,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 30.0,
    ):
        super().__init__(url, encoding, chunk_size)
        self.url = url
        self._client = client
        self._transport = transport
        self._timeout_seconds = timeout_seconds
        self._stack = AsyncExitStack()
        self._iterator: AsyncIterator[bytes] | None = None

    async def _open(self) -> AsyncIterator[bytes]:
        client = self._client
        if client is None:
            client = await self._stack.enter_async_context(
                httpx.AsyncClient(transport=self._transport, timeout=self._timeout_seconds, follow_redirects=True)
            )
        response = await self._stack.enter_async_context(client.stream("GET", self.url))
        response.raise_for_status()
        return response.aiter_bytes(self.chunk_size)

    async def _read_chunk(self) -> bytes:
        if self._iterator is None:
            self._iterator = await self._open()
        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            return b""

    async def _close(self) -> None:
        await self._stack.aclose()


def describe_source(resource: Any) -> str:
    """
    Назначение:
        Короткое человекочитаемое имя ресурса для логов и отчётов.
    """
    if isinstance(resource, (str, os.PathLike)):
        return str(resource)
    if isinstance(resource, httpx.Response):
        try:
            return str(resource.request.url)
        except RuntimeError:
            return "<http response>"
    name = getattr(resource, "name", None) or getattr(resource, "filename", None)
    if isinstance(name, str) and name:
        return name
    return f"<{type(resource).__name__}>"


def open_source(
    resource: Any,
    encoding: str = DEFAULT_ENCODING,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    *,
    http_client: httpx.AsyncClient | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> ByteSource:
    """
    Назначение:
        Открывает ресурс как ByteSource.

    Алгоритм:
        - Путь или URL, file-like с read(size), httpx.Response, async-итератор байтов
          читаются потоково.
        - bytes/bytearray/memoryview, объекты с getvalue()/read_bytes()
          материализуются в памяти (запасной путь).
        - Иначе UnsupportedSourceError.
    """
    name = describe_source(resource)

    if isinstance(resource, str) and resource.lower().startswith(_URL_PREFIXES):
        return HttpByteSource(resource, encoding, chunk_size, client=http_client, transport=http_transport)
    if isinstance(resource, (str, os.PathLike)):
        return FileByteSource(Path(resource), encoding, chunk_size)
    aiter_bytes = getattr(resource, "aiter_bytes", None)
    if callable(aiter_bytes):
        return AsyncIterByteSource(aiter_bytes(chunk_size), name, encoding, chunk_size)
    if isinstance(resource, (bytes, bytearray, memoryview)):
        return MemoryByteSource(bytes(resource), name, encoding, chunk_size)
    if isinstance(resource, io.TextIOBase):
        raise UnsupportedSourceError(
            "Text-mode handles are not supported; open the file in binary mode",
            details={"source": name},
        )
    if callable(getattr(resource, "read", None)):
        return ReaderByteSource(resource, name, encoding, chunk_size)
    if hasattr(resource, "__aiter__"):
        return AsyncIterByteSource(resource.__aiter__(), name, encoding, chunk_size)

    for attr in ("getvalue", "read_bytes"):
        getter = getattr(resource, attr, None)
        if callable(getter):
            data = getter()
            if isinstance(data, (bytes, bytearray, memoryview)):
                return MemoryByteSource(bytes(data), name, encoding, chunk_size)

    raise UnsupportedSourceError(
        "This source does not support streamed reads",
        details={"source": name, "type": type(resource).__name__},
    )
