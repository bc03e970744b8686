"""
Менеджер сессий распознавания.

Единственный разделяемый между запросами ресурс. Владеет пулом
сессий Tesseract и отвечает за:
    - жизненный цикл: uninitialized -> initializing -> ready -> terminated
    - сериализацию: на одной сессии одновременно идёт не больше одного
      распознавания (asyncio.Lock, FIFO)
    - ограничение очереди: при переполнении запрос сразу получает
      EngineOverloadedError вместо бесконечного ожидания
    - таймауты и отмену: отменённый запрос не оставляет сессию занятой

Каждая сессия выполняет вызовы движка в своём однопоточном executor'е,
поэтому event loop не блокируется.
"""

import asyncio
import itertools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional

from ocr_service.exceptions import (
    EngineFailureError,
    EngineInitError,
    EngineOverloadedError,
    EngineTimeoutError,
    EngineUnavailableError,
)
from ocr_service.schemas import RecognitionResult
from ocr_service.services.ocr_processor import TesseractEngine

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    TERMINATED = "terminated"


class RecognitionSession:
    """
    Одна сессия движка.

    Вызовы выполняются строго по очереди в порядке захвата блокировки.
    Блокировка отпускается только когда вызов движка действительно
    завершился, даже если ожидающий его запрос уже отменён.

    Args:
        session_id: номер сессии в пуле
        engine: экземпляр движка (TesseractEngine или совместимый)
    """

    def __init__(self, session_id: int, engine: TesseractEngine):
        self.session_id = session_id
        self.engine = engine
        self.state = SessionState.UNINITIALIZED
        # Запросы, которые ждут блокировку сессии
        self.queued = 0
        self.processed = 0
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"ocr-session-{session_id}",
        )

    async def start(self) -> str:
        self.state = SessionState.INITIALIZING
        loop = asyncio.get_running_loop()
        try:
            version = await loop.run_in_executor(self._executor, self.engine.start)
        except Exception:
            self.state = SessionState.UNINITIALIZED
            raise
        self.state = SessionState.READY
        logger.info(f"Сессия {self.session_id} готова (Tesseract {version})")
        return version

    @property
    def load(self) -> int:
        """Ожидающие запросы плюс текущий вызов движка."""
        return self.queued + (1 if self._lock.locked() else 0)

    async def recognize(self, image_bytes: bytes) -> RecognitionResult:
        """
        Выполняет распознавание на этой сессии.

        Raises:
            EngineFailureError: движок вернул ошибку
            asyncio.CancelledError: ожидание отменено (сессия при этом
                освобождается после завершения вызова движка)
        """
        self.queued += 1
        try:
            await self._lock.acquire()
        finally:
            self.queued -= 1

        if self.state == SessionState.TERMINATED:
            self._lock.release()
            raise EngineUnavailableError("Сессия распознавания закрыта")

        self.state = SessionState.BUSY
        loop = asyncio.get_running_loop()
        try:
            future = loop.run_in_executor(
                self._executor, self.engine.recognize, image_bytes
            )
        except RuntimeError as e:
            self._release()
            raise EngineUnavailableError(f"Сессия недоступна: {e}") from e

        future.add_done_callback(self._on_done)
        return await asyncio.shield(future)

    def _on_done(self, future: asyncio.Future) -> None:
        self.processed += 1
        if not future.cancelled():
            # Помечаем исключение как полученное: ожидавший запрос
            # мог быть уже отменён
            future.exception()
        self._release()

    def _release(self) -> None:
        if self.state == SessionState.BUSY:
            self.state = SessionState.READY
        self._lock.release()

    async def close(self) -> None:
        """
        Закрывает сессию: дожидается текущего и уже поставленных
        в очередь вызовов, затем освобождает движок.
        """
        async with self._lock:
            if self.state == SessionState.TERMINATED:
                return
            self.state = SessionState.TERMINATED
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(self._executor, self.engine.close)
            finally:
                self._executor.shutdown(wait=False)
        logger.info(f"Сессия {self.session_id} закрыта")


class RecognitionSessionManager:
    """
    Пул сессий распознавания.

    Выбор сессии: с наименьшим числом ожидающих запросов,
    при равенстве — по кругу.

    Args:
        engine_factory: создаёт движок для каждой сессии
        sessions: размер пула
        max_queue_depth: сколько запросов может ждать свободную сессию
        request_timeout: лимит на ожидание + распознавание в секундах (0 — без лимита)
    """

    def __init__(
        self,
        engine_factory: Callable[[], TesseractEngine],
        sessions: int = 1,
        max_queue_depth: int = 16,
        request_timeout: float = 0,
    ):
        if sessions < 1:
            raise ValueError("sessions должен быть >= 1")
        if max_queue_depth < 0:
            raise ValueError("max_queue_depth должен быть >= 0")

        self.engine_factory = engine_factory
        self.size = sessions
        self.max_queue_depth = max_queue_depth
        self.request_timeout = request_timeout
        self.state = SessionState.UNINITIALIZED
        self.engine_version: Optional[str] = None
        self.rejected = 0

        self._sessions: list[RecognitionSession] = []
        self._round_robin = itertools.count()
        self._init_lock = asyncio.Lock()

    @property
    def sessions(self) -> list[RecognitionSession]:
        return list(self._sessions)

    @property
    def waiting(self) -> int:
        """Запросы, которые ждут свободную сессию."""
        return sum(s.queued for s in self._sessions)

    async def initialize(self) -> None:
        """
        Запускает все сессии пула.

        Вызывается один раз при старте приложения; повторные вызовы
        ничего не делают. Ошибка запуска фатальна.

        Raises:
            EngineInitError: движок не удалось запустить
            EngineUnavailableError: менеджер уже остановлен
        """
        async with self._init_lock:
            if self.state == SessionState.READY:
                return
            if self.state == SessionState.TERMINATED:
                raise EngineUnavailableError("Менеджер сессий уже остановлен")

            self.state = SessionState.INITIALIZING
            start = time.perf_counter()
            logger.info(f"Запуск пула сессий Tesseract: {self.size} шт.")

            sessions = [
                RecognitionSession(i, self.engine_factory()) for i in range(self.size)
            ]
            try:
                versions = await asyncio.gather(*(s.start() for s in sessions))
            except Exception as e:
                self.state = SessionState.UNINITIALIZED
                for session in sessions:
                    await session.close()
                if isinstance(e, EngineInitError):
                    raise
                raise EngineInitError(f"Не удалось запустить Tesseract: {e}") from e

            self._sessions = sessions
            self.engine_version = versions[0] if versions else None
            self.state = SessionState.READY

            duration = int((time.perf_counter() - start) * 1000)
            logger.info(f"Пул сессий готов за {duration}ms")

    async def recognize(self, image_bytes: bytes) -> RecognitionResult:
        """
        Распознаёт изображение на наименее загруженной сессии.

        Args:
            image_bytes: провалидированные байты изображения

        Returns:
            RecognitionResult: результат движка

        Raises:
            EngineOverloadedError: очередь переполнена
            EngineUnavailableError: менеджер остановлен
            EngineTimeoutError: не уложились в request_timeout
            EngineFailureError: ошибка движка
        """
        if self.state in (SessionState.UNINITIALIZED, SessionState.INITIALIZING):
            await self.initialize()
        if self.state != SessionState.READY:
            raise EngineUnavailableError("Сервис распознавания недоступен")

        session = self._select_session()
        queued = session.load > 0

        if queued and self.waiting >= self.max_queue_depth:
            self.rejected += 1
            logger.warning(
                f"Очередь распознавания переполнена: ожидают {self.waiting}, "
                f"лимит {self.max_queue_depth}"
            )
            raise EngineOverloadedError(
                "Recognition queue is full, try again later."
            )

        if queued:
            logger.info(
                f"Запрос ждёт сессию {session.session_id} "
                f"(в очереди {self.waiting + 1})"
            )

        start = time.perf_counter()
        try:
            # Вызов в текущей задаче: queued сессии растёт до первого await
            async with asyncio.timeout(self.request_timeout or None):
                result = await session.recognize(image_bytes)
        except TimeoutError as e:
            logger.error(
                f"Таймаут распознавания на сессии {session.session_id}: "
                f"{self.request_timeout}s"
            )
            raise EngineTimeoutError(
                f"Recognition did not finish within {self.request_timeout} seconds."
            ) from e
        except EngineFailureError:
            raise
        except Exception as e:
            logger.exception(f"Ошибка движка на сессии {session.session_id}: {e}")
            raise EngineFailureError(str(e)) from e

        duration = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Сессия {session.session_id}: распознано {result.word_count()} слов "
            f"(уверенность {result.confidence:.0f}%) за {duration}ms"
        )
        return result

    def _select_session(self) -> RecognitionSession:
        offset = next(self._round_robin) % len(self._sessions)
        ordered = self._sessions[offset:] + self._sessions[:offset]
        return min(ordered, key=lambda s: s.load)

    async def shutdown(self) -> None:
        """
        Останавливает пул.

        Новые запросы сразу получают EngineUnavailableError, текущие
        и уже стоящие в очереди дорабатывают, после чего каждый движок
        освобождается ровно один раз.
        """
        async with self._init_lock:
            if self.state == SessionState.TERMINATED:
                return
            self.state = SessionState.TERMINATED

        logger.info("Остановка пула сессий Tesseract")
        await asyncio.gather(*(s.close() for s in self._sessions))
        logger.info("Пул сессий остановлен")

    def stats(self) -> dict:
        """
        Статистика пула для /health.

        Returns:
            dict: состояние менеджера и каждой сессии
        """
        return {
            "state": self.state.value,
            "engine_version": self.engine_version,
            "sessions": [
                {
                    "id": s.session_id,
                    "state": s.state.value,
                    "queued": s.queued,
                    "processed": s.processed,
                }
                for s in self._sessions
            ],
            "waiting": self.waiting,
            "max_queue_depth": self.max_queue_depth,
            "rejected": self.rejected,
        }
