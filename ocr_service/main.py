"""
OCR Service — FastAPI приложение.

Принимает изображение в base64 (data URI) и возвращает распознанный
текст или bounding box'ы выбранного уровня иерархии.

Эндпоинты:
    POST /api/get-text   — распознанный текст
    POST /api/get-bboxes — bounding box'ы (word, line, paragraph, block, page)
    GET  /health         — состояние сервиса и пула сессий Tesseract

Пайплайн запроса:
    decode (data URI -> bytes) -> validate (Pillow) -> recognize (Tesseract)
    -> projection (текст / bbox'ы)

Запуск:
    uvicorn ocr_service.main:app --host 0.0.0.0 --port 3000
"""

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ocr_service.config import settings
from ocr_service.exceptions import InvalidImageError, InvalidInputError, OCRServiceError
from ocr_service.schemas import (
    BBoxesResponse,
    BBoxesResult,
    GetBBoxesRequest,
    GetTextRequest,
    Granularity,
    TextResponse,
    TextResult,
    error_payload,
)
from ocr_service.services.decoder import decode_base64_image
from ocr_service.services.image_validator import validate_image_bytes
from ocr_service.services.ocr_processor import TesseractEngine
from ocr_service.services.projector import project_boxes, project_text
from ocr_service.services.session_manager import RecognitionSessionManager

# Настройка логгера
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [OCR-Service] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

INVALID_IMAGE_MESSAGE = "Invalid base64_image."
INVALID_BBOX_INPUT_MESSAGE = "Invalid base64_image or bbox_type."
INVALID_BBOX_TYPE_MESSAGE = "Invalid bbox_type."
INVALID_BODY_MESSAGE = "Invalid request body."

VALID_BBOX_TYPES = {g.value for g in Granularity}


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ без \\uXXXX экранирования (распознанный текст бывает не только ASCII)."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


class BodySizeLimitMiddleware:
    """
    Ограничивает размер тела запроса (max_body_size_mb из настроек).

    При наличии Content-Length проверяется заголовок. Без него
    (Transfer-Encoding: chunked) тело читается по частям со счётчиком
    байт: как только он превышает лимит, клиент получает 413.
    Тело в пределах лимита передаётся приложению одним сообщением.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        max_size = settings.max_body_size_mb * 1024 * 1024
        content_length = Headers(scope=scope).get("content-length")
        if content_length and content_length.isdigit():
            if int(content_length) > max_size:
                await self._reject(scope, receive, send)
                return
            await self.app(scope, receive, send)
            return

        body = bytearray()
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            body.extend(message.get("body", b""))
            if len(body) > max_size:
                logger.warning(f"Тело запроса больше {settings.max_body_size_mb} МБ, отклонено")
                await self._reject(scope, receive, send)
                return
            more_body = message.get("more_body", False)

        replayed = False

        async def replay_receive() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": bytes(body), "more_body": False}
            return await receive()

        await self.app(scope, replay_receive, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = UnicodeJSONResponse(
            status_code=413,
            content=error_payload(
                f"Request body too large, maximum is {settings.max_body_size_mb} MB."
            ),
        )
        await response(scope, receive, send)


def build_session_manager() -> RecognitionSessionManager:
    """Пул сессий Tesseract по текущим настройкам."""

    def engine_factory() -> TesseractEngine:
        return TesseractEngine(
            lang=settings.ocr_lang,
            oem=settings.ocr_oem,
            psm=settings.ocr_psm,
            timeout=settings.recognize_timeout_seconds,
        )

    return RecognitionSessionManager(
        engine_factory,
        sessions=settings.sessions,
        max_queue_depth=settings.max_queue_depth,
        request_timeout=settings.request_timeout_seconds,
    )


def create_app(session_manager: Optional[RecognitionSessionManager] = None) -> FastAPI:
    """
    Создаёт FastAPI приложение.

    Args:
        session_manager: готовый менеджер сессий (по умолчанию — Tesseract
            по настройкам из .env)

    Returns:
        FastAPI: приложение с эндпоинтами и обработчиками ошибок
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        manager = session_manager or build_session_manager()
        app.state.session_manager = manager

        # Ошибка запуска движка фатальна — приложение не стартует
        await manager.initialize()
        logger.info(f"OCR Service готов к работе (Tesseract {manager.engine_version})")
        try:
            yield
        finally:
            await manager.shutdown()

    app = FastAPI(
        title="OCR Service",
        description="Распознавание текста и bounding box'ов из base64 изображений (Tesseract OCR)",
        version="1.0.0",
        default_response_class=UnicodeJSONResponse,
        lifespan=lifespan,
    )

    @app.exception_handler(OCRServiceError)
    async def service_error_handler(request: Request, exc: OCRServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.url.path}: {type(exc).__name__}: {exc.message}")
        return UnicodeJSONResponse(
            status_code=exc.status_code,
            content=error_payload(exc.message),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info(f"{request.url.path}: некорректное тело запроса: {exc.errors()}")
        return UnicodeJSONResponse(
            status_code=400,
            content=error_payload(INVALID_BODY_MESSAGE),
        )

    # Starlette отдаёт этот ответ и затем пробрасывает исключение серверу:
    # uvicorn дополнительно пишет "Exception in ASGI application" с traceback
    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"{request.url.path}: необработанная ошибка: {exc}")
        return UnicodeJSONResponse(
            status_code=500,
            content=error_payload("Internal server error."),
        )

    app.add_middleware(BodySizeLimitMiddleware)

    @app.get("/health")
    async def health_check(request: Request) -> dict:
        """
        Проверка работоспособности сервиса.

        Returns:
            dict: статус, версия Tesseract, состояние пула сессий и конфиг
        """
        manager: Optional[RecognitionSessionManager] = getattr(
            request.app.state, "session_manager", None
        )
        stats = manager.stats() if manager else {"state": "uninitialized"}

        return {
            "status": "ok" if stats["state"] == "ready" else "degraded",
            "service": "ocr-service",
            "version": "1.0.0",
            "engine": stats,
            "config": {
                "max_body_size_mb": settings.max_body_size_mb,
                "ocr_lang": settings.ocr_lang,
                "ocr_oem": settings.ocr_oem,
                "ocr_psm": settings.ocr_psm,
                "sessions": settings.sessions,
                "max_queue_depth": settings.max_queue_depth,
                "request_timeout_seconds": settings.request_timeout_seconds,
            },
        }

    @app.post("/api/get-text", response_model=TextResponse)
    async def get_text(body: GetTextRequest, request: Request) -> TextResponse:
        """
        Распознаёт текст на изображении.

        Args:
            body: {"base64_image": "data:image/png;base64,..."}

        Returns:
            TextResponse: {"success": true, "result": {"text": "..."}}
        """
        start_time = time.time()

        if not body.base64_image:
            raise InvalidInputError(INVALID_IMAGE_MESSAGE)

        image_bytes = await _load_image(body.base64_image)
        result = await request.app.state.session_manager.recognize(image_bytes)
        text = project_text(result)

        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"get-text: {len(text)} симв. за {processing_time_ms}ms")

        return TextResponse(result=TextResult(text=text))

    @app.post("/api/get-bboxes", response_model=BBoxesResponse)
    async def get_bboxes(body: GetBBoxesRequest, request: Request) -> BBoxesResponse:
        """
        Возвращает bounding box'ы выбранного уровня.

        bbox_type проверяется до вызова движка, чтобы не тратить
        распознавание на заведомо плохой запрос.

        Args:
            body: {"base64_image": "...", "bbox_type": "word"}

        Returns:
            BBoxesResponse: {"success": true, "result": {"bboxes": [...]}}
        """
        start_time = time.time()

        if not body.base64_image or not body.bbox_type:
            raise InvalidInputError(INVALID_BBOX_INPUT_MESSAGE)
        if body.bbox_type not in VALID_BBOX_TYPES:
            raise InvalidInputError(INVALID_BBOX_TYPE_MESSAGE)
        granularity = Granularity(body.bbox_type)

        image_bytes = await _load_image(body.base64_image)
        result = await request.app.state.session_manager.recognize(image_bytes)
        bboxes = project_boxes(result, granularity)

        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"get-bboxes: {len(bboxes)} x {granularity.value} за {processing_time_ms}ms"
        )

        return BBoxesResponse(result=BBoxesResult(bboxes=bboxes))

    return app


async def _load_image(base64_image: str) -> bytes:
    """
    Декодирует и проверяет изображение из запроса.

    Raises:
        InvalidInputError: строка не является base64 data URI
        InvalidImageError: байты не декодируются в изображение
    """
    image_bytes = decode_base64_image(base64_image)
    if image_bytes is None:
        raise InvalidInputError(INVALID_IMAGE_MESSAGE)

    if not await validate_image_bytes(image_bytes):
        raise InvalidImageError(INVALID_IMAGE_MESSAGE)

    logger.info(f"Изображение принято: {len(image_bytes)} байт")
    return image_bytes


# FastAPI приложение
app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск OCR Service на {settings.host}:{settings.port}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )
