"""
FastAPI сервер: проверка здоровья и раздача загруженных файлов
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from config import get_settings, setup_logging
from ijazah import IjazahService, create_ijazah_service
from ijazah.exceptions import ValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    logger.info("Запуск API сервера...")

    service: IjazahService = app.state.ijazah_service
    await service.gateway.start()
    await service.cluster.authenticate()

    yield

    logger.info("Остановка API сервера...")
    await service.gateway.close()
    await service.cluster.close()


def create_app(settings=None, service: IjazahService = None) -> FastAPI:
    """Создание FastAPI приложения"""
    settings = settings or get_settings()
    settings.create_directories()
    setup_logging(settings)

    app = FastAPI(
        title="Ijazah Service API",
        description="Мониторинг и раздача файлов сервиса ijazah",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.ijazah_service = service or create_ijazah_service(settings)

    @app.get("/health", tags=["monitoring"])
    async def health_check():
        """Сводная проверка леджера, кластера и локального хранилища"""
        health = await app.state.ijazah_service.health_check()
        health["status"] = "healthy" if health["overall"] else "unhealthy"
        health["timestamp"] = datetime.now().isoformat()

        return JSONResponse(content=health, status_code=200 if health["overall"] else 503)

    def serve(path_getter, filename: str) -> FileResponse:
        try:
            path = path_getter(filename)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if not path.is_file():
            raise HTTPException(status_code=404, detail=f"Файл не найден: {filename}")
        return FileResponse(path, media_type="image/png")

    @app.get("/api/files/photos/{filename}", tags=["files"])
    async def get_photo(filename: str):
        """Фото выпускника"""
        return serve(app.state.ijazah_service.storage.get_photo_path, filename)

    @app.get("/api/files/signatures/{filename}", tags=["files"])
    async def get_signature(filename: str):
        """Изображение подписи"""
        return serve(app.state.ijazah_service.storage.get_signature_path, filename)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
