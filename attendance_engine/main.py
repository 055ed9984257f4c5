from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from attendance_engine.config import settings
from attendance_engine.core.errors import EngineError
from attendance_engine.core.event_bus import SessionEventBus
from attendance_engine.db import Base, engine
from attendance_engine.observability import EndpointNameRoute, slow_request_logger
from attendance_engine.routers import attendance, events, sessions, substitutes

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)
logger = logging.getLogger('attendance_engine')


async def engine_error_handler(request: Request, exc: EngineError):
    logger.info(
        'request_rejected path=%s code=%s detail=%s',
        request.url.path,
        exc.code,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)


def include_routers(app: FastAPI) -> None:
    app.include_router(substitutes.router)
    app.include_router(sessions.router)
    app.include_router(attendance.router)
    app.include_router(events.router)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield
    engine.dispose()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
app.state.event_bus = SessionEventBus(queue_size=settings.event_queue_size)
app.middleware('http')(slow_request_logger)
register_exception_handlers(app)


@app.get('/health')
def health():
    return {'status': 'ok', 'env': settings.app_env, 'subscribers': app.state.event_bus.subscriber_count}


include_routers(app)
