from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from lingowow.config import settings
from lingowow.core.errors import register_exception_handlers
from lingowow.db import Base, engine
from lingowow.routers import (
    attendance,
    auth,
    bookings,
    checkout,
    coupons,
    credits,
    enrollments,
    invoices,
    periods,
    reports,
    users,
)
from lingowow.route_logging import EndpointNameRoute
from lingowow.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    start_scheduler()
    logger.info('app_started env=%s timezone=%s', settings.app_env, settings.app_timezone)
    yield
    stop_scheduler()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
register_exception_handlers(app)

for module in (auth, users, periods, enrollments, bookings, attendance, reports, credits, coupons, checkout, invoices):
    app.include_router(module.router)


@app.get('/')
def root():
    return {'app': settings.app_name, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'success': True, 'status': 'ok'}
