import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from medbook.core import config
from medbook.database import init_schema
from medbook.routes import (
    absence_routes,
    admin_routes,
    auth_routes,
    availability_routes,
    consultation_routes,
    doctor_routes,
    event_routes,
    review_routes,
    schedule_routes,
)

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(title='MedBook')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        init_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'MedBook API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(doctor_routes.router, prefix='/doctors')
app.include_router(availability_routes.router, prefix='/availability')
app.include_router(absence_routes.router, prefix='/absences')
app.include_router(schedule_routes.router, prefix='/schedules')
app.include_router(consultation_routes.router, prefix='/consultations')
app.include_router(review_routes.router, prefix='/reviews')
app.include_router(admin_routes.router, prefix='/admin')
app.include_router(event_routes.router, prefix='/ws')
