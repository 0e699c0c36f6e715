import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from careslot.core import config
from careslot.database import SessionLocal, create_schema, engine
from careslot.routes import appointment_routes, availability_routes
from careslot.services.container import build_services


def configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


configure_logging()
config.validate_runtime_config()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

# Constructed once per process; routes reach it through request.app.state.
app.state.services = build_services(SessionLocal)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        create_schema(engine)
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
        return

    if config.SWEEPER_ENABLED:
        app.state.services.sweeper.start()


@app.on_event('shutdown')
def stop_sweeper() -> None:
    app.state.services.sweeper.stop()


@app.get('/')
def root():
    return {'status': 'CareSlot Reservation API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')
