import logging
import time
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from appointment_service.core import config
from appointment_service.routes.dependencies import get_db

router = APIRouter(tags=['health'])

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@router.get('')
def health(db: Session = Depends(get_db)):
    payload = {
        'status': 'OK',
        'service': config.SERVICE_NAME,
        'uptime_seconds': round(time.monotonic() - STARTED_AT, 3),
        'timestamp': datetime.now().isoformat(),
    }

    try:
        db.execute(text('SELECT 1'))
    except SQLAlchemyError:
        logger.exception('Health check could not reach the database')
        payload['status'] = 'Database connection failed'
        payload['database'] = 'disconnected'
        return JSONResponse(status_code=503, content=payload)

    payload['database'] = 'connected'
    return payload
