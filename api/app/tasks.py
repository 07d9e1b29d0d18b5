import logging

from celery import Celery
from sqlmodel import Session

from . import db
from .config import REDIS_URL, WORKER_QUEUE
from .finalize import generate_final_pdf

logger = logging.getLogger(__name__)

cel = Celery("signing", broker=REDIS_URL, backend=REDIS_URL)


@cel.task(name="generate_signed_pdf", queue=WORKER_QUEUE)
def generate_signed_pdf(signing_request_id: int):
    with Session(db.engine) as session:
        return generate_final_pdf(session, signing_request_id)


def enqueue_final_pdf(signing_request_id: int) -> str:
    result = generate_signed_pdf.apply_async(args=[signing_request_id], queue=WORKER_QUEUE)
    logger.info("queued final pdf for request %s as task %s", signing_request_id, result.id)
    return result.id
