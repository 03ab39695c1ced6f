"""Transaction boundary and back-reference maintenance.

``transaction`` wraps a unit of work: commit on success, rollback on any failure before
the exception leaves. ``link``/``unlink`` are the only writers of the customer/user order
lists; each is a single INSERT or DELETE so concurrent orders touching the same customer
or creator never overwrite each other's entries.
"""
from __future__ import annotations
from contextlib import contextmanager
import logging
import time

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tailorshop.errors import Conflict, ServiceError, TransactionFailure
from tailorshop.models.order import CustomerOrder, UserOrder

log = logging.getLogger(__name__)


@contextmanager
def transaction(session):
    """Commit the session on success; roll back and translate store errors otherwise."""
    try:
        yield session
        session.commit()
    except IntegrityError as e:
        session.rollback()
        log.warning('Transaction rolled back on integrity error: %s', e.orig)
        raise Conflict('Uniqueness or reference constraint violated')
    except ServiceError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        log.warning('Transaction rolled back: %s', e)
        raise TransactionFailure()
    except Exception:
        session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """Run ``func`` again when the store aborted the transaction.

    Only TransactionFailure is retried; every lifecycle operation rolls back completely
    so a second attempt starts from clean state.
    """
    for attempt in range(attempts):
        try:
            return func()
        except TransactionFailure:
            if attempt >= attempts - 1:
                raise
            log.info('Retrying after transaction failure (attempt %d)', attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))


def link(session, order_id: int, customer_id: int, creator_id: int):
    session.execute(insert(CustomerOrder).values(customer_id=customer_id, order_id=order_id))
    session.execute(insert(UserOrder).values(user_id=creator_id, order_id=order_id))


def unlink(session, order_id: int, customer_id: int, creator_id: int):
    session.execute(delete(CustomerOrder).where(CustomerOrder.customer_id==customer_id, CustomerOrder.order_id==order_id))
    session.execute(delete(UserOrder).where(UserOrder.user_id==creator_id, UserOrder.order_id==order_id))


__all__ = ['transaction', 'run_with_retry', 'link', 'unlink']
