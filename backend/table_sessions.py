"""
Table-session manager: check-in, seating, checkout.

A session moves WAITING -> SEATED -> ORDERING -> ORDERED -> DINING -> BILLING
-> COMPLETED. Staff only call check_in/seat/checkout/remove_waiting; the
intermediate steps are driven by order and billing events through
``advance``. At most one active session may reference a table.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

import models
from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from redis_client import RedisClient, redis_client

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    WAITING = "WAITING"
    SEATED = "SEATED"
    ORDERING = "ORDERING"
    ORDERED = "ORDERED"
    DINING = "DINING"
    BILLING = "BILLING"
    COMPLETED = "COMPLETED"


SESSION_FLOW = [
    SessionStatus.WAITING,
    SessionStatus.SEATED,
    SessionStatus.ORDERING,
    SessionStatus.ORDERED,
    SessionStatus.DINING,
    SessionStatus.BILLING,
    SessionStatus.COMPLETED,
]

# Statuses that hold a table
ACTIVE_STATUSES = [
    SessionStatus.SEATED,
    SessionStatus.ORDERING,
    SessionStatus.ORDERED,
    SessionStatus.DINING,
    SessionStatus.BILLING,
]

CAPACITY_WARNING = "Party of {party} exceeds capacity {capacity} of table {table}"


class TableSessionManager:
    def __init__(self, db: Session, cache: Optional[RedisClient] = None):
        self.db = db
        self.cache = cache or redis_client

    # ---- reads ----

    def get(self, session_id: int) -> models.CustomerSession:
        session = self.db.query(models.CustomerSession).filter(
            models.CustomerSession.id == session_id
        ).first()
        if not session:
            raise NotFoundError("session", session_id)
        return session

    def list_open(self) -> List[models.CustomerSession]:
        """Sessions that are not completed yet, newest check-in first"""
        return self.db.query(models.CustomerSession).filter(
            models.CustomerSession.status != SessionStatus.COMPLETED.value
        ).order_by(models.CustomerSession.check_in_time.desc(), models.CustomerSession.id.desc()).all()

    def active_session_for_table(self, table_id: int) -> Optional[models.CustomerSession]:
        return self.db.query(models.CustomerSession).filter(
            models.CustomerSession.table_id == table_id,
            models.CustomerSession.status.in_([s.value for s in ACTIVE_STATUSES]),
        ).first()

    def table_occupancy(self) -> List[Dict]:
        """Every table with the session currently holding it"""
        occupied = {
            s.table_id: s for s in self.db.query(models.CustomerSession).filter(
                models.CustomerSession.status.in_([s.value for s in ACTIVE_STATUSES])
            ).all()
        }
        tables = self.db.query(models.Table).order_by(models.Table.number).all()
        return [
            {
                "id": t.id,
                "number": t.number,
                "name": t.name,
                "capacity": t.capacity,
                "is_active": t.is_active,
                "is_available": t.is_active and t.id not in occupied,
                "session_id": occupied[t.id].id if t.id in occupied else None,
                "session_status": occupied[t.id].status if t.id in occupied else None,
            }
            for t in tables
        ]

    # ---- staff actions ----

    def check_in(self, party_size: int, customer_name: Optional[str] = None,
                 customer_phone: Optional[str] = None, notes: Optional[str] = None) -> models.CustomerSession:
        if party_size is None or party_size < 1:
            raise ValidationError("Party size must be at least 1", party_size=party_size)

        session = models.CustomerSession(
            party_size=party_size,
            customer_name=customer_name or None,
            customer_phone=customer_phone or None,
            notes=notes or None,
            status=SessionStatus.WAITING.value,
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        logger.info(f"Session {session.id} checked in, party of {party_size}")
        return session

    def seat(self, session_id: int, table_id: int,
             actor: Optional[str] = None) -> Tuple[models.CustomerSession, List[str]]:
        """
        Seat a waiting party. Returns the session and a list of non-fatal
        warnings (party larger than the table capacity).
        """
        session = self.get(session_id)
        table = self.db.query(models.Table).filter(models.Table.id == table_id).first()
        if not table or not table.is_active:
            raise NotFoundError("table", table_id)

        with self.cache.session_lock(session_id), self.cache.table_lock(table_id):
            self.db.refresh(session)
            if session.status != SessionStatus.WAITING.value:
                raise InvalidStateError(
                    f"Session {session_id} is {session.status}, only waiting sessions can be seated",
                    session_id=session_id, from_status=session.status, to_status=SessionStatus.SEATED.value,
                )

            occupant = self.active_session_for_table(table_id)
            if occupant:
                raise ConflictError(
                    f"Table {table.number} is already occupied",
                    table_id=table_id, occupied_by=occupant.id,
                )

            warnings = []
            if table.capacity is not None and table.capacity < session.party_size:
                message = CAPACITY_WARNING.format(party=session.party_size, capacity=table.capacity,
                                                  table=table.number)
                logger.warning(f"Session {session_id}: {message}")
                warnings.append(message)

            # only a still-waiting session is seated; another process may have won
            updated = self.db.query(models.CustomerSession).filter(
                models.CustomerSession.id == session_id,
                models.CustomerSession.status == SessionStatus.WAITING.value,
            ).update({
                models.CustomerSession.table_id: table_id,
                models.CustomerSession.status: SessionStatus.SEATED.value,
                models.CustomerSession.seated_time: datetime.utcnow(),
                models.CustomerSession.seated_by: actor,
            }, synchronize_session=False)
            if not updated:
                self.db.rollback()
                raise ConflictError(
                    f"Session {session_id} was seated by someone else",
                    session_id=session_id, table_id=table_id,
                )
            self.db.commit()

        self.db.refresh(session)
        self.cache.invalidate_tables_cache()
        logger.info(f"Session {session_id} seated at table {table.number}")
        return session, warnings

    def checkout(self, session_id: int) -> models.CustomerSession:
        """Complete a session that has been billed and free its table"""
        session = self.get(session_id)
        with self.cache.session_lock(session_id):
            self.db.refresh(session)
            if not self._can_checkout(session):
                raise InvalidStateError(
                    f"Session {session_id} is {session.status} and has not been billed",
                    session_id=session_id, from_status=session.status, to_status=SessionStatus.COMPLETED.value,
                )
            session.status = SessionStatus.COMPLETED.value
            session.check_out_time = datetime.utcnow()
            self.db.commit()

        self.db.refresh(session)
        self.cache.invalidate_tables_cache()
        logger.info(f"Session {session_id} checked out")
        return session

    def remove_waiting(self, session_id: int) -> None:
        """The party left before being seated"""
        session = self.get(session_id)
        if session.status != SessionStatus.WAITING.value:
            raise InvalidStateError(
                f"Session {session_id} is {session.status}, only waiting sessions can be removed",
                session_id=session_id, from_status=session.status,
            )
        self.db.delete(session)
        self.db.commit()
        logger.info(f"Waiting session {session_id} removed")

    # ---- event driven ----

    def advance(self, session_id: int, target: SessionStatus) -> bool:
        """
        Move the session forward to ``target`` if it is still behind it.

        Runs as a single conditional UPDATE so concurrent order events on the
        same session never move it backwards. Returns True if it moved.
        """
        target = SessionStatus(target)
        index = SESSION_FLOW.index(target)
        earlier = [s.value for s in SESSION_FLOW[1:index]]
        if not earlier:
            return False

        updated = self.db.query(models.CustomerSession).filter(
            models.CustomerSession.id == session_id,
            models.CustomerSession.status.in_(earlier),
        ).update({models.CustomerSession.status: target.value}, synchronize_session="fetch")
        if updated:
            self.cache.invalidate_tables_cache()
            logger.info(f"Session {session_id} advanced to {target.value}")
        return bool(updated)

    def ensure_can_order(self, session: models.CustomerSession) -> None:
        if session.status not in [s.value for s in ACTIVE_STATUSES]:
            raise InvalidStateError(
                f"Session {session.id} is {session.status}, orders need a seated session",
                session_id=session.id, from_status=session.status,
            )

    def _can_checkout(self, session: models.CustomerSession) -> bool:
        # every payment or split moves the session to BILLING
        return session.status == SessionStatus.BILLING.value
