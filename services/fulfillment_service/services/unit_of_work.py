"""Transaction-scoped unit of work over the fulfillment tables.

Core operations receive a ``UnitOfWork`` instead of touching a session
directly, so every multi-entity mutation of one order update shares a single
transaction and tests can swap in an in-memory implementation.

Usage:
    async with uow:
        order = await uow.orders.get(order_id)
        ...
        await uow.commit()

Leaving the block without committing rolls everything back.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Protocol

from fastapi import Depends
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.fulfillment_service.models import (
    AuditLog,
    CarrierEvent,
    Order,
    OrderItem,
    Parcel,
    TuningFile,
)
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Store interfaces
# ---------------------------------------------------------------------------


class OrderStore(Protocol):
    async def get(self, order_id: uuid.UUID) -> Optional[Order]: ...

    async def find_for_carrier(
        self, tracking: Optional[str], order_number: Optional[str]
    ) -> Optional[Order]: ...

    async def count(self) -> int: ...

    async def number_exists(self, order_number: str) -> bool: ...

    async def add(self, order: Order) -> Order: ...

    async def update(self, order: Order, **fields: Any) -> Order: ...

    async def claim_fulfillment(self, order_id: uuid.UUID, at: datetime) -> bool: ...

    async def list_items(self, order_id: uuid.UUID) -> list[OrderItem]: ...

    async def create_item(self, order_id: uuid.UUID, **fields: Any) -> OrderItem: ...

    async def update_item(self, item: OrderItem, **fields: Any) -> OrderItem: ...

    async def delete_item(self, item_id: uuid.UUID) -> None: ...


class ParcelStore(Protocol):
    async def find_by_order_id(self, order_id: uuid.UUID) -> Optional[Parcel]: ...

    async def find_by_legacy_order_id(self, legacy_id: str) -> Optional[Parcel]: ...

    async def find_by_customer_info(
        self, first: Optional[str], last: Optional[str], phone: Optional[str]
    ) -> Optional[Parcel]: ...

    async def create(self, **fields: Any) -> Parcel: ...

    async def update(self, parcel: Parcel, **fields: Any) -> Parcel: ...


class FileStore(Protocol):
    async def get(self, file_id: uuid.UUID) -> Optional[TuningFile]: ...

    async def update(self, file: TuningFile, **fields: Any) -> TuningFile: ...


class AuditStore(Protocol):
    async def add(self, **fields: Any) -> AuditLog: ...

    async def list_for(self, entity_id: uuid.UUID) -> list[AuditLog]: ...


class CarrierEventStore(Protocol):
    async def add_if_absent(
        self, event_id: str, type: str, occurred_at: datetime, payload: dict
    ) -> bool: ...


class UnitOfWork(Protocol):
    orders: OrderStore
    parcels: ParcelStore
    files: FileStore
    audit: AuditStore
    carrier_events: CarrierEventStore

    async def __aenter__(self) -> "UnitOfWork": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    def savepoint(self): ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


def _apply(instance: Any, fields: dict[str, Any]) -> None:
    for key, value in fields.items():
        setattr(instance, key, value)


class SqlAlchemyOrderStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, order_id: uuid.UUID) -> Optional[Order]:
        return await self.session.get(Order, order_id)

    async def find_for_carrier(
        self, tracking: Optional[str], order_number: Optional[str]
    ) -> Optional[Order]:
        clauses = []
        if tracking:
            clauses.append(Order.tracking_number == tracking)
        if order_number:
            clauses.append(Order.order_number == order_number)
        if not clauses:
            return None
        result = await self.session.execute(select(Order).where(or_(*clauses)).limit(1))
        return result.scalar_one_or_none()

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(Order.id)))
        return int(result.scalar_one())

    async def number_exists(self, order_number: str) -> bool:
        result = await self.session.execute(
            select(Order.id).where(Order.order_number == order_number)
        )
        return result.first() is not None

    async def add(self, order: Order) -> Order:
        self.session.add(order)
        await self.session.flush()
        return order

    async def update(self, order: Order, **fields: Any) -> Order:
        _apply(order, fields)
        await self.session.flush()
        return order

    async def claim_fulfillment(self, order_id: uuid.UUID, at: datetime) -> bool:
        result = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.fulfillment_completed_at.is_(None))
            .values(fulfillment_completed_at=at)
        )
        return result.rowcount == 1

    async def list_items(self, order_id: uuid.UUID) -> list[OrderItem]:
        result = await self.session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.created_at, OrderItem.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def create_item(self, order_id: uuid.UUID, **fields: Any) -> OrderItem:
        item = OrderItem(order_id=order_id, **fields)
        self.session.add(item)
        await self.session.flush()
        return item

    async def update_item(self, item: OrderItem, **fields: Any) -> OrderItem:
        _apply(item, fields)
        await self.session.flush()
        return item

    async def delete_item(self, item_id: uuid.UUID) -> None:
        await self.session.execute(delete(OrderItem).where(OrderItem.id == item_id))


class SqlAlchemyParcelStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _first(self, *criteria) -> Optional[Parcel]:
        result = await self.session.execute(select(Parcel).where(*criteria).limit(1))
        return result.scalar_one_or_none()

    async def find_by_order_id(self, order_id: uuid.UUID) -> Optional[Parcel]:
        return await self._first(Parcel.order_id == order_id)

    async def find_by_legacy_order_id(self, legacy_id: str) -> Optional[Parcel]:
        return await self._first(Parcel.legacy_order_id == legacy_id)

    async def find_by_customer_info(
        self, first: Optional[str], last: Optional[str], phone: Optional[str]
    ) -> Optional[Parcel]:
        clauses = []
        if first and last:
            clauses.append((Parcel.firstname == first) & (Parcel.familyname == last))
        if phone:
            clauses.append(Parcel.contact_phone == phone)
        if not clauses:
            return None
        return await self._first(or_(*clauses))

    async def create(self, **fields: Any) -> Parcel:
        parcel = Parcel(**fields)
        self.session.add(parcel)
        await self.session.flush()
        return parcel

    async def update(self, parcel: Parcel, **fields: Any) -> Parcel:
        _apply(parcel, fields)
        await self.session.flush()
        return parcel


class SqlAlchemyFileStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, file_id: uuid.UUID) -> Optional[TuningFile]:
        return await self.session.get(TuningFile, file_id)

    async def update(self, file: TuningFile, **fields: Any) -> TuningFile:
        _apply(file, fields)
        await self.session.flush()
        return file


class SqlAlchemyAuditStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, **fields: Any) -> AuditLog:
        entry = AuditLog(**fields)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for(self, entity_id: uuid.UUID) -> list[AuditLog]:
        result = await self.session.execute(
            select(AuditLog)
            .where(AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at)
        )
        return list(result.scalars().all())


class SqlAlchemyCarrierEventStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_if_absent(
        self, event_id: str, type: str, occurred_at: datetime, payload: dict
    ) -> bool:
        result = await self.session.execute(
            insert(CarrierEvent)
            .values(id=event_id, type=type, occurred_at=occurred_at, payload=payload)
            .on_conflict_do_nothing(index_elements=[CarrierEvent.id])
        )
        return result.rowcount == 1


class SqlAlchemyUnitOfWork:
    """Unit of work bound to one request-scoped ``AsyncSession``."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.orders = SqlAlchemyOrderStore(session)
        self.parcels = SqlAlchemyParcelStore(session)
        self.files = SqlAlchemyFileStore(session)
        self.audit = SqlAlchemyAuditStore(session)
        self.carrier_events = SqlAlchemyCarrierEventStore(session)
        self._committed = False

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self._committed = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None or not self._committed:
            await self.rollback()

    async def commit(self) -> None:
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        await self.session.rollback()

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        async with self.session.begin_nested():
            yield


async def get_uow(db: AsyncSession = Depends(get_async_db)) -> SqlAlchemyUnitOfWork:
    """FastAPI dependency yielding a unit of work over the request session."""
    return SqlAlchemyUnitOfWork(db)
