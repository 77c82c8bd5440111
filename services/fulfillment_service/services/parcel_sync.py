"""Keep orders and their carrier parcel records consistent.

Totals are recomputed from the order lines and persisted as part of the
caller's transaction. Parcel work for COD orders is best effort: it runs in
a savepoint, and a failure is logged without undoing the order edit, since
carrier sync can be retried independently.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from libs.common.currency import as_money, round_dinars, to_centimes
from libs.common.logging import get_logger
from services.fulfillment_service.models import Order, OrderItem, Parcel
from services.fulfillment_service.schemas import ShippingAddress, ShippingOptions
from services.fulfillment_service.services.best_effort import run_best_effort
from services.fulfillment_service.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

PRODUCT_LIST_MAX_LENGTH = 240
ADDRESS_PLACEHOLDER = "Address to be updated"
WILAYA_PLACEHOLDER = "Wilaya to be updated"
COMMUNE_PLACEHOLDER = "Commune to be updated"
PRODUCTS_PLACEHOLDER = "Products to be updated"


class _SummaryLine(Protocol):
    name: str
    sku: Optional[str]
    quantity: int


def summarize_items(items: Iterable[_SummaryLine]) -> str:
    """Build the carrier product list, e.g. ``"T-Shirt (TS-1) x2, Cap"``.

    The sku part is dropped when empty and ``xN`` when the quantity is 1.
    Longer summaries are cut to 240 characters ending in ``...``.
    """
    parts = []
    for item in items:
        sku = f" ({item.sku})" if item.sku else ""
        quantity = f" x{item.quantity}" if item.quantity > 1 else ""
        parts.append(f"{item.name}{sku}{quantity}")
    summary = ", ".join(parts)
    if len(summary) > PRODUCT_LIST_MAX_LENGTH:
        return summary[: PRODUCT_LIST_MAX_LENGTH - 3] + "..."
    return summary


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    total: Decimal


def compute_totals(
    items: Iterable[OrderItem],
    shipping: Decimal | None = None,
    tax: Decimal | None = None,
    discount: Decimal | None = None,
) -> OrderTotals:
    """subtotal = sum(price * quantity); total = subtotal + shipping + tax - discount."""
    subtotal = sum(
        (as_money(item.price) * item.quantity for item in items), Decimal("0.00")
    )
    total = subtotal + as_money(shipping) + as_money(tax) - as_money(discount)
    return OrderTotals(subtotal=as_money(subtotal), total=as_money(total))


# ---------------------------------------------------------------------------
# Parcel lookup
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParcelQuery:
    order: Order
    first: Optional[str] = None
    last: Optional[str] = None
    phone: Optional[str] = None


LookupStrategy = Callable[[UnitOfWork, ParcelQuery], Awaitable[Optional[Parcel]]]


async def _by_order_id(uow: UnitOfWork, query: ParcelQuery) -> Optional[Parcel]:
    return await uow.parcels.find_by_order_id(query.order.id)


async def _by_legacy_order_id(uow: UnitOfWork, query: ParcelQuery) -> Optional[Parcel]:
    for legacy_id in (str(query.order.id), query.order.order_number):
        if legacy_id:
            parcel = await uow.parcels.find_by_legacy_order_id(legacy_id)
            if parcel:
                return parcel
    return None


async def _by_customer_info(uow: UnitOfWork, query: ParcelQuery) -> Optional[Parcel]:
    return await uow.parcels.find_by_customer_info(query.first, query.last, query.phone)


# Tried in order; historical parcels were created out-of-band with only some keys
PARCEL_LOOKUP_STRATEGIES: tuple[tuple[str, LookupStrategy], ...] = (
    ("order_id", _by_order_id),
    ("legacy_order_id", _by_legacy_order_id),
    ("customer_info", _by_customer_info),
)


async def find_parcel(
    uow: UnitOfWork,
    order: Order,
    first: Optional[str] = None,
    last: Optional[str] = None,
    phone: Optional[str] = None,
) -> tuple[Optional[Parcel], Optional[str]]:
    """Return ``(parcel, strategy_name)`` for the first strategy that matches.

    A parcel already attached to a different order never matches.
    """
    query = ParcelQuery(
        order=order,
        first=first or order.customer_first,
        last=last or order.customer_last,
        phone=phone or order.customer_phone,
    )
    for name, strategy in PARCEL_LOOKUP_STRATEGIES:
        parcel = await strategy(uow, query)
        if parcel is None:
            continue
        if parcel.order_id is not None and parcel.order_id != order.id:
            logger.warning(
                "Parcel %s matched order %s by %s but belongs to order %s; ignoring",
                parcel.id,
                order.id,
                name,
                parcel.order_id,
            )
            continue
        return parcel, name
    return None, None


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


@dataclass
class ParcelSyncResult:
    totals: OrderTotals
    parcel: Optional[Parcel] = None
    created: bool = False
    matched_by: Optional[str] = None
    synced: bool = False
    error: Optional[str] = None


def _option_overrides(options: Optional[ShippingOptions]) -> dict:
    """Only explicitly provided options overwrite parcel fields."""
    if options is None:
        return {}
    fields: dict = {}
    if options.delivery_type is not None:
        fields["is_stopdesk"] = options.delivery_type == "stopdesk"
    if options.stopdesk_id is not None:
        fields["stopdesk_id"] = options.stopdesk_id
    if options.free_shipping is not None:
        fields["freeshipping"] = options.free_shipping
    if options.wilaya:
        fields["to_wilaya_name"] = options.wilaya
    if options.commune:
        fields["to_commune_name"] = options.commune
    if options.wilaya and options.commune:
        fields["address"] = f"{options.commune}, {options.wilaya}"
    elif options.wilaya:
        fields["address"] = options.wilaya
    return fields


def _placeholder_parcel(order: Order) -> dict:
    return {
        "order_id": order.id,
        "legacy_order_id": str(order.id),
        "firstname": order.customer_first,
        "familyname": order.customer_last,
        "contact_phone": order.customer_phone,
        "address": ADDRESS_PLACEHOLDER,
        "to_wilaya_name": WILAYA_PLACEHOLDER,
        "to_commune_name": COMMUNE_PLACEHOLDER,
        "product_list": PRODUCTS_PLACEHOLDER,
        "status": "PENDING",
    }


async def apply_totals(uow: UnitOfWork, order: Order, items: Iterable[OrderItem]) -> OrderTotals:
    """Recompute and persist the order's totals (plus cents mirrors for COD)."""
    totals = compute_totals(items, order.shipping, order.tax, order.discount)
    fields = {"subtotal": totals.subtotal, "total": totals.total}
    if order.is_cod:
        fields["subtotal_cents"] = to_centimes(totals.subtotal)
        fields["total_cents"] = to_centimes(totals.total)
    await uow.orders.update(order, **fields)
    return totals


async def sync_parcel(
    uow: UnitOfWork,
    order: Order,
    items: list[OrderItem],
    shipping_options: Optional[ShippingOptions] = None,
) -> ParcelSyncResult:
    """Persist recomputed totals and push price/product list/options to the parcel.

    Non-COD orders only get their totals recomputed. A missing parcel is
    created with placeholder destination fields instead of failing the edit.
    """
    totals = await apply_totals(uow, order, items)
    result = ParcelSyncResult(totals=totals)
    if not order.is_cod:
        return result

    async def _push() -> None:
        async with uow.savepoint():
            parcel, matched_by = await find_parcel(uow, order)
            if parcel is None:
                parcel = await uow.parcels.create(
                    **_placeholder_parcel(order), price=round_dinars(totals.total)
                )
                result.created = True
                logger.info("Created placeholder parcel %s for order %s", parcel.id, order.id)
            fields = {
                "price": round_dinars(totals.total),
                "product_list": summarize_items(items),
                **_option_overrides(shipping_options),
            }
            if parcel.order_id is None:
                fields["order_id"] = order.id
            await uow.parcels.update(parcel, **fields)
            result.parcel = parcel
            result.matched_by = matched_by

    outcome = await run_best_effort(
        "parcel_sync", _push, context={"order_id": str(order.id)}
    )
    result.synced = outcome.ok
    result.error = outcome.error
    if outcome.ok:
        logger.info(
            "Synced parcel price (%s) and product list for order %s",
            round_dinars(totals.total),
            order.id,
        )
    return result


@dataclass
class CustomerSyncResult:
    parcel: Optional[Parcel] = None
    created: bool = False
    skipped: bool = False
    error: Optional[str] = None


async def sync_customer_info(
    uow: UnitOfWork,
    order: Order,
    first: Optional[str],
    last: Optional[str],
    phone: Optional[str],
    shipping_address: Optional[ShippingAddress] = None,
) -> CustomerSyncResult:
    """Propagate customer name/phone/address onto the order's parcel.

    Incomplete customer data is skipped, since it cannot safely seed a new
    carrier record. A newly created parcel is priced at the product total
    only; the carrier charges shipping separately.
    """
    if not order.is_cod:
        return CustomerSyncResult(skipped=True)
    if not (first and last and phone):
        logger.info(
            "Missing customer info for order %s, skipping parcel customer sync", order.id
        )
        return CustomerSyncResult(skipped=True)

    result = CustomerSyncResult()
    address_fields: dict = {}
    if shipping_address is not None:
        address_fields["address"] = shipping_address.street
        if shipping_address.state:
            address_fields["to_wilaya_name"] = shipping_address.state
        if shipping_address.city:
            address_fields["to_commune_name"] = shipping_address.city

    async def _push() -> None:
        async with uow.savepoint():
            parcel, matched_by = await find_parcel(uow, order, first, last, phone)
            customer = {"firstname": first, "familyname": last, "contact_phone": phone}
            if parcel is not None:
                fields = {**customer, **address_fields}
                if parcel.order_id is None:
                    fields["order_id"] = order.id
                await uow.parcels.update(parcel, **fields)
                logger.info(
                    "Updated parcel %s customer info for order %s (matched by %s)",
                    parcel.id,
                    order.id,
                    matched_by,
                )
            else:
                parcel = await uow.parcels.create(
                    **{
                        **_placeholder_parcel(order),
                        **customer,
                        **address_fields,
                        "price": round_dinars(as_money(order.total) - as_money(order.shipping)),
                    }
                )
                result.created = True
                logger.info("Created parcel %s for order %s", parcel.id, order.id)
            result.parcel = parcel

    outcome = await run_best_effort(
        "parcel_customer_sync", _push, context={"order_id": str(order.id)}
    )
    result.error = outcome.error
    return result
