"""Order state machine: legal transitions and the joint validity rule.

Pure data and pure functions. Every writer of an order status goes through
``check_transition`` so no call site carries its own copy of these rules.
"""

from typing import Optional

from services.orders_service.models.enums import (
    FulfillmentStatus,
    OrderStatus,
    PaymentStatus,
    StatusField,
)

# ---------------------------------------------------------------------------
# Transition tables
# ---------------------------------------------------------------------------

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset(
        {
            PaymentStatus.PARTIALLY_REFUNDED,
            PaymentStatus.REFUNDED,
            PaymentStatus.DISPUTED,
        }
    ),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset(
        {PaymentStatus.REFUNDED, PaymentStatus.DISPUTED}
    ),
    PaymentStatus.DISPUTED: frozenset(
        {
            PaymentStatus.DISPUTE_WON,
            PaymentStatus.DISPUTE_LOST,
            PaymentStatus.REFUNDED,
        }
    ),
    # A closed dispute can be reopened by the card network
    PaymentStatus.DISPUTE_WON: frozenset({PaymentStatus.DISPUTED}),
    PaymentStatus.DISPUTE_LOST: frozenset({PaymentStatus.DISPUTED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

FULFILLMENT_TRANSITIONS: dict[FulfillmentStatus, frozenset[FulfillmentStatus]] = {
    FulfillmentStatus.UNFULFILLED: frozenset(
        {FulfillmentStatus.PARTIALLY_FULFILLED, FulfillmentStatus.FULFILLED}
    ),
    FulfillmentStatus.PARTIALLY_FULFILLED: frozenset({FulfillmentStatus.FULFILLED}),
    FulfillmentStatus.FULFILLED: frozenset(),
}

TRANSITIONS = {
    StatusField.STATUS: ORDER_TRANSITIONS,
    StatusField.PAYMENT_STATUS: PAYMENT_TRANSITIONS,
    StatusField.FULFILLMENT_STATUS: FULFILLMENT_TRANSITIONS,
}

STATUS_ENUMS = {
    StatusField.STATUS: OrderStatus,
    StatusField.PAYMENT_STATUS: PaymentStatus,
    StatusField.FULFILLMENT_STATUS: FulfillmentStatus,
}

UNSETTLED_PAYMENT = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})
ACTIVE_ORDER_STATES = frozenset(
    {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}
)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def coerce_status(field: StatusField, value):
    """Parse a raw string into the enum for ``field``. Raises ValueError."""
    enum_cls = STATUS_ENUMS[field]
    if isinstance(value, enum_cls):
        return value
    return enum_cls(value)


def is_legal_edge(field: StatusField, current, target) -> bool:
    return target in TRANSITIONS[field].get(current, frozenset())


def combination_error(
    status: OrderStatus,
    payment_status: PaymentStatus,
    fulfillment_status: FulfillmentStatus,
) -> Optional[str]:
    """Return why a status triple is not jointly valid, or None if it is."""
    if status in ACTIVE_ORDER_STATES and payment_status in UNSETTLED_PAYMENT:
        return f"order cannot be {status.value} while payment is {payment_status.value}"
    if (
        fulfillment_status != FulfillmentStatus.UNFULFILLED
        and payment_status in UNSETTLED_PAYMENT
    ):
        return (
            f"order cannot be {fulfillment_status.value} "
            f"while payment is {payment_status.value}"
        )
    if (
        status == OrderStatus.CANCELLED
        and fulfillment_status != FulfillmentStatus.UNFULFILLED
    ):
        return f"a {fulfillment_status.value} order cannot be cancelled"
    return None


def check_transition(
    field: StatusField,
    current: dict[StatusField, object],
    target,
) -> Optional[str]:
    """Validate moving ``field`` to ``target`` from the ``current`` triple.

    Returns None when the transition is allowed, otherwise a short reason.
    Same-state targets are never legal.
    """
    if not is_legal_edge(field, current[field], target):
        return "transition not allowed"

    resulting = dict(current)
    resulting[field] = target
    return combination_error(
        resulting[StatusField.STATUS],
        resulting[StatusField.PAYMENT_STATUS],
        resulting[StatusField.FULFILLMENT_STATUS],
    )
