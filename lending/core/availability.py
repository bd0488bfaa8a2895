# lending/core/availability.py
import logging

from lending.models.item import Item
from lending.models.enums import ItemStatus, RequestType
from lending.core.exceptions import ValidationError, InsufficientQuantityError

logger = logging.getLogger(__name__)


def derive_item_status(available_amount: int, has_reservation_queue: bool = False) -> ItemStatus:
    """available if any unit is free, otherwise reserved/borrowed depending on the queue."""
    if available_amount > 0:
        return ItemStatus.AVAILABLE
    return ItemStatus.RESERVED if has_reservation_queue else ItemStatus.BORROWED


def validate_requested_amount(item: Item, request_type: RequestType, requested_amount: int) -> None:
    """
    Submission-time check. Borrow requests are bounded by the units free right now,
    reserve requests by the total units the item has.
    """
    if requested_amount is None or requested_amount < 1:
        raise ValidationError("Requested amount must be at least 1.")
    if request_type == RequestType.BORROW and requested_amount > item.available_amount:
        logger.info(f"Borrow of {requested_amount} units refused for item {item.id}: only {item.available_amount} available.")
        raise ValidationError(
            f"Invalid amount. Please enter a value between 1 and {item.available_amount}."
        )
    if request_type == RequestType.RESERVE and requested_amount > item.amount:
        raise ValidationError(f"Invalid amount. Please enter a value between 1 and {item.amount}.")


def checkout_units(item: Item, quantity: int, borrower_id: str, has_reservation_queue: bool = False) -> Item:
    """
    Returns a copy of `item` with `quantity` units taken out.
    Raises InsufficientQuantityError instead of clamping.
    """
    if quantity > item.available_amount:
        raise InsufficientQuantityError(
            f"Only {item.available_amount} unit(s) of '{item.name}' available, {quantity} requested."
        )
    remaining = item.available_amount - quantity
    updated = item.model_copy(update={
        "available_amount": remaining,
        "status": derive_item_status(remaining, has_reservation_queue),
    })
    # Hanya di-set saat stok habis (semantik lama, lihat DESIGN.md)
    if remaining == 0:
        updated.current_borrower_id = borrower_id
    return updated


def return_units(item: Item, quantity: int, has_reservation_queue: bool = False) -> Item:
    """Returns a copy of `item` with `quantity` units back in stock, capped at `amount`."""
    restored = min(item.available_amount + quantity, item.amount)
    if item.available_amount + quantity > item.amount:
        logger.warning(
            f"Return of {quantity} units for item {item.id} would exceed total {item.amount}; capping."
        )
    updated = item.model_copy(update={
        "available_amount": restored,
        "status": derive_item_status(restored, has_reservation_queue),
    })
    if restored > 0:
        updated.current_borrower_id = None
    return updated


def resize_item(item: Item, new_amount: int, has_reservation_queue: bool = False) -> Item:
    """Changes the total units; units already out on loan stay out."""
    on_loan = item.amount - item.available_amount
    if new_amount < on_loan:
        raise ValidationError(
            f"Amount cannot be lower than the {on_loan} unit(s) currently borrowed."
        )
    available = new_amount - on_loan
    updated = item.model_copy(update={
        "amount": new_amount,
        "available_amount": available,
        "status": derive_item_status(available, has_reservation_queue),
    })
    if available > 0:
        updated.current_borrower_id = None
    return updated
