"""
Typed Exception Hierarchy for the Harvest Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock ledgers must fail precisely. The request layer that sits in front of
this kernel translates failures into protocol responses, and it must be able
to do so without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        shipments.create_shipment(order_id, requests, actor_id)
    except Exception as e:
        if "not enough" in str(e):  # FRAGILE - message might change
            respond_conflict()

Example - RIGHT way (what this module enables):
    try:
        shipments.create_shipment(order_id, requests, actor_id)
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from HarvestKernelError:

    HarvestKernelError (base)
    |
    +-- RequestError
    |   +-- InvalidRequestError
    |   +-- InvalidReferenceError
    |
    +-- NotFoundError
    |
    +-- StateError
    |   +-- InvalidStateError
    |   +-- ImmutableActivityError
    |   +-- IncompleteClassificationError
    |   +-- InvalidClassificationError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- OverReceiptError
    |
    +-- MatchError
    |   +-- VarietyMismatchError
    |   +-- CaliberMismatchError
    |
    +-- ConflictError
    |   +-- DuplicateLotCodeError
    |   +-- DuplicateInputNameError
    |   +-- InputReferencedError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |   +-- DerivedFieldError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Request         | INVALID_REQUEST             | Empty list, non-positive quantity
                | INVALID_REFERENCE           | Child id not part of the given parent
----------------|-----------------------------|-----------------------------------------
Lookup          | NOT_FOUND                   | Referenced entity does not exist
----------------|-----------------------------|-----------------------------------------
State           | INVALID_STATE               | Status forbids the operation
                | IMMUTABLE_ACTIVITY          | Usage lines edited on non-PENDING activity
                | INCOMPLETE_CLASSIFICATION   | Lot shipped before classification
                | INVALID_CLASSIFICATION      | Net weight exceeds gross weight
----------------|-----------------------------|-----------------------------------------
Stock           | INSUFFICIENT_STOCK          | Input, lot or line demand overdrawn
                | OVER_RECEIPT                | Receipt exceeds remaining ordered qty
----------------|-----------------------------|-----------------------------------------
Match           | VARIETY_MISMATCH            | Lot variety differs from demand line
                | CALIBER_MISMATCH            | Lot caliber differs from demand line
----------------|-----------------------------|-----------------------------------------
Conflict        | DUPLICATE_LOT_CODE          | Lot code already in use
                | DUPLICATE_INPUT_NAME        | Input name already in use
                | INPUT_REFERENCED            | Input still used by activities
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only record
                | DERIVED_FIELD               | Writing a ledger-derived column
----------------|-----------------------------|-----------------------------------------
Config          | CONFIGURATION_ERROR         | Missing or malformed configuration set

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group. Inheriting from
   built-in types mixes domain errors with programming errors.

2. WHY code CLASS ATTRIBUTE (not instance)?
   Codes are static per exception type, so InsufficientStockError.code is
   available without instantiation.

3. WHY NO RETRY HINTS?
   Every error here is non-retryable by the kernel. The caller decides
   whether to surface or retry.

===============================================================================
"""

from decimal import Decimal


class HarvestKernelError(Exception):
    """
    Base exception for all harvest kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "HARVEST_KERNEL_ERROR"


# Request-shape exceptions


class RequestError(HarvestKernelError):
    """Base exception for malformed business requests."""

    code: str = "REQUEST_ERROR"


class InvalidRequestError(RequestError):
    """Request rejected before touching storage."""

    code: str = "INVALID_REQUEST"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid request: {reason}")


class InvalidReferenceError(RequestError):
    """A referenced id does not belong to the expected parent."""

    code: str = "INVALID_REFERENCE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        parent_type: str,
        parent_id: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.parent_type = parent_type
        self.parent_id = parent_id
        super().__init__(
            f"{entity_type} {entity_id} does not belong to {parent_type} {parent_id}"
        )


# Lookup exceptions


class NotFoundError(HarvestKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# State-machine exceptions


class StateError(HarvestKernelError):
    """Base exception for status-related errors."""

    code: str = "STATE_ERROR"


class InvalidStateError(StateError):
    """The entity's current status forbids the operation."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        operation: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id} "
            f"in status '{current_status}'"
        )


class ImmutableActivityError(StateError):
    """Usage lines of a non-PENDING activity cannot change."""

    code: str = "IMMUTABLE_ACTIVITY"

    def __init__(self, activity_id: str, status: str):
        self.activity_id = activity_id
        self.status = status
        super().__init__(
            f"Input usage of activity {activity_id} is immutable in status '{status}'"
        )


class IncompleteClassificationError(StateError):
    """Lot lacks variety, caliber or net weight."""

    code: str = "INCOMPLETE_CLASSIFICATION"

    def __init__(self, lot_id: str, missing_fields: list[str]):
        self.lot_id = lot_id
        self.missing_fields = missing_fields
        super().__init__(
            f"Harvest lot {lot_id} is not fully classified "
            f"(missing: {', '.join(missing_fields)})"
        )


class InvalidClassificationError(StateError):
    """Classification values are inconsistent with the lot."""

    code: str = "INVALID_CLASSIFICATION"

    def __init__(self, lot_id: str, reason: str):
        self.lot_id = lot_id
        self.reason = reason
        super().__init__(f"Invalid classification for harvest lot {lot_id}: {reason}")


# Stock exceptions


class StockError(HarvestKernelError):
    """Base exception for quantity-availability errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested quantity exceeds what is available."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        available: Decimal,
        requested: Decimal,
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock on {resource_type} {resource_id}: "
            f"available={available}, requested={requested}"
        )


class OverReceiptError(StockError):
    """Goods receipt exceeds the quantity still open on the purchase line."""

    code: str = "OVER_RECEIPT"

    def __init__(self, purchase_order_detail_id: str, remaining: Decimal, received: Decimal):
        self.purchase_order_detail_id = purchase_order_detail_id
        self.remaining = remaining
        self.received = received
        super().__init__(
            f"Purchase order line {purchase_order_detail_id}: "
            f"receiving {received} exceeds remaining {remaining}"
        )


# Lot/demand matching exceptions


class MatchError(HarvestKernelError):
    """Base exception for lot-to-demand compatibility errors."""

    code: str = "MATCH_ERROR"


class VarietyMismatchError(MatchError):
    """Lot variety differs from the demand line variety."""

    code: str = "VARIETY_MISMATCH"

    def __init__(self, lot_id: str, lot_variety: str, line_variety: str):
        self.lot_id = lot_id
        self.lot_variety = lot_variety
        self.line_variety = line_variety
        super().__init__(
            f"Harvest lot {lot_id} variety '{lot_variety}' does not match "
            f"order line variety '{line_variety}'"
        )


class CaliberMismatchError(MatchError):
    """Lot caliber differs from the demand line caliber."""

    code: str = "CALIBER_MISMATCH"

    def __init__(self, lot_id: str, lot_caliber: str, line_caliber: str):
        self.lot_id = lot_id
        self.lot_caliber = lot_caliber
        self.line_caliber = line_caliber
        super().__init__(
            f"Harvest lot {lot_id} caliber '{lot_caliber}' does not match "
            f"order line caliber '{line_caliber}'"
        )


# Conflict exceptions


class ConflictError(HarvestKernelError):
    """Base exception for uniqueness and reference conflicts."""

    code: str = "CONFLICT"


class DuplicateLotCodeError(ConflictError):
    """Lot code already used by another lot."""

    code: str = "DUPLICATE_LOT_CODE"

    def __init__(self, lot_code: str):
        self.lot_code = lot_code
        super().__init__(f"Harvest lot code already exists: {lot_code}")


class DuplicateInputNameError(ConflictError):
    """Consumable input name already used by another input."""

    code: str = "DUPLICATE_INPUT_NAME"

    def __init__(self, input_name: str):
        self.input_name = input_name
        super().__init__(f"Consumable input already exists: {input_name}")


class InputReferencedError(ConflictError):
    """Consumable input cannot be removed while usage lines reference it."""

    code: str = "INPUT_REFERENCED"

    def __init__(self, input_id: str, usage_count: int):
        self.input_id = input_id
        self.usage_count = usage_count
        super().__init__(
            f"Consumable input {input_id} is referenced by {usage_count} usage line(s)"
        )


# Immutability exceptions


class ImmutabilityError(HarvestKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class DerivedFieldError(ImmutabilityError):
    """Attempted to write a column only the ledgers may maintain."""

    code: str = "DERIVED_FIELD"

    def __init__(self, entity_type: str, entity_id: str, field: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.field = field
        super().__init__(
            f"{entity_type}.{field} is derived and cannot be written directly "
            f"(id={entity_id})"
        )


# Configuration exceptions


class ConfigurationError(HarvestKernelError):
    """Configuration set is missing or malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")
