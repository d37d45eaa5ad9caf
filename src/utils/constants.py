from enum import Enum


class UserRole(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"


class VehicleType(str, Enum):
    BIKE = "bike"
    CAR = "car"
    BICYCLE = "bicycle"
    BUS = "bus"
    TRUCK = "truck"


class FuelPolicy(str, Enum):
    FULL_TO_FULL = "full-to-full"
    PAY_PER_KM = "pay-per-km"
    PREPAID = "prepaid"


class BookingMode(str, Enum):
    SELF_DRIVE = "self-drive"
    WITH_DRIVER = "with-driver"


class ReservationStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CHECKED_OUT = "checked_out"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    DRIVER_UNAVAILABLE = "driver_unavailable"
    REFUNDED = "refunded"


# Statuses that hold the vehicle's calendar
ACTIVE_RESERVATION_STATUSES = frozenset(
    {
        ReservationStatus.PENDING_PAYMENT,
        ReservationStatus.CONFIRMED,
        ReservationStatus.CHECKED_OUT,
        ReservationStatus.IN_PROGRESS,
    }
)


class CancelledBy(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"
    SYSTEM = "system"


class DepositRefundStatus(str, Enum):
    PENDING = "pending"
    INITIATED = "initiated"
    COMPLETED = "completed"
    REJECTED = "rejected"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class PaymentStatus(str, Enum):
    INITIATED = "initiated"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    DEAD_LETTER = "dead_letter"


class EventType(str, Enum):
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_CONFIRMED = "reservation_confirmed"
    RESERVATION_STATUS_CHANGED = "reservation_status_changed"
    RESERVATION_CANCELLED = "reservation_cancelled"
    RESERVATION_COMPLETED = "reservation_completed"
    RESERVATION_EXPIRED = "reservation_expired"
    PAYMENT_FAILED = "payment_failed"
    REFUND_INITIATED = "refund_initiated"
    REFUND_COMPLETED = "refund_completed"
