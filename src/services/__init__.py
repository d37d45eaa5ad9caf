from src.services import (
    availability,
    events,
    lifecycle,
    payment,
    pricing,
    promotion,
    reservation,
    vehicle,
)

__all__ = [
    "availability",
    "events",
    "lifecycle",
    "payment",
    "pricing",
    "promotion",
    "reservation",
    "vehicle",
]
