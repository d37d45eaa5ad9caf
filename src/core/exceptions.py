from fastapi import HTTPException, status


class RentalException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An error occurred",
    ):
        super().__init__(status_code=status_code, detail=detail)


class AuthenticationError(RentalException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class AuthorizationError(RentalException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFoundError(RentalException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(RentalException):
    def __init__(self, detail: str = "Resource conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ValidationError(RentalException):
    def __init__(self, detail: str = "Validation error"):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class InvalidWindowError(ValidationError):
    def __init__(self, detail: str = "Dropoff must be after pickup"):
        super().__init__(detail=detail)


class VehicleUnavailableError(ConflictError):
    def __init__(self, detail: str = "Vehicle is not available for the selected dates"):
        super().__init__(detail=detail)


class InvalidStateTransitionError(ConflictError):
    def __init__(self, current: str, target: str, detail: str | None = None):
        self.current = current
        self.target = target
        super().__init__(
            detail=detail or f"Cannot move booking from {current} to {target}"
        )


class ConcurrentModificationError(ConflictError):
    def __init__(self, detail: str = "Booking was modified concurrently, reload and retry"):
        super().__init__(detail=detail)


class PromotionNotApplicableError(ValidationError):
    def __init__(self, detail: str = "Promotion code is not applicable"):
        super().__init__(detail=detail)


class PaymentProviderError(RentalException):
    def __init__(self, detail: str = "Payment provider request failed"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
