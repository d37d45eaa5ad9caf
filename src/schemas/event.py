from src.schemas.common import BaseSchema


class DispatchResponse(BaseSchema):
    processed: int
    delivered: int
    failed: int
