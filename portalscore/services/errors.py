"""
Domain errors raised by the scoring services.
API handlers translate these into HTTP status codes.
"""
from typing import Optional


class ScoreWriteError(Exception):
    """The score UPDATE touched no rows (deal deleted between read and write)."""

    def __init__(self, recommendation_id: str):
        self.recommendation_id = recommendation_id
        super().__init__(f"Score write affected no rows for recommendation {recommendation_id}")


class NotFoundError(Exception):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class DealStateError(Exception):
    """Invalid archive/revive/snooze transition or invalid input for one."""

    def __init__(self, message: str, status: Optional[str] = None):
        self.status = status
        super().__init__(message)
