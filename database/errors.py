"""Error types shared by the stores and the analytics engines."""


class InvalidArgumentError(ValueError):
    """Malformed or out-of-range input (window, coordinates, radius, price)."""


class NotFoundError(LookupError):
    """A referenced product, market or price observation does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")
