"""Field converters shared by the response schemas."""
from marketplace.services.order_status import to_api


def api_status(value):
    """Stored ``pickup-confirmed`` is served as ``PICKUP_CONFIRMED``."""
    return to_api(value)
