"""Failure taxonomy. None of these ever reach the host page."""


class CartSaverError(Exception):
    pass


class ConfigUnavailable(CartSaverError):
    """Configuration could not be fetched or parsed; all triggers stay off."""


class CouponUnavailable(CartSaverError):
    """No discount code; the nudge is shown without the coupon block."""


class StorageUnavailable(CartSaverError):
    """Browser-style storage is disabled or unreadable."""


class EventDeliveryFailure(CartSaverError):
    """A funnel event could not be delivered. Dropped on purpose."""
