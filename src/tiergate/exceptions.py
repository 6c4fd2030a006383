"""Custom exception classes for tiergate."""


class TiergateError(Exception):
    """Base exception for all tiergate failures."""


class ConfigurationError(TiergateError, ValueError):
    """Raised when configuration validation fails."""


class InvalidPlanError(ConfigurationError):
    """Raised when a plan definition is inconsistent."""

    def __init__(self, plan_id: str, detail: str) -> None:
        self.plan_id = plan_id
        self.detail = detail
        super().__init__(f"Invalid plan '{plan_id}': {detail}")


class PlanNotFoundError(TiergateError, LookupError):
    """Raised when a plan id is not present in the catalog."""

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        super().__init__(f"Plan not found: {plan_id}")


class CounterStoreError(TiergateError):
    """Base exception for counter store failures."""


class StoreNotConnectedError(CounterStoreError, RuntimeError):
    """Raised when a store is used before connect()."""

    def __init__(self, store: str) -> None:
        self.store = store
        super().__init__(f"{store} not connected. Call connect() first.")


class WebhookPayloadError(TiergateError, ValueError):
    """Raised when a webhook payload cannot be interpreted."""

    def __init__(self, event_type: str, detail: str) -> None:
        self.event_type = event_type
        self.detail = detail
        super().__init__(f"Malformed {event_type} payload: {detail}")


class RateFetchError(TiergateError):
    """Raised when an exchange rate provider returns no usable rate."""

    def __init__(self, provider: str, detail: str) -> None:
        self.provider = provider
        self.detail = detail
        super().__init__(f"Exchange rate fetch from {provider} failed: {detail}")
