"""Infrastructure-level failures.

Security outcomes (bad credentials, lockouts, expired challenges) are never
raised; they travel as result values. Only failures of the backing stores
surface as exceptions.
"""


class StoreUnavailableError(Exception):
    """A persistent store could not be reached or failed mid-operation."""

    def __init__(self, store: str, message: str = "Store unavailable"):
        self.store = store
        super().__init__(f"{message} ({store})")


class AccountNotFoundError(LookupError):
    """An operation addressed an account id that does not exist."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class SecondFactorAlreadyEnabledError(Exception):
    """TOTP enrolment was requested for an account that already uses it."""
