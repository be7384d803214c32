from __future__ import annotations


class UpstreamFetchError(Exception):
    """The wallet aggregator or price source could not be reached."""

    def __init__(self, message: str, *, source: str = "", wallet_address: str = ""):
        super().__init__(message)
        self.source = source
        self.wallet_address = wallet_address


class InvalidInputError(ValueError):
    pass


class PersistenceError(Exception):
    """
    A database write failed. Carries enough context to tell which
    (user, wallet) or (user, period) record was being written.
    """

    def __init__(
        self,
        message: str,
        *,
        user_id: int | None = None,
        wallet_address: str | None = None,
        period: str | None = None,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.wallet_address = wallet_address
        self.period = period

    def __str__(self) -> str:
        base = super().__str__()
        ctx = []
        if self.user_id is not None:
            ctx.append(f"user_id={self.user_id}")
        if self.wallet_address:
            ctx.append(f"wallet={self.wallet_address}")
        if self.period:
            ctx.append(f"period={self.period}")
        return f"{base} ({', '.join(ctx)})" if ctx else base
