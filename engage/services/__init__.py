from engage.services import (
    dispatch_service,
    ledger_service,
    ranking_service,
)


__all__ = [
    "dispatch_service",
    "ledger_service",
    "ranking_service",
]
