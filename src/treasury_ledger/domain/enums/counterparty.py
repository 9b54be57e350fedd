from enum import Enum


class CounterpartyType(str, Enum):
    """Classification stored in the counterparties table."""

    FT_TOKEN = "ft_token"
    STAKING_POOL = "staking_pool"
    DAO = "dao"
    PERSONAL = "personal"
    SYSTEM = "system"
    UNKNOWN = "unknown"
    OTHER = "other"


class ReservedCounterparty(str, Enum):
    """Counterparty values that are not real accounts."""

    SNAPSHOT = "SNAPSHOT"
    UNKNOWN = "UNKNOWN"
    SYSTEM = "system"
    NOT_REGISTERED = "NOT_REGISTERED"
