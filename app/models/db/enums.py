"""Central Enum definitions for core domain states.

These replace scattered string literals (policy types, contract types, target
types) so criteria are parsed once at the boundary and compared as enums.
The ``parse`` helpers accept the legacy labels still present in older rows.
"""
from __future__ import annotations
import enum
import unicodedata
from typing import Optional


def _normalize(raw: object) -> str:
    if isinstance(raw, enum.Enum):
        raw = raw.value
    text = unicodedata.normalize("NFKD", str(raw)).encode("ascii", "ignore").decode("ascii")
    return text.strip().lower().replace("-", "_").replace(" ", "_")


class UserRole(str, enum.Enum):
    BROKER = "BROKER"
    ADMIN = "ADMIN"


class CampaignType(str, enum.Enum):
    QUANTITY = "quantity"
    VALUE = "value"

    @classmethod
    def parse(cls, raw: object) -> "CampaignType":
        key = _normalize(raw)
        aliases = {
            "quantity": cls.QUANTITY,
            "apolices": cls.QUANTITY,
            "policies": cls.QUANTITY,
            "value": cls.VALUE,
            "valor": cls.VALUE,
        }
        if key not in aliases:
            raise ValueError(f"Unknown campaign type '{raw}'")
        return aliases[key]


class TargetType(str, enum.Enum):
    QUANTITY = "quantity"
    VALUE = "value"

    @classmethod
    def parse(cls, raw: object) -> "TargetType":
        key = _normalize(raw)
        if key in ("quantity", "quantidade", "count"):
            return cls.QUANTITY
        if key in ("value", "valor"):
            return cls.VALUE
        raise ValueError(f"Unknown target type '{raw}'")


class AcceptanceStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class CampaignStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PolicyType(str, enum.Enum):
    AUTO = "auto"
    RESIDENTIAL = "residential"

    @classmethod
    def parse_filter(cls, raw: object) -> Optional["PolicyType"]:
        """Criterion-side parse: empty or 'geral' means no filter."""
        if raw is None or _normalize(raw) in ("", "geral", "any", "all"):
            return None
        return cls.parse(raw)

    @classmethod
    def parse(cls, raw: object) -> "PolicyType":
        key = _normalize(raw)
        aliases = {
            "auto": cls.AUTO,
            "seguro_auto": cls.AUTO,
            "residential": cls.RESIDENTIAL,
            "residencial": cls.RESIDENTIAL,
            "seguro_residencial": cls.RESIDENTIAL,
        }
        if key not in aliases:
            raise ValueError(f"Unknown policy type '{raw}'")
        return aliases[key]


class ContractType(str, enum.Enum):
    NEW = "new"
    RENEWAL = "renewal"

    @classmethod
    def parse_filter(cls, raw: object) -> Optional["ContractType"]:
        """Criterion-side parse: empty, 'both' or 'ambos' means no filter."""
        if raw is None or _normalize(raw) in ("", "both", "ambos", "any"):
            return None
        return cls.parse(raw)

    @classmethod
    def parse(cls, raw: object) -> "ContractType":
        key = _normalize(raw)
        aliases = {
            "new": cls.NEW,
            "novo": cls.NEW,
            "renewal": cls.RENEWAL,
            "renovacao": cls.RENEWAL,
            "renovacao_bradesco": cls.RENEWAL,
        }
        if key not in aliases:
            raise ValueError(f"Unknown contract type '{raw}'")
        return aliases[key]


class PolicyStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class RecalculationTrigger(str, enum.Enum):
    POLICY_CREATED = "policy_created"
    LINK_REMOVED = "link_removed"
    PERIODIC_SWEEP = "periodic_sweep"
    ADMIN_CORRECTION = "admin_correction"
    MANUAL = "manual"


__all__ = [
    "UserRole",
    "CampaignType",
    "TargetType",
    "AcceptanceStatus",
    "CampaignStatus",
    "PolicyType",
    "ContractType",
    "PolicyStatus",
    "RecalculationTrigger",
]
