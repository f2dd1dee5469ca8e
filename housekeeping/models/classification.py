from enum import Enum


class Classification(str, Enum):
    """Closed set of outcomes a classifier can assign to a record."""

    TIER0 = "Tier0"
    TIER1 = "Tier1"
    TIER2 = "Tier2"
    STALE = "Stale"
    ORPHANED = "Orphaned"
    NON_COMPLIANT = "NonCompliant"
    EXCLUDED = "Excluded"
    UNCLASSIFIED = "Unclassified"

    @classmethod
    def parse(cls, value) -> "Classification":
        """Accept 'Tier1', 'tier1', 'TIER1' or 'non_compliant' style names."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().replace("-", "_").lower()
        for member in cls:
            if text in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown classification: {value!r}")

    def __str__(self) -> str:
        return self.value


TIERS = (Classification.TIER0, Classification.TIER1, Classification.TIER2)
