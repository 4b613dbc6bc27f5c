"""In-memory shapes for analytics records (snapshots, daily deltas, rollups)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


def _counts(data: Optional[dict]) -> dict[str, int]:
    data = data or {}
    return {"views": int(data.get("views") or 0), "clicks": int(data.get("clicks") or 0)}


@dataclass
class Activity:
    """Views/clicks overall plus a per-domain breakdown.

    `key` is the ISO date the record is stored under: the snapshot date, the
    day of a daily delta, or the first day of a week/month rollup.
    """
    key: str
    views: int = 0
    clicks: int = 0
    sites: dict[str, dict[str, int]] = field(default_factory=dict)
    captured_at_ms: Optional[int] = None

    @classmethod
    def from_row(cls, key: str, row, captured_at_ms: Optional[int] = None) -> "Activity":
        return cls(
            key=key,
            views=int(row.total_views or 0),
            clicks=int(row.total_clicks or 0),
            sites={domain: _counts(s) for domain, s in (row.sites or {}).items()},
            captured_at_ms=captured_at_ms,
        )

    def site(self, domain: str) -> dict[str, int]:
        return _counts(self.sites.get(domain))

    def counts(self, site: str = "all") -> dict[str, int]:
        """Totals, or one site's counts ("all" = every site)."""
        if site == "all":
            return {"views": self.views, "clicks": self.clicks}
        return self.site(site)

    def add(self, other: "Activity") -> None:
        """Accumulate `other` into this record (rollup sums)."""
        self.views += other.views
        self.clicks += other.clicks
        for domain, counts in other.sites.items():
            acc = self.sites.setdefault(domain, {"views": 0, "clicks": 0})
            acc["views"] += counts.get("views", 0)
            acc["clicks"] += counts.get("clicks", 0)

    def row_values(self) -> dict:
        return {
            "total_views": self.views,
            "total_clicks": self.clicks,
            "sites": {d: dict(self.sites[d]) for d in sorted(self.sites)},
        }

    def to_dict(self, key_name: str = "date") -> dict:
        data = {
            key_name: self.key,
            "total": {"views": self.views, "clicks": self.clicks},
            "sites": {d: dict(self.sites[d]) for d in sorted(self.sites)},
        }
        if self.captured_at_ms is not None:
            data["capturedAtMillis"] = self.captured_at_ms
        return data
