"""Data types shared by the extraction and refresh pipeline."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class PriceCandidate:
    """A scored price found on a page. Never persisted."""

    cents: int
    score: float
    source: str


@dataclass
class ReconciledPrice:
    """Winning candidate after reconciliation."""

    price_cents: int
    source: str
    score: float


@dataclass
class PriceOutcome:
    """Price and stock status resolved for one page."""

    price_cents: Optional[int]
    in_stock: Optional[bool]
    source: Optional[str] = None


@dataclass
class Identity:
    """Set number and display name resolved from a page."""

    set_id: Optional[str] = None
    name: Optional[str] = None


class RefreshState(str, Enum):
    """Stages of a single refresh attempt."""

    FETCHING = "fetching"
    PARSING = "parsing"
    RECONCILING = "reconciling"
    REMAPPING = "remapping"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RefreshResult:
    """Outcome of refreshing one product at one retailer."""

    id: str
    ok: bool
    source_url: Optional[str]
    price_cents: Optional[int] = None
    in_stock: Optional[bool] = None
    error: Optional[str] = None
    state: RefreshState = RefreshState.DONE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        if self.error is None:
            data.pop("error")
        return data


@dataclass
class BatchRefreshResult:
    """Summary of a bulk refresh."""

    ok: bool
    total: int = 0
    refreshed: int = 0
    failed: int = 0
    results: list[RefreshResult] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "ok": self.ok,
            "total": self.total,
            "refreshed": self.refreshed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }
        if self.error is not None:
            data["error"] = self.error
        return data
