"""Core data models for the threat analysis engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Category(str, Enum):
    """Closed set of threat categories."""

    RANSOMWARE = "ransomware"
    APT = "apt"
    VULNERABILITY = "vulnerability"
    PHISHING = "phishing"
    MALWARE = "malware"
    DATA_BREACH = "data_breach"
    DDOS = "ddos"
    SUPPLY_CHAIN = "supply_chain"
    INSIDER_THREAT = "insider_threat"
    CLOUD_SECURITY = "cloud_security"
    WEB_SECURITY = "web_security"
    ZERO_DAY = "zero_day"
    CRYPTOJACKING = "cryptojacking"
    IOT_SECURITY = "iot_security"
    DISINFORMATION = "disinformation"
    POLICY = "policy"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> Category:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class Severity(str, Enum):
    """Threat severity, highest first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @classmethod
    def coerce(cls, value: Any) -> Severity:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.INFO


class Strategy(str, Enum):
    """Which analysis path produced a result."""

    BASELINE = "baseline"
    TRIMODEL = "trimodel"


IOC_TYPES = (
    ("ips", "ip"),
    ("domains", "domain"),
    ("cves", "cve"),
    ("hashes", "hash"),
    ("urls", "url"),
    ("emails", "email"),
)


def _str_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


@dataclass
class Article:
    """A fetched article awaiting analysis. Owned by ingestion."""

    id: str
    title: str
    content: str
    source: str
    published_at: datetime
    url: str = ""


@dataclass
class IOCs:
    """Indicators of compromise grouped by type."""

    ips: list[str] = field(default_factory=list)
    domains: list[str] = field(default_factory=list)
    cves: list[str] = field(default_factory=list)
    hashes: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> IOCs:
        # Models sometimes answer with a flat list instead of the typed groups
        if not isinstance(data, dict):
            data = {}
        return cls(**{attr: _str_list(data.get(attr)) for attr, _ in IOC_TYPES})

    def flatten(self) -> list[tuple[str, str]]:
        """Return (ioc_type, value) pairs in a stable type order."""
        pairs = []
        for attr, ioc_type in IOC_TYPES:
            for value in getattr(self, attr):
                pairs.append((ioc_type, value))
        return pairs

    def counts(self) -> dict[str, int]:
        return {attr: len(getattr(self, attr)) for attr, _ in IOC_TYPES}


@dataclass(frozen=True)
class AnalysisResult:
    """Structured intel for one article. Never mutated after creation."""

    tldr: str
    category: Category
    severity: Severity
    key_points: list[str] = field(default_factory=list)
    affected_sectors: list[str] = field(default_factory=list)
    threat_actors: list[str] = field(default_factory=list)
    iocs: IOCs = field(default_factory=IOCs)
    model_strategy: Strategy | None = None

    @classmethod
    def from_dict(
        cls, data: dict | None, strategy: Strategy | None = None,
    ) -> AnalysisResult | None:
        """Build a result, or None when summary/category/severity is missing."""
        if not data:
            return None
        tldr, category, severity = (
            str(data.get(name) or "").strip() for name in ("tldr", "category", "severity")
        )
        if not tldr or not category or not severity:
            return None
        return cls(
            tldr=tldr,
            category=Category.coerce(category),
            severity=Severity.coerce(severity),
            key_points=_str_list(data.get("key_points"))[:5],
            affected_sectors=_str_list(data.get("affected_sectors")),
            threat_actors=_str_list(data.get("threat_actors")),
            iocs=IOCs.from_dict(data.get("iocs")),
            model_strategy=strategy,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tldr": self.tldr,
            "key_points": list(self.key_points),
            "category": self.category.value,
            "severity": self.severity.value,
            "affected_sectors": list(self.affected_sectors),
            "threat_actors": list(self.threat_actors),
            "iocs": asdict(self.iocs),
            "model_strategy": self.model_strategy.value if self.model_strategy else None,
        }


@dataclass
class UsageRecord:
    """One metered inference call."""

    date: str  # UTC YYYY-MM-DD
    model: str
    input_tokens: int
    output_tokens: int
    neurons: float


@dataclass
class UsageSummary:
    neurons_used: int
    neurons_remaining: int
    percent_used: int
    daily_limit: int
    status: str  # OK, WARNING, CRITICAL


@dataclass
class ModelUsage:
    model: str
    neurons: int
    calls: int
    avg_per_call: int


@dataclass
class QuotaUsage:
    """Archive usage for one calendar month."""

    month: str  # YYYY-MM
    storage_gb: float = 0.0
    class_a_ops: int = 0
    class_b_ops: int = 0
    articles_archived: int = 0
    last_updated: str = ""
    status: str = "healthy"  # healthy, warning, critical

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> QuotaUsage:
        return cls(
            month=data["month"],
            storage_gb=float(data.get("storage_gb", 0.0)),
            class_a_ops=int(data.get("class_a_ops", 0)),
            class_b_ops=int(data.get("class_b_ops", 0)),
            articles_archived=int(data.get("articles_archived", 0)),
            last_updated=data.get("last_updated", ""),
            status=data.get("status", "healthy"),
        )


@dataclass
class ArchivedArticle:
    """Durable snapshot of an article written to the blob store."""

    id: str
    title: str
    content: str
    url: str
    published_at: str
    source: str
    archived_at: str
    analysis: dict | None = None
    iocs: list[dict] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ArchivedArticle:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            url=data.get("url", ""),
            published_at=data.get("published_at", ""),
            source=data.get("source", ""),
            archived_at=data.get("archived_at", ""),
            analysis=data.get("analysis"),
            iocs=data.get("iocs") or [],
            metadata=data.get("metadata") or {},
        )


@dataclass
class ShadowComparison:
    """Baseline vs tri-model agreement for one article."""

    article_id: str
    category_match: bool
    severity_match: bool
    baseline_category: str
    trimodel_category: str
    baseline_severity: str
    trimodel_severity: str
    baseline_iocs: dict[str, int]
    trimodel_iocs: dict[str, int]
    baseline_key_points: int
    trimodel_key_points: int

    @classmethod
    def build(
        cls, article_id: str, baseline: AnalysisResult, trimodel: AnalysisResult,
    ) -> ShadowComparison:
        return cls(
            article_id=article_id,
            category_match=baseline.category == trimodel.category,
            severity_match=baseline.severity == trimodel.severity,
            baseline_category=baseline.category.value,
            trimodel_category=trimodel.category.value,
            baseline_severity=baseline.severity.value,
            trimodel_severity=trimodel.severity.value,
            baseline_iocs=baseline.iocs.counts(),
            trimodel_iocs=trimodel.iocs.counts(),
            baseline_key_points=len(baseline.key_points),
            trimodel_key_points=len(trimodel.key_points),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
