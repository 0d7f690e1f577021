from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict
from enum import Enum
from datetime import datetime
from html import escape
import uuid


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire (sectionId, clauseId, ...)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# ENUMS
# ============================================================================

class Category(str, Enum):
    COMMERCIAL = "commercial"
    LEGAL = "legal"
    OPERATIONAL = "operational"


class Provenance(str, Enum):
    BASE = "base"
    RECAP = "recap"
    NEGOTIATED = "negotiated"
    RECOMMENDED = "recommended"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ComplianceStatus(str, Enum):
    PRESENT = "present"
    MISSING = "missing"
    INCOMPLETE = "incomplete"
    CONFLICTING = "conflicting"


class Impact(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ClauseCategory(str, Enum):
    COMMERCIAL = "commercial"
    LEGAL = "legal"
    OPERATIONAL = "operational"
    INSURANCE = "insurance"
    ARBITRATION = "arbitration"
    FORCE_MAJEURE = "force_majeure"


class ClauseStatus(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


# ============================================================================
# DOCUMENT
# ============================================================================

class Section(CamelModel):
    section_id: str
    number: Optional[str] = None
    heading: str
    category: Category = Category.COMMERCIAL
    body: List[str] = []
    provenance: Provenance = Provenance.BASE
    raw_source: str = ""
    # Heading as parsed, before placeholder filling and defined-term rewrites
    source_heading: Optional[str] = None

    @property
    def match_heading(self) -> str:
        return self.source_heading if self.source_heading is not None else self.heading

    @property
    def title(self) -> str:
        return f"{self.number}. {self.heading}" if self.number else self.heading

    @property
    def text(self) -> str:
        return "\n\n".join(self.body)

    def to_html(self) -> str:
        paragraphs = "".join(f"<p>{escape(p)}</p>" for p in self.body)
        return (
            f'<section id="{self.section_id}" data-provenance="{self.provenance.value}" '
            f'data-category="{self.category.value}"><h2>{escape(self.title)}</h2>{paragraphs}</section>'
        )


class Document(CamelModel):
    """The working contract. Mutated only by a merge or an accepted recommendation."""
    document_id: str = Field(default_factory=lambda: f"doc_{uuid.uuid4().hex[:12]}")
    title: str = "Charter Party Contract"
    revision: int = 0
    sections: List[Section] = []
    next_section_seq: int = 1

    def section_ids(self) -> List[str]:
        return [s.section_id for s in self.sections]

    def get_section(self, section_id: str) -> Optional[Section]:
        for section in self.sections:
            if section.section_id == section_id:
                return section
        return None

    def find_by_number(self, number: str) -> Optional[Section]:
        for section in self.sections:
            if section.number == number:
                return section
        return None

    def allocate_section_id(self) -> str:
        section_id = f"sec-{self.next_section_seq:03d}"
        self.next_section_seq += 1
        return section_id

    def max_number(self) -> int:
        numbers = [int(s.number) for s in self.sections if s.number and s.number.isdigit()]
        return max(numbers) if numbers else 0

    def is_empty(self) -> bool:
        """True when no section carries any body text"""
        return not any(s.text.strip() for s in self.sections)

    def to_html(self) -> str:
        sections = "".join(s.to_html() for s in self.sections)
        return f'<article class="charter-party-contract"><h1>{escape(self.title)}</h1>{sections}</article>'

    def to_text(self) -> str:
        blocks = [self.title]
        for section in self.sections:
            blocks.append(section.title if not section.text else f"{section.title}\n{section.text}")
        return "\n\n".join(blocks)

    def labelled_text(self) -> str:
        """Section-labelled rendering used in prompts so findings can cite section ids"""
        return "\n\n".join(
            f"[{s.section_id}] {s.title}\n{s.text}".rstrip() for s in self.sections
        )


class MergeWarning(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    section_id: Optional[str] = None
    description: str
    resolution: str
    revision: int = 0


class MergeResult(CamelModel):
    document: Document
    warnings: List[MergeWarning] = []


# ============================================================================
# RECAP FACTS
# ============================================================================

class RecapFacts(CamelModel):
    vessel: Optional[str] = None
    charterer: Optional[str] = None
    owner: Optional[str] = None
    laycan: Optional[str] = None
    load_port: Optional[str] = None
    discharge_port: Optional[str] = None
    freight_rate: Optional[str] = None
    cargo: Optional[str] = None
    quantity: Optional[str] = None
    demurrage_rate: Optional[str] = None

    def filled(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v}


# ============================================================================
# RISK
# ============================================================================

class Finding(CamelModel):
    section_id: str
    severity: Severity
    note: str
    suggestion: str = ""


class RiskReport(CamelModel):
    document_id: str
    revision: int
    risks: List[Finding] = []
    consistency_findings: List[str] = []
    generated_at: str = Field(default_factory=lambda: datetime.now().isoformat())


# ============================================================================
# COMPLIANCE
# ============================================================================

class ComplianceItem(CamelModel):
    item_id: str
    category: Category
    requirement: str
    status: ComplianceStatus
    impact: Impact
    suggestion: str = ""
    description: str = ""
    location: Optional[str] = None
    mandatory: bool = True


class ComplianceScores(CamelModel):
    overall: float
    commercial: float
    legal: float
    operational: float


class ComplianceReport(CamelModel):
    revision: Optional[int] = None
    compliance_items: List[ComplianceItem]
    scores: ComplianceScores
    summary: str = ""
    critical_issues: List[ComplianceItem] = []
    recommendations: List[str] = []


# ============================================================================
# RECOMMENDATIONS
# ============================================================================

class RecommendedClause(CamelModel):
    clause_id: str
    category: ClauseCategory
    title: str
    description: str = ""
    clause_text: str
    priority: Severity
    reasoning: str = ""
    status: ClauseStatus = ClauseStatus.PROPOSED


class RecommendationSet(CamelModel):
    recommended_clauses: List[RecommendedClause] = []
    summary: str = ""
    coverage_score: float = 0.0

    def visible(self) -> List[RecommendedClause]:
        return [c for c in self.recommended_clauses if c.status != ClauseStatus.REJECTED]

    def get(self, clause_id: str) -> Optional[RecommendedClause]:
        for clause in self.recommended_clauses:
            if clause.clause_id == clause_id:
                return clause
        return None


# ============================================================================
# REDLINE
# ============================================================================

class RedlineChange(CamelModel):
    change_id: str
    type: ChangeType
    section_id: str
    section: str
    original_text: Optional[str] = None
    new_text: Optional[str] = None
    description: str = ""
    impact: Severity = Severity.LOW


class ChangeStats(CamelModel):
    added: int = 0
    removed: int = 0
    modified: int = 0
    total: int = 0

    @classmethod
    def from_changes(cls, changes: List[RedlineChange]) -> "ChangeStats":
        added = sum(1 for c in changes if c.type == ChangeType.ADDED)
        removed = sum(1 for c in changes if c.type == ChangeType.REMOVED)
        modified = sum(1 for c in changes if c.type == ChangeType.MODIFIED)
        return cls(added=added, removed=removed, modified=modified, total=added + removed + modified)


class RedlineReport(CamelModel):
    revision: Optional[int] = None
    redlined_contract: str
    changes: List[RedlineChange] = []
    summary: str = ""
    change_stats: ChangeStats


# ============================================================================
# CLAUSE EXPLANATION
# ============================================================================

class ClauseExplanation(CamelModel):
    explanation: str
    risk_level: Severity
    benefits: List[str] = []
    risks: List[str] = []
    recommendations: List[str] = []
    legal_implications: str = ""


# ============================================================================
# TEXT GENERATION OUTPUT SCHEMAS
# ============================================================================

class RiskAnalysisOutput(CamelModel):
    risks: List[Finding] = []
    consistency_findings: List[str] = []


class ComplianceAssessment(CamelModel):
    item_id: str
    status: ComplianceStatus
    impact: Optional[Impact] = None
    suggestion: str = ""
    description: str = ""
    location: Optional[str] = None


class ComplianceOutput(CamelModel):
    assessments: List[ComplianceAssessment] = []
    summary: str = ""
    recommendations: List[str] = []


class RecommendedClauseDraft(CamelModel):
    clause_id: Optional[str] = None
    category: ClauseCategory
    title: str
    description: str = ""
    clause_text: str
    priority: Severity = Severity.MEDIUM
    reasoning: str = ""


class RecommendationOutput(CamelModel):
    recommended_clauses: List[RecommendedClauseDraft] = []
    summary: str = ""


class ChangeAssessment(CamelModel):
    change_id: str
    impact: Severity
    description: str = ""


class RedlineOutput(CamelModel):
    assessments: List[ChangeAssessment] = []
    summary: str = ""
