"""
In-memory session state

One ContractSession owns one working Document behind a revision counter, plus the
reports computed against it. Nothing is persisted: evicting or deleting a session
destroys its document.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from charterx.config.config import Config
from charterx.database.schemas import (
    ComplianceReport, Document, MergeWarning, RecommendationSet, RedlineReport, RiskReport,
)
from charterx.services.errors import SessionNotFound, StaleRevisionError, ValidationFailure
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)


@dataclass
class MergeInputs:
    fixture_recap: str
    base_contract: str
    negotiated_clauses: str


@dataclass
class ContractSession:
    session_id: str
    created_at: float
    last_access: float
    document: Optional[Document] = None
    inputs: Optional[MergeInputs] = None
    warnings: List[MergeWarning] = field(default_factory=list)
    risk_report: Optional[RiskReport] = None
    compliance_report: Optional[ComplianceReport] = None
    redline_report: Optional[RedlineReport] = None
    recommendations: Optional[RecommendationSet] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def revision(self) -> int:
        return self.document.revision if self.document else 0

    def check_revision(self, expected: Optional[int], operation: str = "mutation"):
        """Raise StaleRevisionError when the caller's revision is no longer current"""
        if expected is not None and expected != self.revision:
            raise StaleRevisionError(expected, self.revision, operation)

    def require_document(self) -> Document:
        if self.document is None:
            raise ValidationFailure("Session has no document yet; merge first", field="session")
        return self.document

    def snapshot(self) -> Document:
        """Deep copy of the committed revision for read-only analysis"""
        return self.require_document().model_copy(deep=True)

    def commit(self, document: Document, warnings: Optional[List[MergeWarning]] = None):
        """Install a new revision and drop every report computed against the old one"""
        self.document = document
        if warnings is not None:
            self.warnings = list(warnings)
        self.invalidate_reports()

    def invalidate_reports(self):
        self.risk_report = None
        self.compliance_report = None
        self.redline_report = None

    def summary(self) -> Dict:
        revision = self.revision
        return {
            "session_id": self.session_id,
            "revision": revision,
            "has_document": self.document is not None,
            "section_count": len(self.document.sections) if self.document else 0,
            "warnings": len(self.warnings),
            "reports": {
                "risk": self.risk_report is not None and self.risk_report.revision == revision,
                "compliance": self.compliance_report is not None and self.compliance_report.revision == revision,
                "redline": self.redline_report is not None and self.redline_report.revision == revision,
                "recommendations": self.recommendations is not None,
            },
        }


class SessionStore:
    """Holds sessions keyed by id; idle sessions are evicted after ttl_seconds"""

    def __init__(self, ttl_seconds: int = Config.SESSION_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: Dict[str, ContractSession] = {}

    def create(self) -> ContractSession:
        self.evict_expired()
        now = self.clock()
        session = ContractSession(session_id=str(uuid.uuid4()), created_at=now, last_access=now)
        self._sessions[session.session_id] = session
        logger.info(f"Session created: {session.session_id} ({len(self._sessions)} active)")
        return session

    def get(self, session_id: str) -> ContractSession:
        self.evict_expired()
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        session.last_access = self.clock()
        return session

    def delete(self, session_id: str):
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFound(session_id)
        logger.info(f"Session deleted: {session_id}")

    def evict_expired(self) -> int:
        now = self.clock()
        expired = [
            sid for sid, s in self._sessions.items()
            if now - s.last_access > self.ttl_seconds and not s.lock.locked()
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"Evicted {len(expired)} idle session(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


session_store = SessionStore()


def get_store() -> SessionStore:
    return session_store
