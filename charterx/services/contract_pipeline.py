"""
Contract pipeline

Entry points for the merge-and-consistency pipeline. Inputs are validated here,
before any external call. Two flavours:

- stateless one-shot operations on raw text (merge, analyze_risk, ...)
- session operations that work on a session's Document behind its revision
  counter: mutations are serialized by the session lock and committed only on
  success; analyses run on a snapshot and are rejected as stale if the document
  moved while they ran
"""

import logging
from typing import Optional, Tuple

from charterx.config.config import Config
from charterx.database.schemas import (
    ClauseCategory, ClauseExplanation, ComplianceReport, Document, MergeResult, RecommendationSet,
    RecommendedClause, RedlineReport, RiskReport, Section,
)
from charterx.database.session_store import ContractSession, MergeInputs
from charterx.services.clause_explainer import ClauseExplainer
from charterx.services.clause_recommender import ClauseRecommender
from charterx.services.compliance_checker import ComplianceChecker
from charterx.services.errors import StaleRevisionError, ValidationFailure
from charterx.services.export_service import EXPORT_FORMATS, ExportService, PageOptions, build_print_html
from charterx.services.llm_client import TextGenerator
from charterx.services.merger_service import MergeEngine, document_from_text
from charterx.services.redline_generator import RedlineGenerator
from charterx.services.risk_analyzer import RiskAnalyzer
from charterx.services.text_normalizer import TextNormalizer
from charterx.services.topic_classifier import KeywordTopicClassifier, TopicClassifier
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)


def validate_text(field: str, value: Optional[str], min_length: int = None) -> str:
    """Boundary check: text inputs must carry at least MIN_INPUT_LENGTH characters"""
    min_length = Config.MIN_INPUT_LENGTH if min_length is None else min_length
    if value is None or len(value.strip()) < min_length:
        raise ValidationFailure(f"{field} must be at least {min_length} characters", field=field)
    return value


def export_session(
    session: ContractSession, fmt: str, redline: bool = False, exporter: Optional[ExportService] = None
) -> Tuple[bytes, str]:
    """Render the current revision, or its redline, without any model call"""
    exporter = exporter or ExportService()
    document = session.require_document()
    if redline:
        if session.redline_report is None or session.redline_report.revision != document.revision:
            raise ValidationFailure("No redline for the current revision; generate it first", field="redline")
        html = session.redline_report.redlined_contract
    else:
        html = document.to_html()
    return exporter.render(build_print_html(html), fmt), EXPORT_FORMATS[fmt.lower()]


class ContractPipeline:
    """Wires the pipeline stages to one text generator"""

    def __init__(self, generator: TextGenerator, classifier: Optional[TopicClassifier] = None):
        self.generator = generator
        self.classifier = classifier or KeywordTopicClassifier()
        self.normalizer = TextNormalizer()
        self.merger = MergeEngine(generator, self.classifier, self.normalizer)
        self.risk_analyzer = RiskAnalyzer(generator)
        self.compliance_checker = ComplianceChecker(generator, self.classifier)
        self.recommender = ClauseRecommender(generator, self.classifier)
        self.redliner = RedlineGenerator(generator, self.normalizer)
        self.explainer = ClauseExplainer(generator)
        self.exporter = ExportService()

    def _document(self, text: str) -> Document:
        return document_from_text(text, self.classifier, self.normalizer)

    # ------------------------------------------------------------------
    # Stateless entry points
    # ------------------------------------------------------------------

    async def merge(
        self,
        fixture_recap: str,
        base_contract: str,
        negotiated_clauses: str,
        previous: Optional[Document] = None,
    ) -> MergeResult:
        validate_text("fixture_recap", fixture_recap)
        validate_text("base_contract", base_contract)
        validate_text("negotiated_clauses", negotiated_clauses)
        return await self.merger.merge(fixture_recap, base_contract, negotiated_clauses, previous)

    async def analyze_risk(self, document_text: str) -> RiskReport:
        validate_text("document_text", document_text)
        return await self.risk_analyzer.analyze(self._document(document_text))

    async def check_compliance(self, document_text: str, fixture_recap: str) -> ComplianceReport:
        validate_text("document_text", document_text)
        validate_text("fixture_recap", fixture_recap)
        return await self.compliance_checker.check(self._document(document_text), fixture_recap)

    async def recommend_clauses(self, fixture_recap: str, base_contract: str) -> RecommendationSet:
        validate_text("fixture_recap", fixture_recap)
        validate_text("base_contract", base_contract)
        return await self.recommender.recommend(fixture_recap, base_contract)

    async def generate_redline(self, base_contract: str, negotiated_clauses: str, current_document: str) -> RedlineReport:
        validate_text("base_contract", base_contract)
        validate_text("negotiated_clauses", negotiated_clauses)
        validate_text("current_document", current_document)
        return await self.redliner.generate(base_contract, negotiated_clauses, self._document(current_document))

    async def explain_clause(
        self, document_text: str, clause_text: str, clause_id: str, category: ClauseCategory
    ) -> ClauseExplanation:
        validate_text("document_text", document_text)
        validate_text("clause_text", clause_text)
        return await self.explainer.explain(document_text, clause_text, clause_id, category)

    def export(self, html: str, fmt: str, page_options: Optional[PageOptions] = None) -> bytes:
        return self.exporter.render(build_print_html(html), fmt, page_options)

    # ------------------------------------------------------------------
    # Session mutations (serialized, commit on success only)
    # ------------------------------------------------------------------

    async def merge_session(
        self,
        session: ContractSession,
        fixture_recap: str,
        base_contract: str,
        negotiated_clauses: str,
        expected_revision: Optional[int] = None,
    ) -> MergeResult:
        validate_text("fixture_recap", fixture_recap)
        validate_text("base_contract", base_contract)
        validate_text("negotiated_clauses", negotiated_clauses)

        async with session.lock:
            session.check_revision(expected_revision, "merge")
            # A failure or cancellation here leaves the committed revision untouched
            result = await self.merger.merge(fixture_recap, base_contract, negotiated_clauses, session.document)
            session.commit(result.document, result.warnings)
            session.inputs = MergeInputs(fixture_recap, base_contract, negotiated_clauses)
            session.recommendations = None

        logger.info(f"Session {session.session_id}: committed revision {session.revision}")
        return result

    async def accept_recommendation(
        self, session: ContractSession, clause_id: str, expected_revision: Optional[int] = None
    ) -> Tuple[Document, Section]:
        async with session.lock:
            session.check_revision(expected_revision, "accept_recommendation")
            if session.recommendations is None:
                raise ValidationFailure("No recommendations have been generated for this session", field="clause_id")

            document = session.snapshot()
            recommendations = session.recommendations.model_copy(deep=True)
            section = self.recommender.accept(document, recommendations, clause_id)
            document.revision += 1

            session.commit(document)
            session.recommendations = recommendations

        logger.info(f"Session {session.session_id}: accepted '{clause_id}', revision {session.revision}")
        return document, section

    async def reject_recommendation(self, session: ContractSession, clause_id: str) -> RecommendedClause:
        async with session.lock:
            if session.recommendations is None:
                raise ValidationFailure("No recommendations have been generated for this session", field="clause_id")
            return self.recommender.reject(session.recommendations, clause_id)

    # ------------------------------------------------------------------
    # Session analyses (snapshot, run unlocked, record only if still current)
    # ------------------------------------------------------------------

    async def _snapshot(self, session: ContractSession) -> Tuple[Document, MergeInputs]:
        async with session.lock:
            return session.snapshot(), session.inputs

    def _ensure_current(self, session: ContractSession, revision: int, operation: str):
        if session.revision != revision:
            logger.warning(f"Session {session.session_id}: {operation} computed against revision {revision}, "
                           f"document is now at {session.revision}")
            raise StaleRevisionError(revision, session.revision, operation)

    async def analyze_session_risk(self, session: ContractSession) -> RiskReport:
        document, _ = await self._snapshot(session)
        report = await self.risk_analyzer.analyze(document)
        async with session.lock:
            self._ensure_current(session, document.revision, "analyze_risk")
            session.risk_report = report
        return report

    async def check_session_compliance(self, session: ContractSession) -> ComplianceReport:
        document, inputs = await self._snapshot(session)
        report = await self.compliance_checker.check(document, inputs.fixture_recap)
        async with session.lock:
            self._ensure_current(session, document.revision, "check_compliance")
            session.compliance_report = report
        return report

    async def redline_session(self, session: ContractSession) -> RedlineReport:
        document, inputs = await self._snapshot(session)
        report = await self.redliner.generate(inputs.base_contract, inputs.negotiated_clauses, document)
        async with session.lock:
            self._ensure_current(session, document.revision, "generate_redline")
            session.redline_report = report
        return report

    async def recommend_session(self, session: ContractSession) -> RecommendationSet:
        document, inputs = await self._snapshot(session)
        recommendations = await self.recommender.recommend(inputs.fixture_recap, inputs.base_contract)
        async with session.lock:
            self._ensure_current(session, document.revision, "recommend_clauses")
            # Rejections are not carried over: a regenerated set starts fresh
            session.recommendations = recommendations
        return recommendations

    def export_session(self, session: ContractSession, fmt: str, redline: bool = False) -> Tuple[bytes, str]:
        return export_session(session, fmt, redline, self.exporter)
