"""
Topic classification for charter party text

Maps free text (a heading, a clause, a recap line) to maritime contract topics
and to one of the three section categories. The merge engine, compliance
checker and recommender all go through the TopicClassifier interface so the
heuristic can be replaced without touching them.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Set, Tuple

from charterx.database.schemas import Category


class TopicClassifier(Protocol):
    def classify(self, text: str) -> Category:
        ...

    def topics(self, text: str) -> Set[str]:
        ...

    def primary_topic(self, text: str) -> Optional[str]:
        ...

    def label(self, topic: str) -> str:
        ...


@dataclass(frozen=True)
class Topic:
    key: str
    label: str
    category: Category
    patterns: Tuple[str, ...]


TOPICS: List[Topic] = [
    # Commercial
    Topic("vessel", "Vessel Identification", Category.COMMERCIAL,
          (r"\bvessel\b", r"\bship\b", r"\bm\.?/?v\b", r"\bimo (?:no|number)\b", r"\bdwt\b", r"\bflag\b")),
    Topic("cargo", "Cargo", Category.COMMERCIAL,
          (r"\bcargo(?:es)?\b", r"\bcommodity\b", r"\bquantity\b", r"\bmetric tons?\b", r"\btonnes\b")),
    Topic("ports", "Loading and Discharge Ports", Category.COMMERCIAL,
          (r"\bload(?:ing)? ports?\b", r"\bdischarg(?:e|ing) ports?\b", r"\bports? of (?:loading|discharge)\b",
           r"\bports\b", r"\bberths?\b", r"\bvoyage\b")),
    Topic("laycan", "Laycan", Category.COMMERCIAL,
          (r"\blaycan\b", r"\blay/can\b", r"\blaydays\b", r"\bcancelling date\b")),
    Topic("freight", "Freight and Payment", Category.COMMERCIAL,
          (r"\bfreight\b", r"\bpayment\b", r"\bpayable\b", r"\binvoice\b", r"\bhire\b")),
    Topic("demurrage", "Demurrage and Despatch", Category.COMMERCIAL,
          (r"\bdemurrage\b", r"\bdespatch\b", r"\bdispatch money\b")),
    Topic("laytime", "Laytime", Category.COMMERCIAL,
          (r"\blaytime\b", r"\blay time\b", r"\bshinc\b", r"\bshex\b", r"\bweather working\b")),
    # Legal
    Topic("governing_law", "Governing Law and Jurisdiction", Category.LEGAL,
          (r"\bgoverning law\b", r"\bgoverned by\b", r"\b(?:english|singapore|new york|us|u\.s\.) law\b",
           r"\bjurisdiction\b", r"\bapplicable law\b")),
    Topic("arbitration", "Arbitration", Category.LEGAL,
          (r"\barbitrat(?:ion|or|ors)\b", r"\blmaa\b", r"\bsmac?\b", r"\bdisputes?\b", r"\btribunal\b")),
    Topic("force_majeure", "Force Majeure", Category.LEGAL,
          (r"\bforce majeure\b", r"\bact of god\b", r"\bbeyond (?:the|their) (?:reasonable )?control\b")),
    Topic("liability", "Liability and Indemnity", Category.LEGAL,
          (r"\bliabilit(?:y|ies)\b", r"\bliable\b", r"\bindemni(?:ty|fy|fies)\b", r"\bhague(?:-visby)?\b")),
    Topic("insurance", "Insurance", Category.LEGAL,
          (r"\binsurance\b", r"\binsured\b", r"\bp&i\b", r"\bp and i\b", r"\bhull and machinery\b",
           r"\bunderwriters?\b")),
    Topic("termination", "Termination and Cancellation", Category.LEGAL,
          (r"\bterminat(?:e|ion)\b", r"\bcancellation\b", r"\bcancel\b", r"\bwithdraw(?:al)?\b")),
    Topic("sanctions", "Sanctions", Category.LEGAL,
          (r"\bsanctions?\b", r"\bsanctioned\b")),
    Topic("war_risks", "War Risks", Category.LEGAL,
          (r"\bwar risks?\b", r"\bpiracy\b", r"\bhostilities\b")),
    # Operational
    Topic("nor", "Notice of Readiness", Category.OPERATIONAL,
          (r"\bnotice of readiness\b", r"(?-i:\bNOR\b)", r"\bwipon\b", r"\bwibon\b", r"\bwifpon\b",
           r"\bwccon\b")),
    Topic("bunkering", "Bunkering", Category.OPERATIONAL,
          (r"\bbunker(?:s|ing)?\b", r"\bfuel\b")),
    Topic("deviation", "Deviation", Category.OPERATIONAL,
          (r"\bdeviat(?:e|ion)\b", r"\broute\b", r"\brouteing\b", r"\brouting\b")),
    Topic("sublet", "Sub-chartering", Category.OPERATIONAL,
          (r"\bsub-?let(?:ting)?\b", r"\bsub-?charter(?:ing)?\b", r"\bassign(?:ment)?\b")),
    Topic("agency", "Agency and Port Operations", Category.OPERATIONAL,
          (r"\bagen(?:t|ts|cy)\b", r"\bport operations?\b", r"\bstevedor(?:e|es|ing)\b")),
    Topic("documentation", "Documentation", Category.OPERATIONAL,
          (r"\bbills? of lading\b", r"\bdocument(?:s|ation)\b", r"\bcertificates?\b", r"\bmate'?s receipt\b")),
    Topic("environment_safety", "Environmental and Safety Standards", Category.OPERATIONAL,
          (r"\benvironment(?:al)?\b", r"\bpollution\b", r"\bsafety\b", r"\bmarpol\b", r"\bisps?\b", r"\bism\b",
           r"\bdangerous\b", r"\bhazardous\b", r"\bimdg\b")),
    Topic("ice", "Ice", Category.OPERATIONAL,
          (r"\bice\b", r"\bice-?bound\b")),
]


class KeywordTopicClassifier:
    """Deterministic keyword-table classifier"""

    def __init__(self, topics: Optional[List[Topic]] = None):
        self._topics = topics or TOPICS
        self._by_key: Dict[str, Topic] = {t.key: t for t in self._topics}
        self._compiled = {
            t.key: [re.compile(p, re.IGNORECASE) for p in t.patterns] for t in self._topics
        }

    def scores(self, text: str) -> Dict[str, int]:
        """Keyword hit count per topic (topics with no hit are omitted)"""
        result = {}
        for key, patterns in self._compiled.items():
            hits = sum(len(p.findall(text)) for p in patterns)
            if hits:
                result[key] = hits
        return result

    def topics(self, text: str) -> Set[str]:
        return set(self.scores(text))

    def primary_topic(self, text: str) -> Optional[str]:
        scores = self.scores(text)
        if not scores:
            return None
        # Highest hit count; ties go to the topic listed first in the table
        order = {t.key: i for i, t in enumerate(self._topics)}
        return max(scores, key=lambda k: (scores[k], -order[k]))

    def classify(self, text: str) -> Category:
        topic = self.primary_topic(text)
        if topic is None:
            return Category.COMMERCIAL
        return self._by_key[topic].category

    def label(self, topic: str) -> str:
        return self._by_key[topic].label if topic in self._by_key else topic.replace("_", " ").title()

    def category_of(self, topic: str) -> Category:
        return self._by_key[topic].category
