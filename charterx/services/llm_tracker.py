"""
LLM Usage Tracker
Tracks token usage, estimated cost and call outcomes per pipeline operation
(merge, risk, compliance, recommend, redline, explain). Kept in memory only.
"""

import logging
import threading
import time
from typing import Any, Dict

from charterx.config.config import Config
from charterx.utils.logger import setup_logging

setup_logging(__name__)
logger = logging.getLogger(__name__)

# Gemini API Pricing (USD per million tokens) - update based on current pricing
GEMINI_PRICING: Dict[str, Dict[str, float]] = {
    "gemini-2.0-flash": {"input_per_million": 0.10, "output_per_million": 0.40},
    "gemini-2.5-flash": {"input_per_million": 0.30, "output_per_million": 2.50},
    "gemini-2.5-pro": {"input_per_million": 1.25, "output_per_million": 10.00},
    "gemini-1.5-flash": {"input_per_million": 0.075, "output_per_million": 0.30},
    "gemini-1.5-pro": {"input_per_million": 1.25, "output_per_million": 5.00},
}


def get_gemini_pricing(model_name: str) -> Dict[str, float]:
    if model_name not in GEMINI_PRICING:
        fallback = "gemini-2.5-flash"
        logger.warning(f"Unknown model '{model_name}', falling back to '{fallback}' pricing")
        return GEMINI_PRICING[fallback]
    return GEMINI_PRICING[model_name]


class LLMRequest:
    """Start time and prompt estimate of one in-flight call"""

    def __init__(self, prompt: str):
        self.started_at = time.time()
        # Rough approximation until the response reports real counts: 1 token ≈ 4 chars
        self.estimated_input = len(prompt) // 4


class LLMUsageTracker:
    """
    Tracks LLM usage for a single pipeline operation

    Calls for the same operation may overlap, so per-call state lives in the
    LLMRequest returned by start_request, not on the tracker.
    """

    def __init__(self, operation: str, model_name: str = Config.GEMINI_MODEL):
        self.operation = operation
        self.model_name = model_name

        self.input_tokens = 0
        self.output_tokens = 0
        self.llm_calls = 0
        self.failures = 0
        self.elapsed_seconds = 0.0
        self.cost_in_usd = 0.0

    def start_request(self, prompt: str) -> LLMRequest:
        """Mark the start of an LLM request"""
        return LLMRequest(prompt)

    def end_request(self, request: LLMRequest, response: Any = None, failed: bool = False):
        """
        Mark the end of an LLM request and extract token usage

        Args:
            request: The handle returned by start_request
            response: Gemini API response object (None when the call failed)
            failed: Whether the call ended in a failure
        """
        elapsed = time.time() - request.started_at
        self.elapsed_seconds += elapsed
        self.llm_calls += 1

        if failed or response is None:
            self.failures += 1
            return

        usage_metadata = getattr(response, "usage_metadata", None)
        input_tok = getattr(usage_metadata, "prompt_token_count", None) or request.estimated_input
        output_tok = getattr(usage_metadata, "candidates_token_count", None)
        if output_tok is None:
            text = getattr(response, "text", "") or ""
            output_tok = len(text) // 4

        self.input_tokens += input_tok
        self.output_tokens += output_tok

        pricing = get_gemini_pricing(self.model_name)
        cost = (input_tok / 1_000_000) * pricing["input_per_million"] + \
               (output_tok / 1_000_000) * pricing["output_per_million"]
        self.cost_in_usd += cost

        logger.info(
            f"[{self.operation}] Call #{self.llm_calls}: input {input_tok} tokens | "
            f"output {output_tok} tokens | ${cost:.4f} ({elapsed:.2f}s)"
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get current statistics for this tracker"""
        return {
            "operation": self.operation,
            "model": self.model_name,
            "llm_calls": self.llm_calls,
            "failures": self.failures,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "cost_in_usd": round(self.cost_in_usd, 4),
        }


class LLMUsageManager:
    """
    Process-wide registry of trackers, one per operation
    """

    def __init__(self, model_name: str = Config.GEMINI_MODEL):
        self.model_name = model_name
        self.trackers: Dict[str, LLMUsageTracker] = {}
        self._lock = threading.Lock()

    def get_tracker(self, operation: str) -> LLMUsageTracker:
        with self._lock:
            if operation not in self.trackers:
                self.trackers[operation] = LLMUsageTracker(operation, self.model_name)
            return self.trackers[operation]

    def get_overall_stats(self) -> Dict[str, Any]:
        """Get aggregated stats across all trackers"""
        per_operation = {name: tracker.get_stats() for name, tracker in self.trackers.items()}
        return {
            "total_llm_calls": sum(s["llm_calls"] for s in per_operation.values()),
            "total_failures": sum(s["failures"] for s in per_operation.values()),
            "total_input_tokens": sum(s["input_tokens"] for s in per_operation.values()),
            "total_output_tokens": sum(s["output_tokens"] for s in per_operation.values()),
            "total_cost_in_usd": round(sum(s["cost_in_usd"] for s in per_operation.values()), 4),
            "operations": per_operation,
        }


usage_manager = LLMUsageManager()
