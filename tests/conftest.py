import asyncio
import os
import tempfile
from pathlib import Path

os.environ.setdefault("LOG_DIR", str(Path(tempfile.gettempdir()) / "charterx-test-logs"))
os.environ.setdefault("MIN_INPUT_LENGTH", "10")

import pytest

from charterx.database.schemas import ClauseExplanation, Severity


BASE_CONTRACT = """CHARTER PARTY CONTRACT

This Charter Party is made between the Owners and the Charterers named below.

1. Vessel Identification
The Vessel shall be as described in the fixture recap.

2. Voyage and Cargo
The Vessel shall load a full and complete cargo at the load port.

3. Freight Payment
Freight shall be paid within 5 banking days of completion of loading.

4. Demurrage and Despatch
Demurrage shall be payable at the rate agreed. Laytime shall commence 6 hours after NOR is tendered.
"""

FIXTURE_RECAP = """Vessel: MV TEST
Charterer: Ocean Grain Trading Ltd
Owner: Blue Sea Shipping SA
Load Port: Santos
Discharge Port: Rotterdam
Cargo: 50,000 mt soybeans
Freight Rate: USD 32.50 per mt
Laycan: 10-15 March 2025
"""

NEGOTIATED_CLAUSES = "Clause 4: NOR valid by email (WIPON)"


class FakeGenerator:
    """
    Canned structured outputs per operation, with call recording

    A response may be a pydantic object, a dict, an exception to raise, or a
    callable taking the prompt. Operations without a response get the empty
    output schema.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.gate = None
        self.started = None

    def hold(self):
        """Make the next calls wait until the returned event is set"""
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        return self.gate

    def count(self, operation=None):
        if operation is None:
            return len(self.calls)
        return sum(1 for op, _ in self.calls if op == operation)

    async def generate(self, operation, prompt, output_schema, system=None):
        self.calls.append((operation, prompt))
        if self.gate is not None:
            self.started.set()
            await self.gate.wait()

        response = self.responses.get(operation)
        if callable(response) and not isinstance(response, type):
            response = response(prompt)
        if isinstance(response, Exception):
            raise response
        if response is None:
            return output_schema()
        if isinstance(response, output_schema):
            return response
        return output_schema.model_validate(response)


@pytest.fixture
def fake_generator():
    return FakeGenerator({
        "explain_clause": ClauseExplanation(
            explanation="Notice of readiness may be tendered by email whether in port or not.",
            risk_level=Severity.MEDIUM,
            benefits=["Laytime starts earlier for Owners"],
            risks=["Charterers bear waiting time"],
            recommendations=["Define office hours for tendering"],
            legal_implications="Valid NOR is a condition for laytime to commence.",
        ),
    })


@pytest.fixture
def merge_inputs():
    return {
        "fixture_recap": FIXTURE_RECAP,
        "base_contract": BASE_CONTRACT,
        "negotiated_clauses": NEGOTIATED_CLAUSES,
    }


def run(coro):
    return asyncio.run(coro)
