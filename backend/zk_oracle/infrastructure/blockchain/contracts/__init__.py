"""Contract artifacts for the on-chain proof registry."""

import json
import os
from functools import lru_cache
from typing import Any, Dict, List

ARTIFACT_PATH = os.path.join(os.path.dirname(__file__), "ProofRegistry.json")

ANCHOR_RECORD_FIELDS = (
    "proofHash",
    "commitmentHash",
    "userAnswerHash",
    "matches",
    "ipfsCid",
    "timestamp",
)


@lru_cache
def load_abi() -> List[Dict[str, Any]]:
    """ABI of the ProofRegistry contract, read from the bundled artifact."""
    with open(ARTIFACT_PATH, "r") as f:
        return json.load(f)["abi"]
