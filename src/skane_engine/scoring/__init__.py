"""Scoring — activation classification, action selection and the Skane Index.

Architecture
------------
1. **Classifier** (`classifier.py`)
   - Validates snapshots against the catalog bounds (never clamps)
   - Weighted facial / postural / respiratory sub-scores
   - Two cut points → HIGH_ACTIVATION / REGULATED / LOW_ENERGY
   - Recommendation hints derived from the same snapshot

2. **Selector** (`selector.py`)
   - Filters the catalog by state, ranks by tag overlap
   - Shorter routines first when urgency is immediate
   - Stable tie-break: catalog priority, then id

3. **Skane Index** (`index.py`)
   - Confidence-widened before band on a 0–100 scale
   - Fixed feedback adjustment table and share eligibility

Everything here is pure: identical input gives identical output, with no
I/O and no randomness.  Outputs are wellness guidance, never diagnoses.
"""

from skane_engine.scoring.classifier import ActivationClassifier, parse_snapshot
from skane_engine.scoring.index import REDUCTION_TABLE, SkaneIndexCalculator
from skane_engine.scoring.selector import ActionSelector

__all__ = [
    "ActionSelector",
    "ActivationClassifier",
    "REDUCTION_TABLE",
    "SkaneIndexCalculator",
    "parse_snapshot",
]
