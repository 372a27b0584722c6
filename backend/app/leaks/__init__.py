from .ai_classifier import AILeakClassifier, build_prompt, extract_json_array
from .csv_upload import parse_transaction_csv
from .fallback import classify_fallback
from .recurring import INTERVAL_BANDS, classify_interval, detect_recurring_charges
from .types import LeakFinding, RecurringSeries, Transaction, normalize_merchant

__all__ = [
    "AILeakClassifier",
    "INTERVAL_BANDS",
    "LeakFinding",
    "RecurringSeries",
    "Transaction",
    "build_prompt",
    "classify_fallback",
    "classify_interval",
    "detect_recurring_charges",
    "extract_json_array",
    "normalize_merchant",
    "parse_transaction_csv",
]
