"""FIRS invoice type codes (UN/EDIFACT 1001 subset accepted by the regulator)."""

from typing import Dict, List, Optional

STANDARD_INVOICE = "380"
CREDIT_NOTE = "381"
DEBIT_NOTE = "383"

INVOICE_TYPES: Dict[str, str] = {
    STANDARD_INVOICE: "Commercial Invoice",
    CREDIT_NOTE: "Credit Note",
    DEBIT_NOTE: "Debit Note",
    "384": "Corrected Invoice",
    "386": "Prepayment Invoice",
    "389": "Self-billed Invoice",
    "393": "Factored Invoice",
    "395": "Consignment Invoice",
}

# Types that amend an earlier invoice and must reference its IRN
NOTE_TYPES = frozenset({CREDIT_NOTE, DEBIT_NOTE})


def normalise_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = str(code).strip()
    return code or None


def is_known(code: Optional[str]) -> bool:
    return normalise_code(code) in INVOICE_TYPES


def requires_previous_irn(code: Optional[str]) -> bool:
    """True for credit and debit notes."""
    return normalise_code(code) in NOTE_TYPES


def list_invoice_types() -> List[Dict[str, object]]:
    return [
        {"code": code, "name": name, "requires_previous_irn": code in NOTE_TYPES}
        for code, name in INVOICE_TYPES.items()
    ]
