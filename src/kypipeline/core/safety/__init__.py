"""Safety core: signature verification, photo risk factor, approval workflow."""

from .signature import compute_signature, verify_signature
from .risk import RiskAnalysis, RiskFlags, analyze_photo, compute_factor, extract_flags
from .approval import ApprovalAction, TransitionResult, delete_entry, transition

__all__ = [
    "compute_signature",
    "verify_signature",
    "RiskAnalysis",
    "RiskFlags",
    "analyze_photo",
    "compute_factor",
    "extract_flags",
    "ApprovalAction",
    "TransitionResult",
    "delete_entry",
    "transition",
]
