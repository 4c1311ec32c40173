"""deepcheck.forensic – result explainability utilities."""
from .explainability import explain_result

__all__ = ["explain_result"]
