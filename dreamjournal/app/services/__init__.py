from dreamjournal.app.services.csrf import CSRFTokenService, ValidationResult
from dreamjournal.app.services.patterns import calculate_patterns, most_frequent
from dreamjournal.app.services.visualization import generate_visual

__all__ = [
    "CSRFTokenService",
    "ValidationResult",
    "calculate_patterns",
    "generate_visual",
    "most_frequent",
]
