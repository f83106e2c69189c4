"""
Utility modules for the automation engine.
"""
from clinic_automation.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpen,
    CircuitState,
    NETWORK_EXCEPTIONS,
    twilio_breaker,
    smtp_breaker,
    supabase_breaker,
    get_circuit_stats,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "CircuitState",
    "NETWORK_EXCEPTIONS",
    "twilio_breaker",
    "smtp_breaker",
    "supabase_breaker",
    "get_circuit_stats",
]
