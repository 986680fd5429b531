"""
Rate limiting configuration for the consultation API
"""

from fastapi import Request
from slowapi.util import get_remote_address


def get_real_ip(request: Request) -> str:
    """
    Get the real IP address, considering proxy headers.
    Needed when the API runs behind a load balancer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


# Rate limits per endpoint group
RATE_LIMIT_TIERS = {
    "default": {
        "start": "10/minute",       # New consultations
        "step": "30/minute",        # Form, answers, proceed, restart
        "read": "60/minute",        # Session snapshots and history
        "global": "100/minute"
    },
}

RATE_LIMIT_MESSAGES = {
    "default": "Muitas requisições. Aguarde um momento e tente novamente.",
    "start": "Muitas consultas iniciadas. Aguarde um minuto.",
    "step": "Muitas mensagens enviadas. Vá um pouco mais devagar.",
}


def get_rate_limit_message(endpoint: str) -> str:
    """Get custom error message for rate limited endpoint group"""
    return RATE_LIMIT_MESSAGES.get(endpoint, RATE_LIMIT_MESSAGES["default"])
