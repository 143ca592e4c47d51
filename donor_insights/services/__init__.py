"""
Serviços de domínio separados das rotas.

Inclui o motor de agregação e os processadores de cada dimensão.
"""

from .aggregation_service import InsightsEngine  # noqa: F401
from .processors import build_processors  # noqa: F401

__all__ = [
    "build_processors",
    "InsightsEngine",
]
