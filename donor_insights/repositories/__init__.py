"""
Repositórios para acesso a dados.
Implementações do Order Store consumidas pelo motor de agregação.
"""

from .frame_store import FrameOrderStore
from .protocols import OrderStoreProtocol
from .sql_order_store import SqlOrderStore

__all__ = [
    "FrameOrderStore",
    "OrderStoreProtocol",
    "SqlOrderStore",
]
