"""
Persistence adapters for the connection core.
"""
from app.adapters.base import PersistenceGateway, RecordKind, MembershipQuery
from app.adapters.memory import InMemoryGateway

__all__ = ['PersistenceGateway', 'RecordKind', 'MembershipQuery', 'InMemoryGateway']
