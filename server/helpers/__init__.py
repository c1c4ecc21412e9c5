from .DateTimeSerializer import DateTimeSerializerVisitor
from .ClubKeyGenerator import new_id, generate_club_key, pending_request_key
from .ClubKeyEncryptionStrategy import ClubKeyEncryptionStrategy
from .PasswordHashStrategy import PasswordHashStrategy
from .LoggingConfig import setup_logging

__all__ = [
    'DateTimeSerializerVisitor',
    'new_id',
    'generate_club_key',
    'pending_request_key',
    'ClubKeyEncryptionStrategy',
    'PasswordHashStrategy',
    'setup_logging'
]
