"""
Essentials extension integration

Read-only access to the player databases kept by the server's essentials
extension, used to decorate player names in relayed messages.
"""

from .profile_service import ProfileService

__all__ = [
    'ProfileService'
]
