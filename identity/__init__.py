"""Identity package: current profile, auth operations, and the auth blueprint."""

from .facade import IdentityFacade
from .profiles import Profile
from .routes import create_identity_blueprint

__all__ = ["IdentityFacade", "Profile", "create_identity_blueprint"]
