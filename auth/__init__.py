"""Authentication and authorization modules."""

from auth.exceptions import AuthError, SessionExpiredError
from auth.types import Session
from auth.session import SessionValidator, ValkeySessionValidator
from auth.permissions import Permissions, ADMIN_ROLES
from auth.security_middleware import AuthMiddleware
