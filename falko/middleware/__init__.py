"""
Middleware package for Falko.
"""
from .customer_auth import require_customer, require_admin, create_access_token, decode_access_token
