"""HTTP interface: response envelope, routers and app assembly (api.app)."""

from api.base import (
    APIError,
    APIMeta,
    APIResponse,
    success_response,
    error_response,
    request_id_of,
    ErrorCodes,
)
