"""Request context management for observability.

Context variables for request tracking across async boundaries. The JSON log
formatter reads these so every log line carries the request and caller.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# User ID - owner of the credential that authenticated the request
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Credential ID - credential that authenticated the request
credential_id_var: ContextVar[str] = ContextVar("credential_id", default="")
