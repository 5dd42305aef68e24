"""GitHub OAuth 2.0 authentication for ghmonitor.

Provides PKCE generation, the encrypted token store, the localhost
callback listener, the token exchange client, and the ``AuthService``
orchestrator that ties them together.
"""

from __future__ import annotations

from .callback_server import OAuthCallbackServer
from .encryption import RecordCipher, create_cipher
from .exchange import TokenExchangeClient
from .pkce import PKCEChallenge, generate_state
from .service import AuthService
from .storage import FileRecordStore, MemoryRecordStore, RecordStore
from .token_store import SecureTokenStore, create_token_store
from .types import (
    AuthFlowState,
    AuthResult,
    ListenerState,
    PendingFlow,
    TokenRecord,
    TokenResponse,
    UserProfile,
)


__all__ = [
    "AuthFlowState",
    "AuthResult",
    "AuthService",
    "FileRecordStore",
    "ListenerState",
    "MemoryRecordStore",
    "OAuthCallbackServer",
    "PKCEChallenge",
    "PendingFlow",
    "RecordCipher",
    "RecordStore",
    "SecureTokenStore",
    "TokenExchangeClient",
    "TokenRecord",
    "TokenResponse",
    "UserProfile",
    "create_cipher",
    "create_token_store",
    "generate_state",
]
