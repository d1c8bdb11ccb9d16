"""
JWT validation for identity provider (Keycloak) tokens.

A validated token yields TokenClaims, from which the request's
AccessContext is built: subject, tenant, effective role and the ids of
confidential documents the user was granted.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jwt
import requests
from jwt import PyJWK
from django.conf import settings

from .access import AccessContext, admin_roles
from .jwks import get_jwks_cache

logger = logging.getLogger(__name__)

# Keycloak roles that say nothing about document access
INTERNAL_ROLES = {'offline_access', 'uma_authorization'}


class JWTValidationError(Exception):
    """Raised when JWT validation fails."""
    pass


@dataclass
class TokenClaims:
    """Validated token claims."""
    sub: str
    preferred_username: str
    tenant_id: Optional[str]
    roles: List[str]
    confidential_document_ids: List[str] = field(default_factory=list)
    raw_claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def effective_role(self) -> str:
        """Admin-equivalent role if the user has one, else their first role."""
        admins = admin_roles()
        for role in self.roles:
            if role.lower() in admins:
                return role
        return self.roles[0] if self.roles else 'user'

    def to_access_context(self) -> AccessContext:
        return AccessContext.build(
            user_id=self.sub,
            tenant_id=self.tenant_id or '',
            role=self.effective_role,
            confidential_document_ids=self.confidential_document_ids,
        )


def extract_roles(claims: Dict[str, Any], client_id: str) -> List[str]:
    """
    Collect realm and client roles from Keycloak claims.

    Keycloak stores roles in realm_access.roles and
    resource_access[client_id].roles.
    """
    roles = set(claims.get('realm_access', {}).get('roles', []))
    roles.update(claims.get('resource_access', {}).get(client_id, {}).get('roles', []))
    return sorted(
        r for r in roles
        if r not in INTERNAL_ROLES and not r.startswith('default-roles-')
    )


def _as_str_list(value) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return []


def validate_token(token: str) -> TokenClaims:
    """
    Validate a JWT and extract document-portal claims.

    Checks the signature against the JWKS key named in the header, the
    issuer against KC_VALID_ISSUERS, and expiry.

    Args:
        token: The JWT token string (without 'Bearer ' prefix)

    Returns:
        TokenClaims with validated claims

    Raises:
        JWTValidationError: If validation fails
    """
    try:
        kid = jwt.get_unverified_header(token).get('kid')
        if not kid:
            raise JWTValidationError("Token header missing 'kid'")

        jwk_data = get_jwks_cache().get_key(kid)
        if not jwk_data:
            raise JWTValidationError(f"Unknown key ID: {kid}")

        # Tokens may come from the internal or the browser-facing issuer URL
        issuer = jwt.decode(token, options={'verify_signature': False}).get('iss', '')
        if issuer not in settings.KC_VALID_ISSUERS:
            logger.warning(f"Invalid issuer: {issuer}")
            raise JWTValidationError("Invalid token issuer")

        claims = jwt.decode(
            token,
            PyJWK.from_dict(jwk_data).key,
            algorithms=['RS256'],
            issuer=issuer,
            options={'verify_aud': False, 'require': ['exp', 'sub']},
        )
    except jwt.ExpiredSignatureError:
        raise JWTValidationError("Token has expired")
    except jwt.InvalidIssuerError:
        raise JWTValidationError("Invalid token issuer")
    except jwt.PyJWTError as e:
        raise JWTValidationError(f"Invalid token: {e}")
    except requests.RequestException:
        raise JWTValidationError("Signing keys unavailable")

    tenant_claim = getattr(settings, 'KC_TENANT_CLAIM', 'tenant_id')
    confidential_claim = getattr(settings, 'KC_CONFIDENTIAL_CLAIM', 'confidential_documents')

    return TokenClaims(
        sub=claims.get('sub', ''),
        preferred_username=claims.get('preferred_username', ''),
        tenant_id=claims.get(tenant_claim),
        roles=extract_roles(claims, settings.KC_AUDIENCE),
        confidential_document_ids=_as_str_list(claims.get(confidential_claim)),
        raw_claims=claims,
    )
