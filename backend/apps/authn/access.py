"""
Access context passed to every user-facing repository and search call.

Built once per request from validated token claims. Tenant scoping is
always explicit: nothing in the core reads an ambient "current tenant".
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from django.conf import settings

DEFAULT_ADMIN_ROLES = ('admin', 'superadmin', 'super_admin')


def admin_roles() -> FrozenSet[str]:
    roles = getattr(settings, 'ADMIN_ROLES', DEFAULT_ADMIN_ROLES)
    return frozenset(r.lower() for r in roles)


@dataclass(frozen=True)
class AccessContext:
    """Who is asking, for which tenant, and which confidential documents they may see."""
    user_id: str
    tenant_id: str
    role: str = 'user'
    accessible_confidential_document_ids: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        user_id: str,
        tenant_id: str,
        role: Optional[str] = None,
        confidential_document_ids: Optional[Iterable] = None,
    ) -> 'AccessContext':
        return cls(
            user_id=user_id,
            tenant_id=tenant_id,
            role=role or 'user',
            accessible_confidential_document_ids=frozenset(
                str(doc_id) for doc_id in (confidential_document_ids or [])
            ),
        )

    @property
    def is_admin(self) -> bool:
        """Admin-equivalent roles see every confidential document of their tenant."""
        return (self.role or '').lower() in admin_roles()

    def can_view(self, document) -> bool:
        """Apply the tenant and confidentiality rules to a loaded document."""
        if document.tenant_id != self.tenant_id:
            return False
        if not document.is_confidential or self.is_admin:
            return True
        return str(document.id) in self.accessible_confidential_document_ids
