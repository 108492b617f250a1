"""
Link Administration Routes

Operator endpoints for inspecting and retiring federated account links.
Lookups need the `link_read` scope, unlinking needs `link_admin`.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import Annotated

from .models import (
    AccountDomainsResponse,
    LinkLookupResponse,
    OperationResult,
    UnlinkRequest,
)
from .dependencies import get_domain_manager
from ..auth.models import AdminContext
from ..auth.security import SCOPE_LINK_ADMIN, SCOPE_LINK_READ, require_scopes
from ..identity.manager import DomainManager

router = APIRouter(prefix="/links", tags=["links"])


@router.post(
    "/unlink",
    response_model=OperationResult,
    summary="Unlink an external identity",
)
async def unlink_external_identity(
    req: UnlinkRequest,
    admin: Annotated[AdminContext, Depends(require_scopes(SCOPE_LINK_ADMIN))],
    manager: Annotated[DomainManager, Depends(get_domain_manager)],
) -> OperationResult:
    """
    Remove the link of an external identity, e.g. after the external
    account was deleted. Unknown domains yield 404.
    """
    domain = manager.get_domain(req.domain)
    existed = await domain.unlink_external_key(req.external_key)
    return OperationResult(
        status="unlinked" if existed else "not_found",
        domain=req.domain,
        external_key=req.external_key,
    )


@router.get(
    "/accounts/{account_id}",
    response_model=AccountDomainsResponse,
    summary="List the domains an account is linked in",
)
async def get_account_domains(
    account_id: int,
    admin: Annotated[AdminContext, Depends(require_scopes(SCOPE_LINK_READ))],
    manager: Annotated[DomainManager, Depends(get_domain_manager)],
) -> AccountDomainsResponse:
    domains = await manager.get_account_domains(account_id)
    return AccountDomainsResponse(account_id=account_id, domains=domains)


@router.get(
    "/{domain_name}",
    response_model=LinkLookupResponse,
    summary="Look up the account linked to an external identity",
)
async def lookup_link(
    domain_name: str,
    external_key: Annotated[str, Query(min_length=1)],
    admin: Annotated[AdminContext, Depends(require_scopes(SCOPE_LINK_READ))],
    manager: Annotated[DomainManager, Depends(get_domain_manager)],
) -> LinkLookupResponse:
    domain = manager.get_domain(domain_name)
    account = await domain.get_linked_account(external_key, primary=True)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No account is linked to this external identity.",
        )
    return LinkLookupResponse(
        domain=domain_name,
        external_key=external_key,
        account_id=account.id,
        username=account.name,
    )
