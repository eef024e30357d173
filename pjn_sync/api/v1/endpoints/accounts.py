"""
PJN account endpoints: reauth, connect, status.
"""
from fastapi import APIRouter, Depends

from pjn_sync.api.v1.deps import get_account_service, get_repository
from pjn_sync.db.repository import PjnRepository
from pjn_sync.db.schemas import AccountStatusResponse, ConnectAccountRequest, ReauthRequest
from pjn_sync.services.account_service import AccountService
from pjn_sync.utils.exceptions import RecordNotFoundError

router = APIRouter()
reauth_router = APIRouter()


@reauth_router.post("")
def reauthenticate(
    request: ReauthRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Log in with the given credentials and save the session. Credentials are not stored."""
    return accounts.reauthenticate(request.user_id, request.username, request.password)


@router.post("/connect")
def connect_account(
    request: ConnectAccountRequest,
    repo: PjnRepository = Depends(get_repository),
    accounts: AccountService = Depends(get_account_service),
):
    return accounts.connect_account(repo, request.user_id, request.username, request.password)


@router.get("/{user_id}", response_model=AccountStatusResponse)
def get_account_status(
    user_id: str,
    repo: PjnRepository = Depends(get_repository),
    accounts: AccountService = Depends(get_account_service),
):
    account = accounts.get_account_status(repo, user_id)
    if account is None:
        raise RecordNotFoundError("PJN account", user_id)
    return account
