"""
DISPATCH App - Identity of rider/admin connections

By default the identity a client claims in `rider_auth` / `admin_auth` is
trusted as-is (single trust domain behind the storefront's auth service).
With DISPATCH_VERIFY_TOKENS enabled, the frame must carry an access token
issued by that service and the identity is taken from the token's subject.
"""

import logging
from typing import Optional

from dispatch.results import Result

logger = logging.getLogger(__name__)


def resolve_identity(
    claimed_id: Optional[str],
    token: Optional[str],
    role: str,
    verify: bool = False,
) -> Result:
    """
    Resolve the identity to bind for an auth frame.

    Returns a Result whose value is the identity to use, or None when the
    client claimed nothing and verification is off (the caller mints one).
    """
    if not verify:
        return Result.success(claimed_id or None)

    if not token:
        return Result.failure('missing credential')

    from rest_framework_simplejwt.exceptions import TokenError
    from rest_framework_simplejwt.settings import api_settings
    from rest_framework_simplejwt.tokens import AccessToken

    try:
        access = AccessToken(token)
    except TokenError as e:
        logger.warning(f"[IDENTITY] Rejected {role} credential: {e}")
        return Result.failure('invalid credential')

    subject = access.get(api_settings.USER_ID_CLAIM)
    if subject is None:
        return Result.failure('invalid credential')
    subject = str(subject)

    token_role = access.get('role')
    if token_role is not None and str(token_role).lower() != str(role):
        return Result.failure('credential role mismatch')

    if claimed_id and claimed_id != subject:
        logger.warning(
            f"[IDENTITY] {role} claimed {claimed_id} but credential is for {subject}"
        )
        return Result.failure('identity does not match credential')

    return Result.success(subject)
