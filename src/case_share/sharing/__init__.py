"""Case sharing: direct grants, email invitations and access codes."""

from .access import AccessCodeGateway
from .controller import ShareController
from .invites import InviteLedger
from .outcomes import (
    ConflictReason,
    ErrorKind,
    Ok,
    ReadDegraded,
    WriteFailed,
    to_jsonable,
)
from .registry import ShareRegistry
from .routes import (
    InviteRequest,
    PermissionsRequest,
    ShareRequest,
    create_case_share_router,
)
from .sweep import InviteSweeper, SweepReport

__all__ = [
    'AccessCodeGateway',
    'ConflictReason',
    'ErrorKind',
    'InviteLedger',
    'InviteRequest',
    'InviteSweeper',
    'Ok',
    'PermissionsRequest',
    'ReadDegraded',
    'ShareController',
    'ShareRegistry',
    'ShareRequest',
    'SweepReport',
    'WriteFailed',
    'create_case_share_router',
    'to_jsonable',
]
