# engagement_crm/api/dependencies/owner.py
from fastapi import Header


async def get_owner_id(
    owner_id: int = Header(
        ...,
        alias="X-Owner-Id",
        description="Id of the organizer whose meetings are being analysed.",
        examples=[1],
    ),
) -> int:
    """
    Organizer scoping for the analytics read API.

    Authentication of the organizer happens upstream (gateway / session
    layer); this service only trusts the forwarded id.
    """
    return owner_id
