from fastapi import Header, HTTPException, status

from tokenshift.services.rotation.errors import AuthenticationFailure
from tokenshift.services.rotation.wire import ROTATION_KEY_HEADER


async def rotation_credential(
    x_rotation_key: str | None = Header(default=None, alias=ROTATION_KEY_HEADER),
) -> str:
    """
    The rotation key travels only in the X-Rotation-Key header; query strings are ignored.
    """
    if not x_rotation_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": AuthenticationFailure.default_code, "message": f"{ROTATION_KEY_HEADER} header required"},
        )
    return x_rotation_key
