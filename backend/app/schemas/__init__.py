from .access_code import AccessCodeRequest, AccessCodeResponse, AccessCodeRevokeResponse

__all__ = [
    "AccessCodeRequest",
    "AccessCodeResponse",
    "AccessCodeRevokeResponse",
]
