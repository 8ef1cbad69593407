from typing import Literal, Optional, TypedDict


UserRole = Literal["job_seeker", "recruiter", "admin"]


class UserDocument(TypedDict, total=False):

    _id: str
    email: str
    full_name: Optional[str]
    role: UserRole
    # set by admin moderation
    is_blocked: bool
