"""
family_helper/models/wiki.py

Decrypted wiki documents as returned to group members.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from family_helper.models.base import CamelModel


class MemberProfile(CamelModel):
    """Group member display data, preferring the linked user's profile."""
    group_member_id: str
    display_name: Optional[str] = None
    icon_letters: Optional[str] = None
    icon_color: Optional[str] = None
    profile_photo_url: Optional[str] = None


class WikiDocument(CamelModel):
    document_id: str
    title: str
    content: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    creator: MemberProfile


class WikiRevision(CamelModel):
    revision_id: str
    title: str
    edited_at: Optional[datetime] = None
    change_note: Optional[str] = None
    editor: MemberProfile


class WikiDocumentDetail(WikiDocument):
    revisions: List[WikiRevision] = Field(default_factory=list)
