"""
Group wiki router.
Members read documents their role may see; mutations are refused while the
group is read-only (403 with a GROUP_* code).
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from family_helper.core.auth import AuthenticatedUser, get_current_user
from family_helper.core.database import get_db
from family_helper.features.wiki import service
from family_helper.models.base import CamelModel
from family_helper.models.wiki import WikiDocument, WikiDocumentDetail

logger = logging.getLogger("family_helper.wiki")

router = APIRouter(prefix="/groups/{group_id}/wiki-documents", tags=["wiki"])


class WikiDocumentRequest(CamelModel):
    title: Optional[str] = None
    content: Optional[str] = None


class WikiDocumentUpdateRequest(WikiDocumentRequest):
    change_note: Optional[str] = None


class DocumentListResponse(CamelModel):
    success: bool = True
    documents: List[WikiDocument]


class SearchResponse(DocumentListResponse):
    query: str


class DocumentResponse(CamelModel):
    success: bool = True
    document: WikiDocument


class DocumentDetailResponse(CamelModel):
    success: bool = True
    document: WikiDocumentDetail


class DeleteResponse(CamelModel):
    success: bool = True
    message: str


@router.get("", response_model=DocumentListResponse)
def list_documents(
    group_id: str,
    search: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    return DocumentListResponse(documents=service.list_documents(session, user.user_id, group_id, search))


# Declared before /{document_id} so "search" is not taken as an id
@router.get("/search", response_model=SearchResponse)
def search_documents(
    group_id: str,
    q: Optional[str] = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    documents = service.search_documents(session, user.user_id, group_id, q)
    return SearchResponse(documents=documents, query=q)


@router.get("/{document_id}", response_model=DocumentDetailResponse)
def get_document(
    group_id: str,
    document_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    return DocumentDetailResponse(document=service.get_document(session, user.user_id, group_id, document_id))


@router.post("", response_model=DocumentResponse, status_code=201)
def create_document(
    group_id: str,
    req: WikiDocumentRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    document = service.create_document(session, user.user_id, group_id, req.title, req.content)
    return DocumentResponse(document=document)


@router.put("/{document_id}", response_model=DocumentResponse)
def update_document(
    group_id: str,
    document_id: str,
    req: WikiDocumentUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    document = service.update_document(
        session, user.user_id, group_id, document_id, req.title, req.content, req.change_note
    )
    return DocumentResponse(document=document)


@router.delete("/{document_id}", response_model=DeleteResponse)
def delete_document(
    group_id: str,
    document_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_db),
):
    service.delete_document(session, user.user_id, group_id, document_id)
    return DeleteResponse(message="Wiki document deleted successfully")
