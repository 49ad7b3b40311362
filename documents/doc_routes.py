from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from loguru import logger

from auth.policy import Identity, require_identity
from documents.schemas import DeleteResponse, DocumentResponse, UploadResponse
from documents.service import DocumentService
from storage.errors import PortalError

# ============================================
# CONFIGURATION
# ============================================

router = APIRouter(prefix="/api", tags=["documents"])


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


@router.get("/documents", response_model=List[DocumentResponse])
async def list_documents(service: DocumentService = Depends(get_document_service)):
    """
    All documents with object store metadata and fresh access URLs.

    Documents whose file is missing come back with size 0 and no url; when
    the object store is down every row is marked degraded.
    """
    try:
        views = await service.list_documents()
        return [DocumentResponse.from_view(view) for view in views]
    except PortalError:
        raise
    except Exception as e:
        logger.error(f"[LIST] Error fetching documents: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/upload", response_model=UploadResponse)
async def upload_document(
    file: Optional[UploadFile] = File(None),
    identity: Identity = Depends(require_identity),
    service: DocumentService = Depends(get_document_service),
):
    """Store the file, then record it."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    try:
        data = await file.read()
        logger.info(
            f"[UPLOAD] {file.filename} ({len(data)} bytes, {file.content_type}) "
            f"from {identity.subject}"
        )
        result = await service.upload(file.filename, data, file.content_type)
        return UploadResponse.from_result(result)
    except PortalError:
        raise
    except Exception as e:
        logger.error(f"[UPLOAD] Error processing upload: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    finally:
        await file.close()


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(
    document_id: int,
    identity: Identity = Depends(require_identity),
    service: DocumentService = Depends(get_document_service),
):
    """Delete the file, then the record. A failed file delete keeps the record."""
    try:
        logger.info(f"[DELETE] Document {document_id} requested by {identity.subject}")
        result = await service.delete(document_id)
        return DeleteResponse.from_result(result)
    except PortalError:
        raise
    except Exception as e:
        logger.error(f"[DELETE] Error processing delete: {e}")
        raise HTTPException(status_code=500, detail=str(e))
