from fastapi import APIRouter, Request

from ..schemas import SearchRequest

router = APIRouter()


@router.post("/transcripts")
def search_transcripts(request: Request, body: SearchRequest):
    results = request.app.state.services.search.search_transcripts(
        body.query, body.filters.model_dump(exclude_none=True)
    )
    return {"results": results, "count": len(results)}


@router.post("/media")
def search_media(request: Request, body: SearchRequest):
    results = request.app.state.services.search.search_media(
        body.query, body.filters.model_dump(exclude_none=True)
    )
    return {"results": results, "count": len(results)}
