from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from remixhub.deps import get_current_user
from remixhub.models.remix_request import RemixRequest
from remixhub.models.user import User
from remixhub.services import remixes as remixes_service

router = APIRouter()


class RemixCreate(BaseModel):
    source_repo: str
    dest_repo: str
    github_token: str = ""
    same_account: bool = True
    dest_token: str | None = None


def remix_out(r: RemixRequest) -> dict:
    return {
        "id": str(r.id),
        "source_repo": r.source_repo,
        "destination_repo": r.destination_repo,
        "status": r.status.value,
        "files_copied": r.files_copied,
        "files_skipped": r.files_skipped,
        "commit_sha": r.commit_sha,
        "branch": r.branch,
        "error_message": r.error_message,
        "created_at": r.created_at.isoformat(),
        "finished_at": r.finished_at.isoformat() if r.finished_at else None,
    }


@router.post("")
async def remix_create(body: RemixCreate, user: User = Depends(get_current_user)):
    """Run a remix; one credit is charged only if it succeeds."""
    submission = remixes_service.RemixSubmission(
        source_repo=body.source_repo,
        dest_repo=body.dest_repo,
        github_token=body.github_token,
        same_account=body.same_account,
        dest_token=body.dest_token,
    )
    remix = await remixes_service.create_remix(user.id, submission)
    return {"success": True, "remix_id": str(remix.id), "remix": remix_out(remix)}


@router.get("")
async def remixes_list(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    items = await remixes_service.list_remixes(user.id, limit=limit, offset=offset)
    return {"remixes": [remix_out(r) for r in items], "limit": limit, "offset": offset}
