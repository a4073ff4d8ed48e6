import logging
import re
import time

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile, status

from ats_api.core.auth import Action, Principal
from ats_api.core.config import Settings, get_settings
from ats_api.core.security import authorize, get_access_resolver, get_current_principal
from ats_api.schemas.careers import (
    ApplicationOut,
    CareerPageOut,
    CareerPageUpdateRequest,
    PublicCareerPageOut,
    PublicJob,
    PublicOrganization,
)
from ats_api.services.email import EmailDeliveryError, ResendMailer, application_confirmation_html, get_mailer
from ats_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from ats_api.services.storage import StorageError, get_storage
from ats_api.services.transforms import coerce_bool, coerce_json_dict, to_career_page_block

page_router = APIRouter()
public_router = APIRouter()
logger = logging.getLogger(__name__)

RESUME_BUCKET = "resumes"
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_EXTENSION_PATTERN = re.compile(r"^[A-Za-z0-9]{1,8}$")


@page_router.get("", response_model=CareerPageOut)
async def get_career_page(
    org_id: str | None = Query(default=None, alias="orgId"),
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> CareerPageOut:
    decision = await authorize(resolver, principal, org_id=org_id, action=Action.CAREER_PAGE_EDIT)
    return await _load_career_page(repository, decision.org_id)


@page_router.put("", response_model=CareerPageOut)
async def save_career_page(
    payload: CareerPageUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    resolver=Depends(get_access_resolver),
    repository=Depends(get_repository),
) -> CareerPageOut:
    await authorize(resolver, principal, org_id=payload.org_id, action=Action.CAREER_PAGE_EDIT)
    blocks = [
        {
            "block_type": block.type,
            "content": block.content,
            "styles": block.styles,
            "is_enabled": block.enabled,
        }
        for block in sorted(payload.blocks, key=lambda item: item.order)
    ]
    try:
        await repository.save_career_page(
            org_id=payload.org_id,
            config=payload.config,
            published=payload.published,
            blocks=blocks,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("career page saved org_id=%s published=%s blocks=%s", payload.org_id, payload.published, len(blocks))
    return await _load_career_page(repository, payload.org_id)


@public_router.get("/{org_slug}", response_model=PublicCareerPageOut)
async def public_career_page(org_slug: str, repository=Depends(get_repository)) -> PublicCareerPageOut:
    try:
        org = await repository.get_organization_by_slug(org_slug)
        if not org or not coerce_bool(org.get("career_page_published")):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Career page not found")
        block_rows = await repository.list_career_page_blocks(org["id"])
        job_rows = await repository.list_published_jobs(org["id"])
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    blocks = [to_career_page_block(row) for row in block_rows]
    return PublicCareerPageOut(
        organization=PublicOrganization(
            name=org.get("name") or "",
            slug=org.get("slug") or org_slug,
            logo_url=org.get("logo_url"),
            primary_color=org.get("primary_color"),
            secondary_color=org.get("secondary_color"),
        ),
        config=coerce_json_dict(org.get("career_page_config")) or {},
        blocks=[block for block in blocks if block.enabled],
        jobs=[PublicJob(**row) for row in job_rows],
    )


@public_router.post("/apply", response_model=ApplicationOut)
async def apply(
    background_tasks: BackgroundTasks,
    job_id: str | None = Form(default=None, alias="jobId"),
    first_name: str | None = Form(default=None, alias="firstName"),
    last_name: str | None = Form(default=None, alias="lastName"),
    email: str | None = Form(default=None),
    phone: str | None = Form(default=None),
    linkedin: str | None = Form(default=None, alias="linkedIn"),
    cover_letter: str | None = Form(default=None, alias="coverLetter"),
    resume: UploadFile | None = File(default=None),
    repository=Depends(get_repository),
    storage=Depends(get_storage),
    mailer: ResendMailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
) -> ApplicationOut:
    job_id, first_name, last_name, email = (_clean(value) for value in (job_id, first_name, last_name, email))
    if not job_id or not first_name or not last_name or not email or resume is None or not resume.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields")
    if not _EMAIL_PATTERN.match(email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email address")

    content = await resume.read()
    if len(content) > settings.upload_max_bytes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Resume file is too large")

    try:
        job = await repository.get_published_job(job_id)
        if not job:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Job not found or not accepting applications",
            )
        org_id = job["org_id"]

        candidate_id = await repository.find_candidate_id(org_id=org_id, email=email)
        if candidate_id is None:
            candidate_id = await repository.create_candidate(
                org_id=org_id,
                first_name=first_name,
                last_name=last_name,
                email=email,
                phone=_clean(phone),
                linkedin_url=_clean(linkedin),
            )
        elif await repository.application_exists(candidate_id=candidate_id, job_id=job_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You have already applied to this position",
            )

        resume_path = resume_object_path(org_id, candidate_id, resume.filename)
        try:
            await storage.upload(
                bucket=RESUME_BUCKET,
                path=resume_path,
                content=content,
                content_type=resume.content_type or "application/octet-stream",
            )
        except StorageError:
            # The application still goes through; recruiters can request the resume again.
            logger.exception("resume upload failed candidate_id=%s job_id=%s", candidate_id, job_id)
        else:
            await repository.set_candidate_resume_url(candidate_id=candidate_id, resume_url=resume_path)

        application_id = await repository.create_application(
            org_id=org_id,
            candidate_id=candidate_id,
            job_id=job_id,
            cover_letter=_clean(cover_letter),
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except (RepositoryConflictError, RepositoryValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    logger.info("application submitted application_id=%s job_id=%s org_id=%s", application_id, job_id, org_id)
    background_tasks.add_task(
        send_application_confirmation,
        mailer,
        to=email,
        first_name=first_name,
        job_title=job.get("title") or "",
        organization_name=job.get("organization_name") or "the company",
    )
    return ApplicationOut(application_id=application_id)


async def send_application_confirmation(
    mailer: ResendMailer,
    *,
    to: str,
    first_name: str,
    job_title: str,
    organization_name: str,
) -> None:
    try:
        await mailer.send(
            to=to,
            subject=f"Application received: {job_title}",
            html=application_confirmation_html(
                first_name=first_name,
                job_title=job_title,
                organization_name=organization_name,
            ),
        )
    except EmailDeliveryError:
        logger.exception("failed to send application confirmation")


def resume_object_path(org_id: str, candidate_id: str, filename: str) -> str:
    extension = filename.rsplit(".", maxsplit=1)[-1] if "." in filename else ""
    suffix = f".{extension.lower()}" if _EXTENSION_PATTERN.match(extension) else ""
    return f"{org_id}/{candidate_id}/{candidate_id}-{int(time.time() * 1000)}{suffix}"


async def _load_career_page(repository, org_id: str) -> CareerPageOut:
    try:
        org = await repository.get_organization(org_id)
        if not org:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
        block_rows = await repository.list_career_page_blocks(org_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return CareerPageOut(
        org_id=org_id,
        published=coerce_bool(org.get("career_page_published")),
        config=coerce_json_dict(org.get("career_page_config")) or {},
        blocks=[to_career_page_block(row) for row in block_rows],
    )


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
