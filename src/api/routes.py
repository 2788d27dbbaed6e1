# src/api/routes.py — v1
"""Management API routes.

``/api/batch-config`` manages folders, notifications and global
defaults; ``/api/batch`` exposes jobs, file records, statistics and the
real-time status stream. Every response is wrapped in the envelope.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder

from callbatch.api.envelope import success
from callbatch.api.schemas import PushEventsRequest, RetryRequest
from callbatch.batch.container import Container
from callbatch.core.models import FileStatus, JobStatus
from callbatch.tracking import reports

logger = logging.getLogger(__name__)

config_router = APIRouter(prefix="/api/batch-config", tags=["batch-config"])
batch_router = APIRouter(prefix="/api/batch", tags=["batch"])


def get_container(request: Request) -> Container:
    return request.app.state.container


ContainerDep = Annotated[Container, Depends(get_container)]
JsonBody = Annotated[dict[str, Any], Body()]


# === Folders ===


@config_router.get("/folders")
async def list_folders(container: ContainerDep, active_only: bool = False) -> dict[str, Any]:
    return success(await container.configuration.list_folders(active_only=active_only))


@config_router.post("/folders", status_code=status.HTTP_201_CREATED)
async def create_folder(container: ContainerDep, body: JsonBody) -> dict[str, Any]:
    folder = await container.configuration.create_folder(body)
    return success(folder, message="Folder created")


@config_router.post("/folders/test")
async def test_folder_config(container: ContainerDep, body: JsonBody) -> dict[str, Any]:
    """Validate and try a folder configuration without saving it."""
    return success(await container.configuration.test_folder(body))


@config_router.get("/folders/{folder_id}")
async def get_folder(container: ContainerDep, folder_id: int) -> dict[str, Any]:
    return success(await container.configuration.get_folder(folder_id))


@config_router.put("/folders/{folder_id}")
async def update_folder(container: ContainerDep, folder_id: int, body: JsonBody) -> dict[str, Any]:
    folder = await container.configuration.update_folder(folder_id, body)
    return success(folder, message="Folder updated")


@config_router.delete("/folders/{folder_id}")
async def delete_folder(container: ContainerDep, folder_id: int) -> dict[str, Any]:
    folder = await container.configuration.delete_folder(folder_id)
    return success(folder, message="Folder disabled")


@config_router.post("/folders/{folder_id}/test")
async def test_folder(container: ContainerDep, folder_id: int) -> dict[str, Any]:
    folder = await container.configuration.get_folder(folder_id)
    return success(await container.configuration.test_folder(folder))


@config_router.post("/folders/{folder_id}/scan")
async def scan_folder(container: ContainerDep, folder_id: int) -> dict[str, Any]:
    job = await container.service.scan_now(folder_id)
    if job is None:
        return success(None, message="No new files found")
    return success(job, message="Scan started")


@config_router.post("/folders/{folder_id}/start")
async def start_folder(container: ContainerDep, folder_id: int) -> dict[str, Any]:
    await container.service.start_folder(folder_id)
    return success(container.service.status(), message="Folder started")


@config_router.post("/folders/{folder_id}/stop")
async def stop_folder(container: ContainerDep, folder_id: int) -> dict[str, Any]:
    stopped = await container.service.stop_folder(folder_id)
    return success({"stopped": stopped})


@config_router.post("/folders/{folder_id}/events", status_code=status.HTTP_202_ACCEPTED)
async def push_events(
    container: ContainerDep, folder_id: int, body: PushEventsRequest
) -> dict[str, Any]:
    accepted = await container.service.push_events(folder_id, body.files)
    return success({"accepted": accepted})


# === Notifications ===


@config_router.get("/notifications")
async def list_notifications(container: ContainerDep, active_only: bool = False) -> dict[str, Any]:
    return success(await container.configuration.list_notifications(active_only=active_only))


@config_router.post("/notifications", status_code=status.HTTP_201_CREATED)
async def create_notification(container: ContainerDep, body: JsonBody) -> dict[str, Any]:
    config = await container.configuration.create_notification(body)
    return success(config, message="Notification created")


@config_router.get("/notifications/{config_id}")
async def get_notification(container: ContainerDep, config_id: int) -> dict[str, Any]:
    return success(await container.configuration.get_notification(config_id))


@config_router.put("/notifications/{config_id}")
async def update_notification(
    container: ContainerDep, config_id: int, body: JsonBody
) -> dict[str, Any]:
    config = await container.configuration.update_notification(config_id, body)
    return success(config, message="Notification updated")


@config_router.delete("/notifications/{config_id}")
async def delete_notification(container: ContainerDep, config_id: int) -> dict[str, Any]:
    await container.configuration.delete_notification(config_id)
    return success(None, message="Notification deleted")


@config_router.post("/notifications/{config_id}/test")
async def test_notification(container: ContainerDep, config_id: int) -> dict[str, Any]:
    return success(await container.configuration.test_notification(config_id))


# === Global configuration ===


@config_router.get("/providers")
async def list_providers(container: ContainerDep) -> dict[str, Any]:
    return success(container.configuration.providers())


@config_router.get("/global")
async def get_global_config(container: ContainerDep) -> dict[str, Any]:
    return success(container.configuration.get_global_config())


@config_router.put("/global")
async def update_global_config(container: ContainerDep, body: JsonBody) -> dict[str, Any]:
    return success(container.configuration.update_global_config(body), message="Configuration updated")


@config_router.get("/summary")
async def config_summary(container: ContainerDep) -> dict[str, Any]:
    return success(await container.configuration.summary())


# === Jobs ===


@batch_router.get("/jobs")
async def list_jobs(
    container: ContainerDep,
    folder_id: int | None = None,
    job_status: Annotated[JobStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict[str, Any]:
    jobs = await container.store.list_jobs(
        folder_id=folder_id, status=job_status, limit=limit, offset=offset
    )
    return success(jobs)


@batch_router.get("/jobs/{job_id}")
async def get_job(container: ContainerDep, job_id: int) -> dict[str, Any]:
    job = await container.store.get_job(job_id)
    return success({"job": job, "errors": await reports.error_summary(container.store, job_id)})


@batch_router.put("/jobs/{job_id}/cancel")
async def cancel_job(container: ContainerDep, job_id: int) -> dict[str, Any]:
    job = await container.service.cancel_job(job_id)
    return success(job, message="Cancellation requested")


@batch_router.post("/jobs/{job_id}/retry")
async def retry_job(
    container: ContainerDep, job_id: int, body: RetryRequest | None = None
) -> dict[str, Any]:
    reset = body.reset_retry_count if body else False
    records = await container.service.retry_job(job_id, reset_retry_count=reset)
    return success(records, message=f"{len(records)} files queued for retry")


# === File records ===


@batch_router.get("/files")
async def list_files(
    container: ContainerDep,
    job_id: int | None = None,
    folder_id: int | None = None,
    file_status: Annotated[FileStatus | None, Query(alias="status")] = None,
    search: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict[str, Any]:
    filters: dict[str, Any] = {
        "job_id": job_id, "folder_id": folder_id, "status": file_status, "file_name": search,
    }
    records = await container.store.list_records(**filters, limit=limit, offset=offset)
    total = await container.store.count_records(**filters)
    return success({"files": records, "total": total, "limit": limit, "offset": offset})


@batch_router.get("/files/{record_id}")
async def get_file(container: ContainerDep, record_id: int) -> dict[str, Any]:
    return success(await container.store.get_record(record_id))


@batch_router.post("/files/{record_id}/retry")
async def retry_file(
    container: ContainerDep, record_id: int, body: RetryRequest | None = None
) -> dict[str, Any]:
    reset = body.reset_retry_count if body else False
    record = await container.service.retry_record(record_id, reset_retry_count=reset)
    return success(record, message="File queued for retry")


@batch_router.get("/files/{record_id}/logs")
async def file_logs(container: ContainerDep, record_id: int) -> dict[str, Any]:
    record = await container.store.get_record(record_id)
    return success(reports.timeline(record))


@batch_router.get("/files/{record_id}/error-details")
async def file_error_details(container: ContainerDep, record_id: int) -> dict[str, Any]:
    record = await container.store.get_record(record_id)
    return success(reports.error_details(record))


# === Statistics / status ===


@batch_router.get("/stats")
async def stats(
    container: ContainerDep,
    job_id: int | None = None,
    folder_id: int | None = None,
    hours: Annotated[float | None, Query(gt=0)] = None,
) -> dict[str, Any]:
    return success(
        await reports.file_stats(container.store, job_id=job_id, folder_id=folder_id, hours=hours)
    )


@batch_router.get("/status")
async def service_status(container: ContainerDep) -> dict[str, Any]:
    return success(container.service.status())


@batch_router.websocket("/stream")
async def status_stream(websocket: WebSocket, folder_id: int | None = None) -> None:
    """Push every record/job transition, optionally for one folder only."""
    container: Container = websocket.app.state.container
    await websocket.accept()
    subscription = container.channel.subscribe(folder_id=folder_id)
    try:
        async for update in subscription:
            await websocket.send_json(jsonable_encoder(update))
    except WebSocketDisconnect:
        logger.debug("Status stream client disconnected")
    finally:
        subscription.close()
