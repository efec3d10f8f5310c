"""File-listing relay.

Request/response pairs are built from differently-named events:

  request-files  → device: request-file-list     device: file-list → file-list-update
  download-file  → device: download-file-request device: file-data → file-data
  delete-file    → device: delete-file           (no response)

Files travel as a single base64 blob; nothing is chunked or resumable.
"""

from __future__ import annotations

import logging

from sentinel.relay.messages import DeleteFile, DownloadFile, FileData, FileList, RequestFiles
from sentinel.relay.registry import SessionRegistry
from sentinel.relay.signaling import deliver_to_controllers

logger = logging.getLogger(__name__)


class FileRelay:
    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    # ── Controller → device ───────────────────────────────────────

    async def request(self, msg: RequestFiles, requester: str) -> bool:
        return await self._to_device(msg.target_device_id, "request-file-list", {"target": requester})

    async def download(self, msg: DownloadFile, requester: str) -> bool:
        return await self._to_device(
            msg.target_device_id,
            "download-file-request",
            {"filePath": msg.file_path, "fileName": msg.file_name, "target": requester},
        )

    async def delete(self, msg: DeleteFile, requester: str) -> bool:
        return await self._to_device(
            msg.target_device_id,
            "delete-file",
            {"filePath": msg.file_path, "target": requester},
        )

    # ── Device → controller ───────────────────────────────────────

    async def file_list(self, msg: FileList, device_id: str) -> int:
        files = [f.model_dump() for f in msg.files]
        logger.info("File list from %s: %d items", device_id, len(files))
        return await deliver_to_controllers(self.registry, "file-list-update", files, msg.target)

    async def file_data(self, msg: FileData, device_id: str) -> int:
        logger.info("File data from %s: %s (%d base64 chars)", device_id, msg.file_name, len(msg.data))
        return await deliver_to_controllers(
            self.registry,
            "file-data",
            {"fileName": msg.file_name, "data": msg.data, "from": device_id},
            msg.target,
        )

    async def _to_device(self, device_id: str, event: str, payload: dict) -> bool:
        device = self.registry.find(device_id)
        if device is None:
            logger.warning("Device %s not found, dropping %s", device_id, event)
            return False
        return await device.handle.send(event, payload)
