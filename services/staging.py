"""
Temp-file staging for externally referenced files.

Fetched bytes are written to a scratch directory under a name derived from
their source key, so repeated references inside the expiry window are served
from disk. A periodic sweep removes files older than the expiry.
"""

import asyncio
import hashlib
import logging
import os
import time
import uuid
from typing import Optional

import aiofiles

import config

logger = logging.getLogger(__name__)


class FileStager:
    """Stage bytes on local disk with a fixed time-to-live."""

    def __init__(self, directory: str = None, ttl_seconds: int = None):
        self.directory = directory or config.TEMP_DIR
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.STAGING_TTL_SECONDS

    def path_for(self, key: str, suffix: str = '') -> str:
        digest = hashlib.sha256(key.encode('utf-8')).hexdigest()
        return os.path.join(self.directory, f"staged_{digest}{suffix}")

    def is_fresh(self, path: str, now: Optional[float] = None) -> bool:
        try:
            age = (now or time.time()) - os.path.getmtime(path)
        except OSError:
            return False
        return age < self.ttl_seconds

    async def stage(self, key: str, data: bytes, suffix: str = '') -> str:
        """Write data for key and return the staged file path"""
        os.makedirs(self.directory, exist_ok=True)
        path = self.path_for(key, suffix)
        # Readers only ever see complete files
        partial_path = f"{path}.{uuid.uuid4().hex}.part"
        async with aiofiles.open(partial_path, 'wb') as out_file:
            await out_file.write(data)
        os.replace(partial_path, path)
        logger.info(f"Staged {len(data)} bytes for {key} at {path}")
        return path

    async def lookup(self, key: str, suffix: str = '') -> Optional[bytes]:
        """Return staged bytes for key, or None when absent or expired"""
        path = self.path_for(key, suffix)
        if not self.is_fresh(path):
            return None
        try:
            async with aiofiles.open(path, 'rb') as in_file:
                data = await in_file.read()
        except FileNotFoundError:
            # Swept between the freshness check and the read
            return None
        logger.debug(f"Staging hit for {key}")
        return data

    def remove_temporary_files(self) -> int:
        """Delete every file in the scratch directory older than the TTL"""
        if not os.path.isdir(self.directory):
            return 0

        removed = 0
        now = time.time()
        for name in os.listdir(self.directory):
            path = os.path.join(self.directory, name)
            if not os.path.isfile(path) or self.is_fresh(path, now):
                continue
            try:
                os.remove(path)
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to clean up file {path}: {e}")

        if removed:
            logger.info(f"Removed {removed} expired temporary files from {self.directory}")
        return removed

    async def sweep_forever(self, interval_seconds: int = None):
        """Run remove_temporary_files every interval until cancelled"""
        interval = interval_seconds or config.STAGING_SWEEP_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            try:
                self.remove_temporary_files()
            except Exception as e:
                logger.error(f"Temporary file sweep failed: {e}")


stager = FileStager()


def remove_temporary_files() -> int:
    return stager.remove_temporary_files()
