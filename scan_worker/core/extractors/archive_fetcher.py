# Copyright 2026 Cisco Systems, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""
Size-bounded retrieval of distribution artifacts.

Artifacts come from untrusted registries, so every byte is counted as it
arrives. Tarballs are gunzipped incrementally and the decompressed size
is bounded; zips are bounded on the downloaded size and again per entry
when an entry is decompressed on read. Nothing is ever read to completion
first and checked afterwards.
"""

from __future__ import annotations

import io
import logging
import lzma
import tarfile
import time
import zipfile
import zlib
from collections.abc import Iterable, Iterator
from typing import IO
from urllib.parse import urlparse

import httpx

from ...config.constants import ScanWorkerConstants
from ..exceptions import ArchiveFormatError, DownloadTooLarge, TransportError, UnsupportedDistributionError
from ..models import ArchiveEntry, DistributionKind

logger = logging.getLogger(__name__)

# zlib window bits that accept a gzip header and trailer
GZIP_WBITS = 16 + zlib.MAX_WBITS


def distribution_kind(url: str) -> DistributionKind:
    """
    Classify a distribution URL by its file suffix.

    Raises:
        UnsupportedDistributionError: If the suffix is not a known archive
    """
    path = urlparse(url).path.lower()
    if path.endswith(ScanWorkerConstants.TARBALL_SUFFIXES):
        return DistributionKind.TARBALL
    if path.endswith(ScanWorkerConstants.ZIP_SUFFIXES):
        return DistributionKind.ZIP
    raise UnsupportedDistributionError(f"Unsupported distribution type: {url}", url)


class BoundedBuffer:
    """In-memory sink that refuses to grow past ``limit`` bytes."""

    def __init__(self, limit: int, url: str):
        self.limit = limit
        self.url = url
        self.size = 0
        self._buffer = io.BytesIO()

    @property
    def remaining(self) -> int:
        return self.limit - self.size

    def write(self, data: bytes) -> None:
        if self.size + len(data) > self.limit:
            raise DownloadTooLarge(self.url, self.limit)
        self._buffer.write(data)
        self.size += len(data)

    def seekable_buffer(self) -> io.BytesIO:
        """Rewind and hand over the underlying buffer."""
        self._buffer.seek(0)
        return self._buffer


class BoundedReader(io.RawIOBase):
    """Read-only stream wrapper that fails once more than ``limit`` bytes are read."""

    def __init__(self, raw: IO[bytes], limit: int, url: str, name: str):
        self._raw = raw
        self.limit = limit
        self.url = url
        self.name = name
        self.count = 0

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        allowed = self.limit - self.count + 1
        if size is None or size < 0 or size > allowed:
            size = allowed
        try:
            data = self._raw.read(size)
        except (zipfile.BadZipFile, tarfile.TarError, zlib.error, lzma.LZMAError, EOFError, OSError) as e:
            # bz2 reports corrupt data as OSError, lzma as LZMAError
            raise ArchiveFormatError(f"Corrupt archive entry {self.name}: {e}", self.url) from e
        self.count += len(data)
        if self.count > self.limit:
            raise DownloadTooLarge(self.url, self.limit)
        return data

    def close(self) -> None:
        self._raw.close()
        super().close()


def gunzip_bounded(chunks: Iterable[bytes], sink: BoundedBuffer) -> None:
    """
    Decompress a gzip stream chunk by chunk into ``sink``.

    Each decompression step is capped at one byte past the space left in
    the sink, so a gzip bomb is caught after at most ``limit + 1`` bytes of
    output. Concatenated gzip members are all decompressed; zero padding
    between or after members is skipped.

    Raises:
        DownloadTooLarge: If the decompressed size exceeds the sink limit
        ArchiveFormatError: If the stream is not valid gzip
    """
    decompressor = zlib.decompressobj(GZIP_WBITS)
    member_started = False
    seen_any = False

    try:
        for chunk in chunks:
            data = chunk
            while data:
                if not member_started:
                    data = data.lstrip(b"\x00")
                    if not data:
                        break
                    member_started = True
                    seen_any = True
                sink.write(decompressor.decompress(data, sink.remaining + 1))
                if decompressor.eof:
                    data = decompressor.unused_data
                    decompressor = zlib.decompressobj(GZIP_WBITS)
                    member_started = False
                else:
                    data = decompressor.unconsumed_tail
    except zlib.error as e:
        raise ArchiveFormatError(f"Invalid gzip data: {e}", sink.url) from e

    if not seen_any:
        raise ArchiveFormatError("Empty gzip stream", sink.url)
    if member_started:
        raise ArchiveFormatError("Truncated gzip stream", sink.url)


class TarContainer:
    """A retrieved tarball, iterated entry by entry."""

    def __init__(self, buffer: io.BytesIO, url: str):
        self.url = url
        self._consumed = False
        try:
            self._archive = tarfile.open(fileobj=buffer, mode="r:")
        except tarfile.TarError as e:
            raise ArchiveFormatError(f"Invalid tar archive: {e}", url) from e

    def entries(self) -> Iterator[ArchiveEntry]:
        """Yield regular files in archive order. Single pass only."""
        if self._consumed:
            raise RuntimeError("Archive entries can only be iterated once")
        self._consumed = True
        try:
            for member in self._archive:
                if not member.isfile():
                    continue
                stream = self._archive.extractfile(member)
                if stream is None:
                    continue
                bounded = BoundedReader(stream, member.size, self.url, member.name)
                yield ArchiveEntry(name=member.name, size=member.size, stream=bounded)
        except tarfile.TarError as e:
            raise ArchiveFormatError(f"Invalid tar archive: {e}", self.url) from e

    def close(self) -> None:
        self._archive.close()

    def __enter__(self) -> TarContainer:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ZipContainer:
    """A retrieved zip archive. Entries are decompressed only when read."""

    def __init__(self, buffer: io.BytesIO, url: str, max_entry_size: int):
        self.url = url
        self.max_entry_size = max_entry_size
        self._consumed = False
        try:
            self._archive = zipfile.ZipFile(buffer)
        except zipfile.BadZipFile as e:
            raise ArchiveFormatError(f"Invalid zip archive: {e}", url) from e

    def entries(self) -> Iterator[ArchiveEntry]:
        """
        Yield regular files in central-directory order. Single pass only.

        Zip entries are independent, so an entry that cannot be opened or
        declares more than ``max_entry_size`` bytes is logged and skipped.
        Failures while reading a yielded entry surface from ``entry.read()``
        and leave the remaining entries readable.
        """
        if self._consumed:
            raise RuntimeError("Archive entries can only be iterated once")
        self._consumed = True
        for info in self._archive.infolist():
            if info.is_dir():
                continue
            if info.file_size > self.max_entry_size:
                logger.warning(
                    "Skipping zip entry %s in %s: declares %d bytes, limit is %d",
                    info.filename,
                    self.url,
                    info.file_size,
                    self.max_entry_size,
                )
                continue
            try:
                raw = self._archive.open(info)
            except (NotImplementedError, RuntimeError, zipfile.BadZipFile, OSError) as e:
                # Unsupported compression, encrypted entry or bad local header
                logger.warning("Skipping unreadable zip entry %s in %s: %s", info.filename, self.url, e)
                continue
            stream = BoundedReader(raw, self.max_entry_size, self.url, info.filename)
            yield ArchiveEntry(name=info.filename, size=info.file_size, stream=stream)

    def close(self) -> None:
        self._archive.close()

    def __enter__(self) -> ZipContainer:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ArchiveFetcher:
    """Downloads distribution artifacts with a hard size and time cap."""

    def __init__(
        self,
        client: httpx.Client,
        max_size: int = ScanWorkerConstants.MAX_DOWNLOAD_SIZE,
        download_timeout_seconds: float | None = ScanWorkerConstants.DEFAULT_DOWNLOAD_TIMEOUT,
        chunk_size: int = ScanWorkerConstants.DOWNLOAD_CHUNK_SIZE,
    ):
        """
        Initialize the fetcher.

        Args:
            client: Shared HTTP client
            max_size: Byte bound on decompressed tarballs, zip downloads and
                individual zip entries
            download_timeout_seconds: Wall-clock cap on one download; None
                disables it
            chunk_size: Read size while streaming
        """
        self.client = client
        self.max_size = max_size
        self.download_timeout_seconds = download_timeout_seconds
        self.chunk_size = chunk_size

    def fetch(self, url: str) -> TarContainer | ZipContainer:
        """Fetch a distribution, choosing the container from the URL suffix."""
        if distribution_kind(url) is DistributionKind.TARBALL:
            return self.fetch_tarball(url)
        return self.fetch_zip(url)

    def fetch_tarball(self, url: str) -> TarContainer:
        """
        Fetch a gzipped tarball.

        Raises:
            DownloadTooLarge: If the decompressed tar exceeds ``max_size``
            TransportError: On network, HTTP or timeout failure
            ArchiveFormatError: If the body is not a gzipped tar
        """
        sink = BoundedBuffer(self.max_size, url)
        self._download(url, lambda chunks: gunzip_bounded(chunks, sink), check_length=False)
        logger.debug("Fetched tarball %s (%d bytes decompressed)", url, sink.size)
        return TarContainer(sink.seekable_buffer(), url)

    def fetch_zip(self, url: str) -> ZipContainer:
        """
        Fetch a zip archive (wheel, egg or plain zip).

        Raises:
            DownloadTooLarge: If the download exceeds ``max_size``
            TransportError: On network, HTTP or timeout failure
            ArchiveFormatError: If the body is not a zip
        """
        sink = BoundedBuffer(self.max_size, url)

        def consume(chunks: Iterable[bytes]) -> None:
            for chunk in chunks:
                sink.write(chunk)

        self._download(url, consume, check_length=True)
        logger.debug("Fetched zip %s (%d bytes)", url, sink.size)
        return ZipContainer(sink.seekable_buffer(), url, self.max_size)

    def _download(self, url: str, consume, check_length: bool) -> None:
        """Stream ``url`` into ``consume`` while enforcing the time cap."""
        try:
            with self.client.stream("GET", url, headers={"Accept-Encoding": "identity"}) as response:
                response.raise_for_status()

                encoding = response.headers.get("Content-Encoding", "identity").lower()
                if encoding != "identity":
                    raise ArchiveFormatError(f"Unexpected Content-Encoding {encoding!r}", url)

                if check_length:
                    declared = response.headers.get("Content-Length")
                    if declared and declared.isdigit() and int(declared) > self.max_size:
                        raise DownloadTooLarge(url, self.max_size)

                consume(self._timed_chunks(response, url))
        except httpx.TimeoutException as e:
            raise TransportError(f"GET {url} timed out: {e}", url=url) from e
        except httpx.HTTPStatusError as e:
            raise TransportError(f"GET {url} returned HTTP {e.response.status_code}", url=url) from e
        except httpx.RequestError as e:
            raise TransportError(f"GET {url} failed: {e}", url=url) from e

    def _timed_chunks(self, response: httpx.Response, url: str) -> Iterator[bytes]:
        started = time.monotonic()
        for chunk in response.iter_raw(self.chunk_size):
            if self.download_timeout_seconds is not None:
                if time.monotonic() - started > self.download_timeout_seconds:
                    raise TransportError(
                        f"GET {url} exceeded download timeout of {self.download_timeout_seconds}s", url=url
                    )
            yield chunk
