"""
SFTP transport for state submission files.

Every operation runs inside ``SftpTransportClient.session()``, which opens a
connection, yields it, and closes it on every exit path. A connection
failure fails the whole batch; a failed write or download only fails that
file.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple, Union

import asyncssh

from wotc_sync.codecs.layouts import JurisdictionProfile, get_jurisdiction
from wotc_sync.core.config import settings
from wotc_sync.core.exceptions import ConfigurationError, TransportConnectionError

logger = logging.getLogger("wotc_sync.transport")

DETERMINATION_KEYWORDS = ("det", "determination", "result", "response")


@dataclass(frozen=True)
class RemoteEntry:
    name: str
    is_dir: bool = False
    is_file: bool = True
    size: Optional[int] = None


class TransportSession(Protocol):
    async def put(self, data: bytes, remote_path: str) -> None: ...

    async def list(self, directory: str) -> List[RemoteEntry]: ...

    async def get(self, remote_path: str) -> bytes: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class ProxyConfig:
    """SSH jump host the SFTP connection is tunnelled through."""
    host: str
    port: int = 22
    username: Optional[str] = None
    private_key: Optional[str] = field(default=None, repr=False)
    private_key_path: Optional[str] = None


@dataclass(frozen=True)
class SftpCredentials:
    host: str
    port: int
    username: str
    password: Optional[str] = field(default=None, repr=False)
    known_hosts: Optional[str] = None
    proxy: Optional[ProxyConfig] = None

    @classmethod
    def from_settings(
        cls,
        username: Optional[str] = None,
        password: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> "SftpCredentials":
        username = username or settings.SFTP_USERNAME
        if not username:
            raise ConfigurationError("SFTP username is not configured")

        proxy = None
        if settings.SFTP_PROXY_HOST:
            proxy = ProxyConfig(
                host=settings.SFTP_PROXY_HOST,
                port=settings.SFTP_PROXY_PORT,
                username=settings.SFTP_PROXY_USERNAME or username,
                private_key=settings.SFTP_PROXY_PRIVATE_KEY,
                private_key_path=settings.SFTP_PROXY_PRIVATE_KEY_PATH,
            )

        return cls(
            host=host or settings.SFTP_HOST,
            port=port or settings.SFTP_PORT,
            username=username,
            password=password if password is not None else settings.SFTP_PASSWORD,
            known_hosts=settings.SFTP_KNOWN_HOSTS,
            proxy=proxy,
        )


@dataclass
class UploadResult:
    success: bool
    jurisdiction: str
    remote_path: Optional[str] = None
    file_name: Optional[str] = None
    record_count: int = 0
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class DeterminationFile:
    name: str
    remote_path: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class DeterminationDownload:
    success: bool
    jurisdiction: str
    files: List[DeterminationFile] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ConnectionCheck:
    success: bool
    message: str
    directories: List[str] = field(default_factory=list)
    proxy_used: bool = False


def count_records(content: Union[str, bytes]) -> int:
    text = content.decode("ascii", errors="replace") if isinstance(content, bytes) else content
    return sum(1 for line in text.split("\n") if line.strip())


def _to_bytes(content: Union[str, bytes]) -> bytes:
    return content if isinstance(content, bytes) else content.encode("ascii")


class AsyncsshSession:
    """TransportSession backed by an asyncssh SFTP client."""

    def __init__(
        self,
        connection: "asyncssh.SSHClientConnection",
        sftp: "asyncssh.SFTPClient",
        tunnel: Optional["asyncssh.SSHClientConnection"] = None,
        operation_timeout: Optional[float] = None,
    ):
        self._connection = connection
        self._sftp = sftp
        self._tunnel = tunnel
        self._timeout = operation_timeout

    @classmethod
    async def open(cls, credentials: SftpCredentials) -> "AsyncsshSession":
        connect_timeout = settings.SFTP_CONNECT_TIMEOUT_SECONDS
        tunnel = None
        if credentials.proxy:
            tunnel = await asyncssh.connect(
                credentials.proxy.host,
                port=credentials.proxy.port,
                username=credentials.proxy.username,
                client_keys=_load_proxy_keys(credentials.proxy),
                known_hosts=credentials.known_hosts,
                connect_timeout=connect_timeout,
            )
            logger.info(f"SSH tunnel established via {credentials.proxy.host}:{credentials.proxy.port}")

        try:
            connection = await asyncssh.connect(
                credentials.host,
                port=credentials.port,
                username=credentials.username,
                password=credentials.password,
                known_hosts=credentials.known_hosts,
                tunnel=tunnel,
                connect_timeout=connect_timeout,
            )
            sftp = await connection.start_sftp_client()
        except Exception:
            if tunnel is not None:
                tunnel.close()
            raise

        return cls(connection, sftp, tunnel, settings.SFTP_OPERATION_TIMEOUT_SECONDS)

    async def _bounded(self, awaitable: Awaitable):
        if self._timeout:
            return await asyncio.wait_for(awaitable, self._timeout)
        return await awaitable

    async def put(self, data: bytes, remote_path: str) -> None:
        async def _write():
            async with self._sftp.open(remote_path, "wb") as handle:
                await handle.write(data)
        await self._bounded(_write())

    async def list(self, directory: str) -> List[RemoteEntry]:
        names = await self._bounded(self._sftp.readdir(directory))
        entries = []
        for name in names:
            if name.filename in (".", ".."):
                continue
            kind = name.attrs.type
            entries.append(RemoteEntry(
                name=name.filename,
                is_dir=kind == asyncssh.FILEXFER_TYPE_DIRECTORY,
                is_file=kind == asyncssh.FILEXFER_TYPE_REGULAR,
                size=name.attrs.size,
            ))
        return entries

    async def get(self, remote_path: str) -> bytes:
        async def _read():
            async with self._sftp.open(remote_path, "rb") as handle:
                return await handle.read()
        return await self._bounded(_read())

    async def close(self) -> None:
        self._sftp.exit()
        self._connection.close()
        await self._connection.wait_closed()
        if self._tunnel is not None:
            self._tunnel.close()
            await self._tunnel.wait_closed()


def _load_proxy_keys(proxy: ProxyConfig) -> Optional[list]:
    if proxy.private_key:
        return [asyncssh.import_private_key(proxy.private_key)]
    if proxy.private_key_path:
        return [asyncssh.read_private_key(proxy.private_key_path)]
    return None


SessionFactory = Callable[[SftpCredentials], Awaitable[TransportSession]]


class SftpTransportClient:
    """
    Uploads submission files and retrieves determination responses.

    Usage:
        client = SftpTransportClient(SftpCredentials.from_settings(user, password))
        result = await client.upload("GA", submission.content)
    """

    def __init__(self, credentials: SftpCredentials, session_factory: Optional[SessionFactory] = None):
        self.credentials = credentials
        self._session_factory = session_factory or AsyncsshSession.open

    @asynccontextmanager
    async def session(self) -> AsyncIterator[TransportSession]:
        # Key import and misconfiguration errors surface here too, not only socket errors
        try:
            session = await self._session_factory(self.credentials)
        except Exception as e:
            raise TransportConnectionError(f"{e.__class__.__name__}: {e}") from e

        logger.debug(f"SFTP session opened to {self.credentials.host}:{self.credentials.port}")
        try:
            yield session
        finally:
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"Error closing SFTP session: {e}")

    @staticmethod
    def _destination(jurisdiction: str) -> JurisdictionProfile:
        profile = get_jurisdiction(jurisdiction)
        if not profile.remote_path:
            raise ConfigurationError(f"{profile.code} has no SFTP destination")
        return profile

    async def upload(self, jurisdiction: str, content: Union[str, bytes]) -> UploadResult:
        return (await self.upload_batch([(jurisdiction, content)]))[0]

    async def upload_batch(self, files: Sequence[Tuple[str, Union[str, bytes]]]) -> List[UploadResult]:
        """
        Upload several files over one session.

        Jurisdictions are resolved before connecting, so an unknown code raises
        ConfigurationError and nothing is sent.
        """
        planned = [(self._destination(code), content) for code, content in files]

        try:
            async with self.session() as session:
                results = []
                for profile, content in planned:
                    results.append(await self._put_one(session, profile, content))
                return results
        except TransportConnectionError as e:
            logger.error(f"SFTP connection failed: {e}")
            return [
                UploadResult(
                    success=False,
                    jurisdiction=profile.code,
                    remote_path=profile.remote_path,
                    file_name=profile.file_name,
                    record_count=count_records(content),
                    error=f"Connection failed: {e}",
                )
                for profile, content in planned
            ]

    async def _put_one(
        self,
        session: TransportSession,
        profile: JurisdictionProfile,
        content: Union[str, bytes],
    ) -> UploadResult:
        record_count = count_records(content)
        try:
            await session.put(_to_bytes(content), profile.remote_path)
        except Exception as e:
            logger.error(f"Upload to {profile.remote_path} failed: {e}")
            return UploadResult(
                success=False,
                jurisdiction=profile.code,
                remote_path=profile.remote_path,
                file_name=profile.file_name,
                record_count=record_count,
                error=str(e) or e.__class__.__name__,
            )

        logger.info(f"Uploaded {record_count} record(s) to {profile.remote_path}")
        return UploadResult(
            success=True,
            jurisdiction=profile.code,
            remote_path=profile.remote_path,
            file_name=profile.file_name,
            record_count=record_count,
        )

    async def download_determinations(self, jurisdiction: str) -> DeterminationDownload:
        profile = self._destination(jurisdiction)
        directory = profile.remote_directory
        result = DeterminationDownload(success=True, jurisdiction=profile.code)

        try:
            async with self.session() as session:
                entries = await session.list(directory)
                candidates = [
                    entry for entry in entries
                    if entry.is_file and any(k in entry.name.lower() for k in DETERMINATION_KEYWORDS)
                ]
                for entry in candidates:
                    remote_path = f"{directory}/{entry.name}"
                    try:
                        content = await session.get(remote_path)
                    except Exception as e:
                        logger.warning(f"Skipping {remote_path}: {e}")
                        result.skipped.append(entry.name)
                        continue
                    result.files.append(DeterminationFile(entry.name, remote_path, content))
        except TransportConnectionError as e:
            logger.error(f"Determination download for {profile.code} failed: {e}")
            return DeterminationDownload(success=False, jurisdiction=profile.code, error=f"Connection failed: {e}")
        except Exception as e:
            logger.error(f"Listing {directory} failed: {e}")
            return DeterminationDownload(success=False, jurisdiction=profile.code, error=str(e))

        logger.info(f"Downloaded {len(result.files)} determination file(s) for {profile.code}")
        return result

    async def test_connection(self) -> ConnectionCheck:
        proxy_used = self.credentials.proxy is not None
        try:
            async with self.session() as session:
                entries = await session.list("/")
        except Exception as e:
            return ConnectionCheck(success=False, message=f"Connection failed: {e}", proxy_used=proxy_used)

        directories = [e.name for e in entries if e.is_dir or ".DIR" in e.name.upper()]
        return ConnectionCheck(
            success=True,
            message=f"Connected to {self.credentials.host}:{self.credentials.port}",
            directories=directories,
            proxy_used=proxy_used,
        )
