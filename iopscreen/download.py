from __future__ import annotations

import hashlib
import logging
import os
import shutil
import sys
import tempfile
from http.client import HTTPException
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .descriptor import ModelDescriptor, load_descriptor
from .errors import ArtifactError, DownloadError, MissingShardError
from .registry import DESCRIPTOR_FILENAME, ModelSpec, get_model_spec, model_root_url

logger = logging.getLogger(__name__)

USER_AGENT = "iopscreen"


def default_cache_dir() -> Path:
    env_cache = os.getenv("IOPSCREEN_CACHE_DIR")
    if env_cache:
        return Path(env_cache).expanduser().resolve()

    xdg_cache = os.getenv("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache).expanduser().resolve() / "iopscreen" / "models"

    return Path.home() / ".cache" / "iopscreen" / "models"


def _print_progress(prefix: str, downloaded: int, total: int | None) -> None:
    if total is None or total <= 0:
        sys.stderr.write(f"\r{prefix}: {downloaded / (1024 * 1024):.1f} MiB")
    else:
        pct = min(100.0, 100.0 * downloaded / total)
        sys.stderr.write(
            f"\r{prefix}: {pct:6.2f}% ({downloaded / (1024 * 1024):.1f}/{total / (1024 * 1024):.1f} MiB)"
        )
    sys.stderr.flush()


def download_url_to_file(
    url: str,
    destination: Path,
    *,
    expected_sha256: str | None = None,
    show_progress: bool = False,
    timeout_sec: int = 60,
) -> Path:
    """Fetch ``url`` into ``destination`` through a temporary sibling file.

    The destination only appears once the body has been fully written and,
    when ``Content-Length`` or ``expected_sha256`` is known, checked against
    it. An interrupted or short transfer never leaves a file behind.
    """
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)

    req = Request(url, headers={"User-Agent": USER_AGENT})
    try:
        response = urlopen(req, timeout=timeout_sec)
    except HTTPError as exc:
        raise DownloadError(
            f"Download of {url} failed with HTTP {exc.code}", url=url, status=exc.code
        ) from exc
    except (URLError, OSError, HTTPException) as exc:
        reason = getattr(exc, "reason", exc)
        raise DownloadError(f"Unable to download {url}: {reason}", url=url) from exc

    status = getattr(response, "status", None)
    if status is not None and not 200 <= status < 300:
        response.close()
        raise DownloadError(f"Download of {url} failed with HTTP {status}", url=url, status=status)

    total: int | None = None
    content_length = response.headers.get("Content-Length")
    if content_length and content_length.isdigit():
        total = int(content_length)

    tmp_file = tempfile.NamedTemporaryFile(
        delete=False, dir=destination.parent, prefix=".download-"
    )
    hasher = hashlib.sha256() if expected_sha256 else None
    downloaded = 0

    try:
        with response:
            while True:
                chunk = response.read(8192)
                if not chunk:
                    break
                tmp_file.write(chunk)
                downloaded += len(chunk)
                if hasher is not None:
                    hasher.update(chunk)
                if show_progress:
                    _print_progress(destination.name, downloaded, total)

        tmp_file.close()
        if show_progress:
            sys.stderr.write("\n")

        if total is not None and downloaded != total:
            raise DownloadError(
                f"Download of {url} is incomplete: got {downloaded} of {total} bytes",
                url=url,
                status=status,
            )
        if hasher is not None:
            digest = hasher.hexdigest()
            if digest.lower() != expected_sha256.lower():
                raise DownloadError(
                    f"SHA256 mismatch for {destination.name}: expected {expected_sha256}, got {digest}",
                    url=url,
                    status=status,
                )

        Path(tmp_file.name).replace(destination)
    except (OSError, HTTPException) as exc:
        raise DownloadError(f"Transfer of {url} was interrupted: {exc}", url=url, status=status) from exc
    finally:
        tmp_file.close()
        if os.path.exists(tmp_file.name):
            os.remove(tmp_file.name)

    return destination


def probe_url(url: str, *, timeout_sec: int = 10) -> int | None:
    """HEAD ``url`` and return its status code, or ``None`` when unreachable."""
    req = Request(url, method="HEAD", headers={"User-Agent": USER_AGENT})
    try:
        with urlopen(req, timeout=timeout_sec) as response:
            status = getattr(response, "status", None)
    except HTTPError as exc:
        logger.warning(f"Model URL {url} returned error status {exc.code}")
        return exc.code
    except (URLError, OSError, HTTPException) as exc:
        logger.warning(f"Model URL {url} is unreachable: {getattr(exc, 'reason', exc)}")
        return None
    # file:// responses carry no status
    return status if status is not None else 200


class ArtifactCache:
    """Keeps one model's descriptor and weight shards in a local directory.

    ``base_url`` is the remote directory holding ``model.json`` and the
    shards it lists; ``model_dir`` is the persistent local mirror of it.
    """

    def __init__(
        self,
        base_url: str,
        model_dir: Path | str,
        *,
        show_progress: bool = False,
        timeout_sec: int = 60,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model_dir = Path(model_dir).expanduser().resolve()
        self.show_progress = show_progress
        self.timeout_sec = timeout_sec

    @classmethod
    def for_model(
        cls,
        model: str | ModelSpec,
        *,
        base_url: str | None = None,
        cache_dir: Path | str | None = None,
        **kwargs,
    ) -> ArtifactCache:
        spec = get_model_spec(model)
        cache_root = (
            Path(cache_dir).expanduser().resolve()
            if cache_dir is not None
            else default_cache_dir()
        )
        return cls(model_root_url(spec, base_url), cache_root / spec.model_id, **kwargs)

    @property
    def descriptor_path(self) -> Path:
        return self.model_dir / DESCRIPTOR_FILENAME

    @property
    def descriptor_url(self) -> str:
        return f"{self.base_url}/{DESCRIPTOR_FILENAME}"

    def shard_url(self, shard: str) -> str:
        return f"{self.base_url}/{quote(shard)}"

    def ensure_file(
        self,
        remote_url: str,
        local_path: Path | str,
        *,
        expected_sha256: str | None = None,
    ) -> bool:
        """Download ``remote_url`` unless ``local_path`` exists. Returns True on download."""
        local_path = Path(local_path)
        if local_path.exists():
            logger.debug(f"File already exists locally: {local_path}")
            return False

        logger.info(f"Downloading {remote_url} to {local_path}")
        download_url_to_file(
            remote_url,
            local_path,
            expected_sha256=expected_sha256,
            show_progress=self.show_progress,
            timeout_sec=self.timeout_sec,
        )
        return True

    def validate_cache(self, descriptor_path: Path | str | None = None) -> ModelDescriptor:
        descriptor_path = Path(descriptor_path) if descriptor_path is not None else self.descriptor_path
        descriptor = load_descriptor(descriptor_path)
        for shard in descriptor.shard_paths:
            shard_path = descriptor_path.parent / shard
            if not shard_path.is_file() or shard_path.stat().st_size == 0:
                raise MissingShardError(shard, path=str(shard_path))
        return descriptor

    def clear(self) -> None:
        try:
            shutil.rmtree(self.model_dir)
        except FileNotFoundError:
            logger.debug(f"No model cache to clear at {self.model_dir}")
            return
        logger.info(f"Model cache cleared: {self.model_dir}")

    def ensure_artifacts(self) -> ModelDescriptor:
        """Make the descriptor and every shard it lists available locally.

        A cold cache is filled from the remote origin; any failure on that path
        clears the directory and surfaces as :class:`DownloadError`. A warm
        cache is only validated, and validation failures propagate unchanged so
        the caller can decide whether to clear and retry.
        """
        self.model_dir.mkdir(parents=True, exist_ok=True)

        if self.descriptor_path.exists():
            logger.info(f"Model found in cache at {self.model_dir}. Validating...")
            return self.validate_cache()

        logger.info(f"Model not found locally. Downloading from {self.base_url}")
        try:
            self.ensure_file(self.descriptor_url, self.descriptor_path)
            descriptor = load_descriptor(self.descriptor_path)
            logger.info(f"Downloading {len(descriptor.shard_paths)} weight file(s)...")
            for shard in descriptor.shard_paths:
                self.ensure_file(
                    self.shard_url(shard),
                    self.model_dir / shard,
                    expected_sha256=descriptor.shard_sha256.get(shard),
                )
            descriptor = self.validate_cache()
        except ArtifactError as exc:
            logger.error(f"Error during model download/validation: {exc}")
            self.clear()
            if isinstance(exc, DownloadError):
                raise
            raise DownloadError(
                f"Failed to download/validate model files: {exc.message}",
                url=self.descriptor_url,
            ) from exc

        logger.info("All model files downloaded successfully.")
        return descriptor

    def probe(self, url: str | None = None) -> int | None:
        return probe_url(url or self.descriptor_url, timeout_sec=self.timeout_sec)

    def cached_files(self) -> list[Path]:
        if not self.model_dir.exists():
            return []
        return sorted(path for path in self.model_dir.iterdir() if path.is_file())


def download_model(
    model: str | ModelSpec,
    *,
    base_url: str | None = None,
    cache_dir: Path | str | None = None,
    force: bool = False,
    show_progress: bool = True,
    timeout_sec: int = 60,
) -> Path:
    """Fill the cache for ``model`` and return its local directory."""
    cache = ArtifactCache.for_model(
        model,
        base_url=base_url,
        cache_dir=cache_dir,
        show_progress=show_progress,
        timeout_sec=timeout_sec,
    )
    if force:
        cache.clear()
    cache.ensure_artifacts()
    return cache.model_dir
