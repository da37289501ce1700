"""Safe ZIP extraction for UPD archives.

Every entry is checked before anything is written: an entry whose resolved
path is not strictly inside the target directory aborts the whole extraction.
"""

import shutil
import zipfile
from pathlib import Path

from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import InvalidArchiveError, IOFailureError, PathTraversalError


def _resolve_entry(root: Path, entry_name: str) -> Path:
    """Resolve an archive entry name against the extraction root.

    Args:
        root: Resolved extraction root
        entry_name: Entry name as stored in the archive

    Returns:
        Absolute output path for the entry

    Raises:
        PathTraversalError: If the entry escapes the extraction root
    """
    target = (root / entry_name).resolve()
    if target == root or not target.is_relative_to(root):
        raise PathTraversalError(entry_name)
    return target


def extract_archive(archive_path: Path, target_dir: Path, ctx: RequestContext) -> Path:
    """Extract a ZIP archive into a scratch directory.

    Args:
        archive_path: Path to the uploaded archive
        target_dir: Scratch directory unique to the request (created if missing)
        ctx: Request context

    Returns:
        The extraction directory

    Raises:
        InvalidArchiveError: If the archive cannot be opened
        PathTraversalError: If any entry would be written outside target_dir
        IOFailureError: On any filesystem write error
    """
    try:
        archive = zipfile.ZipFile(archive_path)
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise InvalidArchiveError(f"Invalid ZIP file: {e}") from e
    except OSError as e:
        raise IOFailureError(f"Failed to open archive {archive_path.name}: {e}") from e

    with archive:
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailureError(f"Failed to create extraction directory: {e}") from e
        root = target_dir.resolve()

        entries = [(info, _resolve_entry(root, info.filename)) for info in archive.infolist()]

        for info, target in entries:
            try:
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as source, open(target, "wb") as destination:
                    shutil.copyfileobj(source, destination)
            except zipfile.BadZipFile as e:
                raise InvalidArchiveError(f"Corrupted archive entry {info.filename}: {e}") from e
            except OSError as e:
                raise IOFailureError(f"Failed to extract {info.filename}: {e}") from e

    ctx.log.debug(f"Archive extracted to: {target_dir} ({len(entries)} entries)")
    return target_dir
