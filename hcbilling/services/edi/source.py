"""Loading EDI file contents, including 835 files delivered inside a zip."""
import io
import zipfile
from pathlib import Path
from typing import Union

from hcbilling.utils.errors import EdiError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)


def is_zip_name(filename: str) -> bool:
    return filename.lower().endswith(".zip")


def extract_835(archive_bytes: bytes, filename: str = "") -> bytes:
    """
    Return the contents of the first ``*.835`` entry of a zip archive.

    Raises:
        EdiError: If the data is not a zip or holds no ``.835`` entry
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(archive_bytes))
    except zipfile.BadZipFile:
        raise EdiError("%s is not a valid zip archive." % (filename or "The file")) from None

    with archive:
        for name in archive.namelist():
            if name.lower().endswith(".835"):
                logger.debug("Extracting 835 from archive", archive=filename, entry=name)
                return archive.read(name)

    raise EdiError("No 835 file found in this zip.", details={"archive": filename})


def load_edi_bytes(data: bytes, filename: str) -> bytes:
    """Unwrap ``data`` if ``filename`` names a zip archive."""
    if is_zip_name(filename):
        return extract_835(data, filename)
    return data


def read_edi_file(path: Union[str, Path]) -> bytes:
    """Read an EDI file from disk, unwrapping zip archives."""
    path = Path(path)
    return load_edi_bytes(path.read_bytes(), path.name)
