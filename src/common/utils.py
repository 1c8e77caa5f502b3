import io
from contextlib import contextmanager
from collections.abc import Iterator

import msgspec

from src.common.errors import SourceError


# --- 1. MSGSPEC STRUCTS (validación estructural por registro) ---


class ClickEvent(msgspec.Struct, frozen=True):
    """One click as it appears in the decodes array. Missing fields decode as ""."""

    short_link: str = msgspec.field(default="", name="bitlink")
    user_agent: str = ""
    timestamp: str = ""
    referrer: str = ""
    remote_address: str = msgspec.field(default="", name="remote_ip")


# Decodificador pre-compilado (Performance)
click_decoder = msgspec.json.Decoder(ClickEvent)


# --- 2. FUENTES DE BYTES (local y GCS) ---


def _get_gcs_blob(file_path: str):
    """Auxiliar para obtener el blob de GCS."""
    from google.cloud import storage

    path_parts = file_path.replace("gs://", "").split("/")
    bucket_name = path_parts[0]
    blob_name = "/".join(path_parts[1:])
    client = storage.Client()
    bucket = client.bucket(bucket_name)
    return bucket.blob(blob_name)


@contextmanager
def open_source(file_path: str) -> Iterator[io.BufferedIOBase]:
    """
    Opens a byte source for sequential reading. Supports local paths and gs://.
    GCS blobs are read through a BlobReader, so nothing is downloaded up front.
    Raises SourceError when the source does not exist or cannot be opened.
    """
    if file_path.startswith("gs://"):
        blob = _get_gcs_blob(file_path)
        if not blob.exists():
            raise SourceError(file_path, "blob not found")
        file_obj = blob.open("rb")
    else:
        try:
            file_obj = open(file_path, "rb")
        except OSError as e:
            raise SourceError(file_path, e.strerror or str(e)) from e

    try:
        yield file_obj
    finally:
        file_obj.close()
