"""
Writes title, album, artist, and cover art into MP3 (ID3v2.4) and FLAC
containers, editing files in place for disk buffers and rebuilding the byte
buffer for memory buffers.
"""

import io
import logging
from dataclasses import replace

import mutagen.id3 as id3
from mutagen import MutagenError
from mutagen.flac import FLAC, Picture
from PIL import Image, UnidentifiedImageError

from songrelay.exceptions import FormatError
from songrelay.media.buffer import AudioBuffer
from songrelay.models.song import TagPayload

log = logging.getLogger(__name__)

# --- Constants ---
ID3_HEADER_SIZE = 10
ID3_FOOTER_FLAG = 0x10
FLAC_MAGIC = b"fLaC"
FLAC_BLOCK_HEADER_SIZE = 4
FLAC_MAX_BLOCKSIZE = 16777215  # ~16.7MB, max size for a FLAC metadata block
MP3_COVER_DESCRIPTION = "Album Cover"
FLAC_COVER_DESCRIPTION = "Front cover"


def decode_syncsafe(size_bytes: bytes) -> int:
    """Decodes a 4-byte ID3v2 syncsafe integer (7 significant bits per byte)."""
    size = 0
    for byte in size_bytes[:4]:
        size = (size << 7) | (byte & 0x7F)
    return size


def find_mp3_audio_start(data: bytes | bytearray) -> int:
    """
    Returns the offset of the first byte after a leading ID3v2 tag, or 0 when
    the data does not start with one.
    """
    if len(data) < ID3_HEADER_SIZE or data[:3] != b"ID3":
        return 0
    size = decode_syncsafe(data[6:10])
    footer = ID3_HEADER_SIZE if data[5] & ID3_FOOTER_FLAG else 0
    return ID3_HEADER_SIZE + size + footer


def find_flac_audio_start(data: bytes | bytearray) -> int:
    """
    Walks the FLAC metadata block headers and returns the offset of the first
    audio frame byte.

    Raises:
        FormatError: If the magic is missing or the stream ends before the
        block flagged as last.
    """
    if len(data) < 8 or data[:4] != FLAC_MAGIC:
        raise FormatError("Not a valid FLAC file")

    pos = len(FLAC_MAGIC)
    while True:
        if pos + FLAC_BLOCK_HEADER_SIZE > len(data):
            raise FormatError("Unexpected end of FLAC metadata")
        header = data[pos]
        is_last = bool(header & 0x80)
        block_len = int.from_bytes(data[pos + 1 : pos + 4], "big")
        pos += FLAC_BLOCK_HEADER_SIZE + block_len
        if is_last:
            break

    if pos > len(data):
        raise FormatError("FLAC metadata block extends past end of data")
    return pos


def image_dimensions(data: bytes) -> tuple[int, int]:
    """Sniffs the pixel size of an image, or (0, 0) if it cannot be decoded."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError):
        return 0, 0


def _splice(head: bytes, data: bytearray, audio_start: int) -> bytearray:
    """Builds `head + data[audio_start:]` in a single exactly-sized allocation."""
    tail_len = len(data) - audio_start
    new_data = bytearray(len(head) + tail_len)
    new_data[: len(head)] = head
    with memoryview(data) as view:
        new_data[len(head) :] = view[audio_start:]
    return new_data


class Mp3TagEmbedder:
    """Embeds a fresh ID3v2.4 tag into an MP3 buffer."""

    @staticmethod
    def build_tag(payload: TagPayload) -> id3.ID3:
        tag = id3.ID3()
        tag.add(id3.TIT2(encoding=3, text=payload.title))
        tag.add(id3.TALB(encoding=3, text=payload.album))
        tag.add(id3.TPE1(encoding=3, text=payload.artist))
        if payload.duration_seconds > 0:
            # TLEN is defined in milliseconds
            tag.add(id3.TLEN(encoding=3, text=str(payload.duration_seconds * 1000)))
        if payload.cover:
            tag.add(
                id3.APIC(
                    encoding=3,
                    mime=payload.cover_mime,
                    type=id3.PictureType.COVER_FRONT,
                    desc=MP3_COVER_DESCRIPTION,
                    data=payload.cover,
                )
            )
        return tag

    def render_tag(self, payload: TagPayload) -> bytes:
        """Serializes the tag on its own, header included."""
        out = io.BytesIO()
        self.build_tag(payload).save(out, v1=0, v2_version=4)
        return out.getvalue()

    def embed(self, buffer: AudioBuffer, payload: TagPayload) -> None:
        if buffer.is_memory:
            self._embed_memory(buffer, payload)
        else:
            self._embed_disk(buffer, payload)

    def _embed_disk(self, buffer: AudioBuffer, payload: TagPayload) -> None:
        try:
            self.build_tag(payload).save(str(buffer.path), v2_version=4)
        except MutagenError as e:
            raise FormatError(f"Failed to write ID3 tags to '{buffer.filename}': {e}") from e

    def _embed_memory(self, buffer: AudioBuffer, payload: TagPayload) -> None:
        try:
            tag_bytes = self.render_tag(payload)
        except MutagenError as e:
            raise FormatError(f"Failed to render ID3 tags: {e}") from e

        data = buffer.data
        audio_start = find_mp3_audio_start(data)
        if audio_start > len(data):
            raise FormatError(
                f"Existing ID3 tag claims {audio_start} bytes but buffer holds {len(data)}"
            )
        buffer.replace_data(_splice(tag_bytes, data, audio_start))


class FlacTagEmbedder:
    """Sets Vorbis comments and the front cover picture of a FLAC buffer."""

    @staticmethod
    def build_picture(cover: bytes, mime: str = "image/jpeg") -> Picture:
        width, height = image_dimensions(cover)
        pic = Picture()
        pic.type = id3.PictureType.COVER_FRONT
        pic.mime = mime
        pic.desc = FLAC_COVER_DESCRIPTION
        pic.width = width
        pic.height = height
        pic.depth = 24
        pic.colors = 0
        pic.data = cover
        return pic

    def apply(self, audio: FLAC, payload: TagPayload) -> None:
        """
        Replaces TITLE, ALBUM, and ARTIST and swaps the front cover.

        Every other comment, including an existing DESCRIPTION, is left as is.
        """
        if audio.tags is None:
            audio.add_tags()
        audio["TITLE"] = [payload.title]
        audio["ALBUM"] = [payload.album]
        audio["ARTIST"] = [payload.artist]

        if not payload.cover:
            return
        if len(payload.cover) > FLAC_MAX_BLOCKSIZE:
            log.warning("Cover art is too large to embed in FLAC, skipping picture.")
            return
        audio.metadata_blocks = [
            block
            for block in audio.metadata_blocks
            if not (
                block.code == Picture.code
                and block.type == id3.PictureType.COVER_FRONT
            )
        ]
        audio.add_picture(self.build_picture(payload.cover, payload.cover_mime))

    def embed(self, buffer: AudioBuffer, payload: TagPayload) -> None:
        if buffer.is_memory:
            self._embed_memory(buffer, payload)
        else:
            self._embed_disk(buffer, payload)

    def _embed_disk(self, buffer: AudioBuffer, payload: TagPayload) -> None:
        try:
            audio = FLAC(str(buffer.path))
            self.apply(audio, payload)
            audio.save()
        except MutagenError as e:
            raise FormatError(
                f"Failed to write FLAC metadata to '{buffer.filename}': {e}"
            ) from e

    def _embed_memory(self, buffer: AudioBuffer, payload: TagPayload) -> None:
        data = buffer.data
        audio_start = find_flac_audio_start(data)

        head = io.BytesIO(bytes(data[:audio_start]))
        try:
            audio = FLAC(head)
            self.apply(audio, payload)
            head.seek(0)
            audio.save(head)
        except MutagenError as e:
            raise FormatError(f"Failed to rebuild FLAC metadata in memory: {e}") from e

        buffer.replace_data(_splice(head.getvalue(), data, audio_start))


class Tagger:
    """Dispatches tag embedding by file extension. Failures never abort a transfer."""

    def __init__(self, embed_art: bool = True):
        self.embed_art = embed_art
        self._embedders = {
            "mp3": Mp3TagEmbedder(),
            "flac": FlacTagEmbedder(),
        }

    def supports(self, file_ext: str) -> bool:
        return file_ext.lower() in self._embedders

    def tag_buffer(
        self, buffer: AudioBuffer, file_ext: str, payload: TagPayload
    ) -> bool:
        """
        Embeds the payload into the buffer.

        Returns True on success. Unknown formats are skipped and malformed
        containers are logged, leaving the audio untouched.
        """
        embedder = self._embedders.get(file_ext.lower())
        if embedder is None:
            log.info(f"Unknown format '{file_ext}', skipping tag embedding")
            return False

        if not self.embed_art and payload.cover:
            payload = replace(payload, cover=None)

        try:
            embedder.embed(buffer, payload)
            return True
        except (FormatError, OSError) as e:
            log.warning(
                f"Failed to tag '{buffer.filename}': {e}",
                exc_info=log.getEffectiveLevel() == logging.DEBUG,
            )
            return False
