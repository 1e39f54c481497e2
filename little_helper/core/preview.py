"""
Preview Tags — Side-panel markers embedded in model output

Grammar:
    <preview [type=KIND] [path=P] [url=U] [state=S]>CAPTION</preview>

KIND is one of file, web, image, ascii, security. Attribute values may be
double-quoted, single-quoted, or bare. Unknown attributes are ignored.

Parsing is a forward scan: find "<preview", then the next ">", then the
next "</preview>". If a closing tag is missing, scanning stops there and the
rest of the text is left as-is.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Dict, List, Optional, Tuple

OPEN = "<preview"
CLOSE = "</preview>"


class PreviewKind(Enum):
    FILE = "file"
    WEB = "web"
    IMAGE = "image"
    ASCII = "ascii"
    SECURITY = "security"


class FileType(Enum):
    TEXT = "text"
    IMAGE = "image"
    CSV = "csv"
    JSON = "json"
    HTML = "html"
    PDF = "pdf"
    MARKDOWN = "markdown"
    UNKNOWN = "unknown"

    @classmethod
    def from_path(cls, path: str) -> 'FileType':
        # Windows separators
        name = path.replace("\\", "/")
        extension = PurePath(name).suffix[1:].lower()
        return _EXTENSION_TYPES.get(extension, cls.UNKNOWN)


_EXTENSION_TYPES: Dict[str, FileType] = {}
for _ext in ("txt", "log", "rs", "py", "js", "ts", "sh", "toml", "yaml", "yml"):
    _EXTENSION_TYPES[_ext] = FileType.TEXT
for _ext in ("png", "jpg", "jpeg", "gif", "bmp", "webp", "svg"):
    _EXTENSION_TYPES[_ext] = FileType.IMAGE
_EXTENSION_TYPES.update({
    "csv": FileType.CSV, "tsv": FileType.CSV,
    "json": FileType.JSON,
    "html": FileType.HTML, "htm": FileType.HTML,
    "pdf": FileType.PDF,
    "md": FileType.MARKDOWN, "markdown": FileType.MARKDOWN,
})


@dataclass
class PreviewTag:
    kind: PreviewKind
    caption: str = ""
    path: Optional[str] = None
    url: Optional[str] = None
    state: Optional[str] = None

    @property
    def file_type(self) -> Optional[FileType]:
        """Viewer type for file/image tags with a path."""
        if self.path is None:
            return None
        return FileType.from_path(self.path)

    def render(self) -> str:
        """Serialize back to tag syntax (double-quoted attributes)."""
        attrs = [f'type="{self.kind.value}"']
        for name in ("path", "url", "state"):
            value = getattr(self, name)
            if value:
                attrs.append(f'{name}="{value}"')
        return f"{OPEN} {' '.join(attrs)}>{self.caption}{CLOSE}"

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "type": self.kind.value,
            "path": self.path,
            "url": self.url,
            "state": self.state,
            "caption": self.caption,
        }


def parse_attributes(text: str) -> List[Tuple[str, str]]:
    """
    Tolerant key=value parser.

    Whitespace and '/' between pairs are skipped; a key ends at '=' or
    whitespace; a key with no value gets "".
    """
    attrs = []
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch.isspace() or ch == "/":
            i += 1
            continue

        start = i
        while i < n and text[i] != "=" and not text[i].isspace():
            i += 1
        key = text[start:i]

        while i < n and text[i].isspace():
            i += 1
        if i < n and text[i] == "=":
            i += 1
        while i < n and text[i].isspace():
            i += 1

        value = ""
        if i < n and text[i] in ("'", '"'):
            quote = text[i]
            end = text.find(quote, i + 1)
            if end == -1:
                value, i = text[i + 1:], n
            else:
                value, i = text[i + 1:end], end + 1
        elif i < n:
            start = i
            while i < n and not text[i].isspace():
                i += 1
            value = text[start:i]

        if key:
            attrs.append((key, value))
    return attrs


def _spans(text: str):
    """Yield (tag_start, header_end, close_start) for each complete tag."""
    cursor = 0
    while True:
        start = text.find(OPEN, cursor)
        if start == -1:
            return
        header_end = text.find(">", start)
        if header_end == -1:
            return
        close_start = text.find(CLOSE, header_end + 1)
        if close_start == -1:
            return
        yield start, header_end, close_start
        cursor = close_start + len(CLOSE)


def parse_preview_tags(text: str) -> List[PreviewTag]:
    tags = []
    for start, header_end, close_start in _spans(text):
        caption = text[header_end + 1:close_start].strip()
        values: Dict[str, str] = {}
        for key, value in parse_attributes(text[start + len(OPEN):header_end]):
            if key in ("type", "path", "url", "state"):
                values[key] = value

        kind_name = values.get("type", "")
        path = values.get("path") or None
        if not kind_name:
            if not caption:
                continue
            # Bare <preview>some/file.txt</preview>
            kind_name, path = "file", caption

        try:
            kind = PreviewKind(kind_name)
        except ValueError:
            continue

        tags.append(PreviewTag(
            kind=kind,
            caption=caption,
            path=path,
            url=values.get("url") or None,
            state=values.get("state") or None,
        ))
    return tags


def first_preview_tag(text: str) -> Optional[PreviewTag]:
    tags = parse_preview_tags(text)
    return tags[0] if tags else None


def strip_preview_tags(text: str) -> str:
    """Remove complete tags; a malformed tail is kept verbatim. Result is trimmed."""
    output = []
    cursor = 0
    for start, _, close_start in _spans(text):
        output.append(text[cursor:start])
        cursor = close_start + len(CLOSE)
    output.append(text[cursor:])
    return "".join(output).strip()
