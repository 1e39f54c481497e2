"""
Tests for preview tag parsing — side-panel markers in model output
"""

import pytest

from little_helper.core.preview import (
    FileType, PreviewKind, PreviewTag, first_preview_tag, parse_attributes, parse_preview_tags,
    strip_preview_tags,
)


class TestParseAttributes:
    """Tolerant key=value parsing."""

    def test_quote_styles(self):
        """Double, single and bare values are all accepted."""
        assert parse_attributes(""" type="file" path='/a b.txt' state=open""") == [
            ("type", "file"), ("path", "/a b.txt"), ("state", "open")]

    def test_spaces_around_equals_and_slash(self):
        """Whitespace around '=' and a self-closing slash are skipped."""
        assert parse_attributes(' type = "web" /') == [("type", "web")]

    def test_key_without_value(self):
        """A bare key gets an empty value."""
        assert parse_attributes(" hidden") == [("hidden", "")]

    def test_unterminated_quote_runs_to_end(self):
        """A missing closing quote takes the rest of the text."""
        assert parse_attributes(' path="/tmp/x') == [("path", "/tmp/x")]


class TestParsePreviewTags:
    """Tag extraction."""

    def test_file_tag(self):
        """Typed tags carry their attributes and trimmed caption."""
        text = 'See <preview type="file" path="/home/u/notes.md"> Notes </preview> here.'
        assert parse_preview_tags(text) == [
            PreviewTag(PreviewKind.FILE, caption="Notes", path="/home/u/notes.md")]

    def test_multiple_tags_in_order(self):
        """Every complete tag is returned in order."""
        text = ('<preview type=web url=https://example.com>Site</preview> and '
                '<preview type="security" state="scanning">Scan</preview>')
        tags = parse_preview_tags(text)
        assert [t.kind for t in tags] == [PreviewKind.WEB, PreviewKind.SECURITY]
        assert tags[0].url == "https://example.com"
        assert tags[1].state == "scanning"

    def test_bare_tag_is_a_file(self):
        """<preview>path</preview> previews the caption as a file."""
        tag = first_preview_tag("<preview>/tmp/report.pdf</preview>")
        assert tag.kind == PreviewKind.FILE
        assert tag.path == "/tmp/report.pdf"
        assert tag.file_type == FileType.PDF

    def test_unknown_kind_and_empty_bare_tag_skipped(self):
        """Unknown types and empty untyped tags produce nothing."""
        assert parse_preview_tags('<preview type="video">x</preview><preview></preview>') == []

    def test_unknown_attributes_ignored(self):
        """Only type, path, url and state are read."""
        tag = first_preview_tag('<preview type="image" path="/a.png" width="20">A</preview>')
        assert tag.to_dict() == {"type": "image", "path": "/a.png", "url": None,
                                 "state": None, "caption": "A"}

    def test_missing_close_stops_scanning(self):
        """Tags after an unclosed one are not returned."""
        text = '<preview type="file" path="/a">A</preview> <preview type="web">B'
        assert len(parse_preview_tags(text)) == 1
        assert first_preview_tag("no tags here") is None

    @pytest.mark.parametrize("tag", [
        PreviewTag(PreviewKind.FILE, "Notes", path="/home/u/notes.md"),
        PreviewTag(PreviewKind.WEB, "Docs", url="https://example.com/a?b=1"),
        PreviewTag(PreviewKind.SECURITY, "Scan", state="done"),
        PreviewTag(PreviewKind.ASCII, "Chart"),
    ])
    def test_render_parses_back(self, tag):
        """A rendered tag parses to an equal tag."""
        assert parse_preview_tags(f"before {tag.render()} after") == [tag]


class TestStripPreviewTags:
    """strip_preview_tags."""

    def test_strips_complete_tags(self):
        """Complete tags are removed and the result trimmed."""
        text = '  Here it is: <preview type="file" path="/a.txt">A</preview>  '
        assert strip_preview_tags(text) == "Here it is:"

    def test_malformed_tail_kept(self):
        """An unclosed tag stays verbatim."""
        text = 'Done <preview type="file">A</preview> then <preview type="web">open'
        assert strip_preview_tags(text) == 'Done  then <preview type="web">open'


class TestFileType:
    """Viewer type from extension."""

    @pytest.mark.parametrize("path,file_type", [
        ("notes.TXT", FileType.TEXT),
        ("C:\\pics\\cat.jpeg", FileType.IMAGE),
        ("data.tsv", FileType.CSV),
        ("README.md", FileType.MARKDOWN),
        ("archive.zip", FileType.UNKNOWN),
        ("no_extension", FileType.UNKNOWN),
    ])
    def test_from_path(self, path, file_type):
        """Extensions map case-insensitively; unknown ones are UNKNOWN."""
        assert FileType.from_path(path) == file_type
