import logging
from datetime import date, datetime, timezone
from types import SimpleNamespace

from folio.extractors import (
    calculate_reading_stats,
    extract_frontmatter,
    extract_tags,
    extract_taxonomies,
    format_date,
    is_valid_birthtime,
    resolve_created_at,
    resolve_title,
    resolve_updated_at,
)

# 2024-03-01 12:00 UTC and 2024-05-01 12:00 UTC
MARCH = datetime(2024, 3, 1, 12, tzinfo=timezone.utc).timestamp()
MAY = datetime(2024, 5, 1, 12, tzinfo=timezone.utc).timestamp()


def fake_stats(mtime=MAY, ctime=MAY, birthtime=None):
    stats = SimpleNamespace(st_mtime=mtime, st_ctime=ctime)
    if birthtime is not None:
        stats.st_birthtime = birthtime
    return stats


def test_extract_frontmatter_splits_yaml_block():
    data, body = extract_frontmatter("---\ntitle: Hello\ntags: [a, b]\n---\n# Body\n")
    assert data == {"title": "Hello", "tags": ["a", "b"]}
    assert body == "# Body\n"


def test_extract_frontmatter_ignores_malformed_yaml(caplog):
    text = "---\ntitle: [unclosed\n---\nBody"
    with caplog.at_level(logging.WARNING):
        data, body = extract_frontmatter(text)
    assert data == {}
    assert body == text
    assert "malformed front matter" in caplog.text


def test_extract_frontmatter_requires_mapping():
    text = "---\n- just\n- a list\n---\nBody"
    assert extract_frontmatter(text) == ({}, text)


def test_resolve_title_precedence():
    body = "Some intro.\n\n# Intro\n\nMore."
    assert resolve_title({"title": "From FM"}, body, "a.md", True, "/x/a.md") == "From FM"
    assert resolve_title({}, body, "a.md", True, "/x/a.md") == "Intro"
    assert resolve_title({}, body, "2024-01-01-my-post.txt", False, "/x/p.txt") == (
        "2024-01-01-my-post"
    )
    assert resolve_title({"title": 2024}, "", "a.md", True, "/x/a.md") == "2024"


def test_resolve_title_falls_back_to_hash(caplog):
    with caplog.at_level(logging.WARNING):
        title = resolve_title({}, "", ".md", False, "/content/.md")
    assert title.startswith("untitled-")
    assert len(title) == len("untitled-") + 8


def test_resolve_created_at_precedence():
    stats = fake_stats()
    assert resolve_created_at({"date": date(2023, 2, 3)}, "2024-01-01-x.md", stats) == "2023-02-03"
    assert resolve_created_at({"createdAt": "2022-01-01", "date": "2023-01-01"}, "x.md", stats) == (
        "2022-01-01"
    )
    assert resolve_created_at({}, "2024-01-15-x.md", stats) == "2024-01-15"
    assert resolve_created_at({}, "x.md", stats) == "2024-05-01"


def test_resolve_created_at_uses_trusted_birthtime():
    trusted = fake_stats(mtime=MAY, ctime=MAY, birthtime=MARCH)
    assert resolve_created_at({}, "x.md", trusted) == "2024-03-01"

    copied = fake_stats(mtime=MARCH, ctime=MAY, birthtime=MAY)
    assert resolve_created_at({}, "x.md", copied) == "2024-03-01"


def test_is_valid_birthtime_rules():
    assert not is_valid_birthtime(fake_stats())
    assert not is_valid_birthtime(fake_stats(birthtime=0))
    assert not is_valid_birthtime(fake_stats(ctime=MARCH, birthtime=MARCH))
    assert not is_valid_birthtime(fake_stats(mtime=MARCH, birthtime=MAY))
    assert is_valid_birthtime(fake_stats(mtime=MAY, ctime=MAY, birthtime=MARCH))


def test_resolve_updated_at():
    stats = fake_stats()
    assert resolve_updated_at({"updatedAt": "2024-06-01"}, stats) == "2024-06-01"
    assert resolve_updated_at({"updated": date(2024, 7, 1)}, stats) == "2024-07-01"
    assert resolve_updated_at({}, stats) == "2024-05-01"


def test_format_date_keeps_unparsed_values():
    assert format_date(datetime(2024, 1, 2, 23, 30)) == "2024-01-02"
    assert format_date("next week") == "next week"


def test_calculate_reading_stats():
    assert calculate_reading_stats("one two three", reading_speed=2) == (3, 2)
    assert calculate_reading_stats("") == (0, 0)
    text = "![alt](pic.png) See [the docs](https://x.y) **now**"
    assert calculate_reading_stats(text) == (4, 1)


def test_tags_and_taxonomies():
    fm = {"tags": ["python", "web", "python", ""], "categories": "guides", "series": "Intro"}
    assert extract_tags(fm) == ["python", "web"]
    assert extract_tags({"tags": "solo"}) == ["solo"]
    assert extract_tags({}) == []
    assert extract_taxonomies(fm) == (["guides"], "Intro")
    assert extract_taxonomies({}) == (None, None)
